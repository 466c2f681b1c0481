"""物化路径编解码测试

测试 path_codec 的纯函数：
1. 计算与解析
2. 层级与父路径
3. 子树前缀替换与重叠判断
4. 格式错误
"""

import pytest

from qbtree.exceptions import MalformedPathError, TreeError
from qbtree.orm.tree import path_codec


class TestComputeAndParse:
    """计算与解析"""

    def test_root_path(self):
        assert path_codec.compute_path(None, 1) == "-1-"

    def test_child_path(self):
        assert path_codec.compute_path("-1-2-", 3) == "-1-2-3-"

    def test_parse_path(self):
        assert path_codec.parse_path("-1-2-3-") == [1, 2, 3]

    def test_format_path_is_inverse_of_parse(self):
        assert path_codec.format_path([7, 12, 3]) == "-7-12-3-"
        assert path_codec.parse_path(path_codec.format_path([7, 12, 3])) == [7, 12, 3]

    @pytest.mark.parametrize("bad_id", [0, -1, True, "3", None])
    def test_compute_rejects_non_positive_ids(self, bad_id):
        with pytest.raises(MalformedPathError):
            path_codec.compute_path(None, bad_id)

    def test_compute_rejects_parent_without_trailing_separator(self):
        with pytest.raises(MalformedPathError):
            path_codec.compute_path("-1-2", 3)


class TestLevels:
    """层级与父路径"""

    @pytest.mark.parametrize("path,level", [
        ("-1-", 0),
        ("-1-2-", 1),
        ("-1-2-3-", 2),
    ])
    def test_level_is_segment_count_minus_one(self, path, level):
        assert path_codec.level_of(path) == level

    def test_parent_path_of_root_is_none(self):
        assert path_codec.parent_path_of("-5-") is None

    def test_parent_path(self):
        assert path_codec.parent_path_of("-1-2-3-") == "-1-2-"


class TestSubtreePrefixes:
    """前缀替换与重叠"""

    def test_rebase_path(self):
        assert path_codec.rebase_path("-1-2-3-", "-1-2-", "-7-2-") == "-7-2-3-"

    def test_rebase_requires_prefix(self):
        with pytest.raises(MalformedPathError):
            path_codec.rebase_path("-4-5-", "-1-", "-2-")

    def test_prefix_does_not_match_longer_id(self):
        """-1- 不是 -12- 的前缀"""
        assert not path_codec.paths_overlap("-1-", "-12-")
        assert not path_codec.is_descendant_path("-12-3-", "-1-")

    def test_overlap_is_symmetric(self):
        assert path_codec.paths_overlap("-1-", "-1-2-")
        assert path_codec.paths_overlap("-1-2-", "-1-")
        assert path_codec.paths_overlap("-1-2-", "-1-2-")

    def test_descendant_excludes_self(self):
        assert path_codec.is_descendant_path("-1-2-", "-1-")
        assert not path_codec.is_descendant_path("-1-", "-1-")

    def test_repeated_id(self):
        assert path_codec.has_repeated_id("-1-2-1-")
        assert not path_codec.has_repeated_id("-1-2-3-")


class TestMalformedPaths:
    """格式错误"""

    @pytest.mark.parametrize("path", ["", "-", "1-2-", "-1-2", "-1--2-", "-a-", "-0-", "-01-"])
    def test_parse_rejects(self, path):
        with pytest.raises(MalformedPathError) as exc_info:
            path_codec.parse_path(path)
        assert exc_info.value.code_value == "MALFORMED_PATH"

    def test_malformed_path_is_tree_error(self):
        with pytest.raises(TreeError):
            path_codec.level_of("oops")
