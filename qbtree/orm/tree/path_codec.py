"""物化路径编解码

路径格式为 "-id1-id2-...-idN-"，依次为根节点到当前节点（含自身）的 ID。
首尾都带分隔符，因此按前缀匹配子孙时 "-1-" 不会误匹配 "-12-"。
层级 = 段数 - 1，根节点层级为 0。

纯函数，无 I/O；TreeMixin 与树校验共用，保证路径语义只有一份实现。

使用示例:
    from qbtree.orm.tree import path_codec

    path_codec.compute_path(None, 1)          # "-1-"
    path_codec.compute_path("-1-2-", 3)       # "-1-2-3-"
    path_codec.parse_path("-1-2-3-")          # [1, 2, 3]
    path_codec.level_of("-1-2-3-")            # 2
    path_codec.rebase_path("-1-2-3-", "-1-2-", "-7-2-")   # "-7-2-3-"
"""

import re
from typing import List, Optional

from ...exceptions import MalformedPathError

PATH_SEPARATOR = "-"

_SEGMENT_RE = re.compile(r"^[1-9][0-9]*$")


def compute_path(parent_path: Optional[str], new_id: int) -> str:
    """在父路径后追加节点 ID

    Args:
        parent_path: 父节点路径，None 表示根节点
        new_id: 当前节点 ID（正整数）
    """
    if not isinstance(new_id, int) or isinstance(new_id, bool) or new_id <= 0:
        raise MalformedPathError(new_id, "节点ID必须是正整数")
    if parent_path is None:
        return f"{PATH_SEPARATOR}{new_id}{PATH_SEPARATOR}"
    if not parent_path.endswith(PATH_SEPARATOR):
        raise MalformedPathError(parent_path, "缺少结尾分隔符")
    return f"{parent_path}{new_id}{PATH_SEPARATOR}"


def parse_path(path: str) -> List[int]:
    """解析路径为 ID 列表（根在前）

    Raises:
        MalformedPathError: 格式错误（缺少首尾分隔符、空段、非正整数段）
    """
    if not isinstance(path, str) or len(path) < 3:
        raise MalformedPathError(path, "路径为空或过短")
    if not path.startswith(PATH_SEPARATOR) or not path.endswith(PATH_SEPARATOR):
        raise MalformedPathError(path, "缺少首尾分隔符")
    ids = []
    for segment in path[1:-1].split(PATH_SEPARATOR):
        if not _SEGMENT_RE.match(segment):
            raise MalformedPathError(path, f"非法段 {segment!r}")
        ids.append(int(segment))
    return ids


def level_of(path: str) -> int:
    """路径对应的层级（段数 - 1）"""
    return len(parse_path(path)) - 1


def format_path(ids: List[int]) -> str:
    """由 ID 列表拼出路径"""
    path = None
    for node_id in ids:
        path = compute_path(path, node_id)
    if path is None:
        raise MalformedPathError(ids, "ID 列表为空")
    return path


def parent_path_of(path: str) -> Optional[str]:
    """父节点路径，根节点返回 None"""
    ids = parse_path(path)
    if len(ids) == 1:
        return None
    return format_path(ids[:-1])


def rebase_path(path: str, old_prefix: str, new_prefix: str) -> str:
    """把路径的 old_prefix 前缀替换为 new_prefix（用于子树整体移动）"""
    if not path.startswith(old_prefix):
        raise MalformedPathError(path, f"不以 {old_prefix} 开头")
    return new_prefix + path[len(old_prefix):]


def is_descendant_path(path: str, ancestor_path: str) -> bool:
    """path 是否位于 ancestor_path 的子树中（不含自身）"""
    return path != ancestor_path and path.startswith(ancestor_path)


def paths_overlap(a: str, b: str) -> bool:
    """两条路径代表的子树是否重叠（互为祖先/子孙或相同）"""
    return a.startswith(b) or b.startswith(a)


def has_repeated_id(path: str) -> bool:
    """路径中是否出现重复 ID（即存在循环）"""
    ids = parse_path(path)
    return len(ids) != len(set(ids))


__all__ = [
    "PATH_SEPARATOR",
    "compute_path",
    "parse_path",
    "level_of",
    "format_path",
    "parent_path_of",
    "rebase_path",
    "is_descendant_path",
    "paths_overlap",
    "has_repeated_id",
]
