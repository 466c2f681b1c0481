"""节点存储与节点 CRUD 测试

1. 唯一编码生成
2. 创建节点（路径、层级、编码唯一）
3. 属性更新（结构字段不可修改）
4. 查询（子节点、祖先、面包屑）
"""

import pytest
from pydantic import ValidationError

from qbtree.category import generate_unique_code
from qbtree.exceptions import DuplicateCodeError, NodeNotFoundError, ParentNotFoundError


class TestGenerateUniqueCode:
    """唯一编码生成"""

    def test_free_code_is_kept(self):
        taken = {"math"}
        assert generate_unique_code("ALG", taken) == "ALG"
        assert "alg" in taken

    def test_suffix_then_counter(self):
        taken = {"alg", "alg_copy"}
        assert generate_unique_code("ALG", taken, "_COPY") == "ALG_COPY_2"
        assert generate_unique_code("ALG", taken, "_COPY") == "ALG_COPY_3"

    def test_case_insensitive(self):
        taken = {"math"}
        assert generate_unique_code("Math", taken) == "Math_2"

    def test_respects_max_length(self):
        code = "X" * 50
        taken = {code.lower()}

        new_code = generate_unique_code(code, taken)

        assert len(new_code) == 50
        assert new_code.endswith("_2")


class TestCreateNode:
    """创建节点"""

    def test_create_root_and_children(self, service, sample_tree):
        root = service.get_node(sample_tree["root"])
        algebra = service.get_node(sample_tree["algebra"])

        assert root.path == "-1-"
        assert root.level == 0
        assert algebra.path == "-1-2-3-"
        assert algebra.level == 2

    def test_children_sort_orders_are_dense(self, service, sample_tree):
        children = service.get_children(sample_tree["root"])

        assert [c.code for c in children] == ["MATH", "PHY"]
        assert [c.sort_order for c in children] == [1, 2]

    def test_code_is_unique_case_insensitive(self, service, sample_tree):
        with pytest.raises(DuplicateCodeError) as exc_info:
            service.create_node({"name": "Maths", "code": "math"})

        assert exc_info.value.existing_id == sample_tree["math"]
        assert exc_info.value.status_code == 409

    def test_code_of_deleted_node_stays_reserved(self, service, sample_tree):
        service.soft_delete_node(sample_tree["physics"])

        with pytest.raises(DuplicateCodeError):
            service.create_node({"name": "Physics", "code": "PHY"})

    def test_missing_parent(self, service, sample_tree):
        with pytest.raises(ParentNotFoundError):
            service.create_node({"name": "X", "code": "X"}, parent_id=99)

    def test_deleted_parent(self, service, sample_tree):
        service.soft_delete_node(sample_tree["physics"])

        with pytest.raises(ParentNotFoundError):
            service.create_node({"name": "X", "code": "X"}, parent_id=sample_tree["physics"])

    def test_blank_name_rejected(self, service, db_session):
        with pytest.raises(ValidationError):
            service.create_node({"name": "   ", "code": "X"})

    def test_metadata_round_trip(self, service, db_session):
        node = service.create_node({
            "name": "Math",
            "code": "MATH",
            "category_type": "subject",
            "metadata": {"difficulty": "hard", "tags": ["core"]},
        })

        info = service.get_node(node.id)

        assert info.category_type == "subject"
        assert info.metadata == {"difficulty": "hard", "tags": ["core"]}


class TestUpdateNode:
    """属性更新"""

    def test_update_attributes(self, service, sample_tree):
        info = service.update_node(sample_tree["math"], {"name": "Mathematics", "color": "#ff0000"})

        assert info.name == "Mathematics"
        assert info.color == "#ff0000"
        assert info.path == "-1-2-"

    def test_structural_fields_rejected(self, service, sample_tree):
        for field, value in [("parent_id", 4), ("path", "-4-2-"), ("sort_order", 5), ("level", 3)]:
            with pytest.raises(ValidationError):
                service.update_node(sample_tree["math"], {field: value})

        assert service.get_node(sample_tree["math"]).parent_id == sample_tree["root"]

    def test_update_code_to_taken_code(self, service, sample_tree):
        with pytest.raises(DuplicateCodeError):
            service.update_node(sample_tree["math"], {"code": "phy"})

    def test_update_code_case_only(self, service, sample_tree):
        info = service.update_node(sample_tree["math"], {"code": "Math"})

        assert info.code == "Math"

    def test_update_missing_node(self, service, db_session):
        with pytest.raises(NodeNotFoundError):
            service.update_node(42, {"name": "X"})


class TestQueries:
    """查询"""

    def test_get_node_counts(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])
        service.assign_item_to_category(200, sample_tree["math"])
        service.assign_item_to_category(100, sample_tree["math"])

        info = service.get_node(sample_tree["math"])

        assert info.child_count == 1
        assert info.item_count == 2

    def test_get_node_by_code(self, service, sample_tree):
        assert service.get_node_by_code("alg").id == sample_tree["algebra"]
        assert service.get_node_by_code("NOPE") is None

    def test_roots_descendants_ancestors(self, service, sample_tree):
        assert [r.id for r in service.get_roots()] == [sample_tree["root"]]
        assert {d.id for d in service.get_descendants(sample_tree["root"])} == {
            sample_tree["math"], sample_tree["algebra"], sample_tree["physics"]
        }
        assert [a.code for a in service.get_ancestors(sample_tree["algebra"])] == ["ROOT", "MATH"]

    def test_breadcrumbs(self, service, sample_tree):
        crumbs = service.get_breadcrumbs(sample_tree["algebra"])

        assert [c.name for c in crumbs] == ["Root", "Math", "Algebra"]
        assert [c.level for c in crumbs] == [0, 1, 2]

    def test_children_exclude_inactive(self, service, sample_tree):
        service.update_node(sample_tree["physics"], {"is_active": False})

        assert [c.code for c in service.get_children(sample_tree["root"], include_inactive=False)] == ["MATH"]
        assert len(service.get_children(sample_tree["root"])) == 2

    def test_get_missing_node(self, service, db_session):
        with pytest.raises(NodeNotFoundError):
            service.get_node(1)
