"""题目归类测试

1. 归类与主分类规则（每个题目最多一个主分类）
2. 移除与自动补齐主分类
3. 批量归类与转移
4. 归类一致性校验与修复
"""

import pytest

from qbtree.category import Categorization
from qbtree.exceptions import (
    CategorizationNotFoundError,
    DuplicateCategorizationError,
    ItemAlreadyPrimaryError,
    ItemsNotAllowedError,
    NodeNotFoundError,
    ValidationException,
)


def _primary_nodes(service, item_id):
    return [r.node_id for r in service.get_item_categories(item_id) if r.is_primary]


class TestAssign:
    """归类与主分类"""

    def test_first_assignment_becomes_primary(self, service, sample_tree):
        assert service.assign_item_to_category(100, sample_tree["algebra"]) is True

        assert _primary_nodes(service, 100) == [sample_tree["algebra"]]

    def test_second_assignment_is_secondary(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])
        service.assign_item_to_category(100, sample_tree["physics"], weight=0.5, confidence=0.8, assigned_by="tom")

        records = service.get_item_categories(100)
        assert len(records) == 2
        assert _primary_nodes(service, 100) == [sample_tree["algebra"]]
        secondary = records[1]
        assert secondary.node_id == sample_tree["physics"]
        assert secondary.weight == 0.5
        assert secondary.confidence == 0.8
        assert secondary.assigned_by == "tom"

    def test_assign_as_primary_switches(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])
        service.assign_item_to_category(100, sample_tree["physics"], is_primary=True)

        assert _primary_nodes(service, 100) == [sample_tree["physics"]]

    def test_promote_existing_record(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])
        service.assign_item_to_category(100, sample_tree["physics"])

        service.assign_item_to_category(100, sample_tree["physics"], is_primary=True)

        assert _primary_nodes(service, 100) == [sample_tree["physics"]]
        assert len(service.get_item_categories(100)) == 2

    def test_duplicate_assignment(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])

        with pytest.raises(DuplicateCategorizationError):
            service.assign_item_to_category(100, sample_tree["algebra"])

    def test_already_primary(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])

        with pytest.raises(ItemAlreadyPrimaryError):
            service.assign_item_to_category(100, sample_tree["algebra"], is_primary=True)

    def test_node_must_allow_items(self, service, sample_tree):
        service.update_node(sample_tree["root"], {"allow_items": False})

        with pytest.raises(ItemsNotAllowedError):
            service.assign_item_to_category(100, sample_tree["root"])

    def test_deleted_node_rejected(self, service, sample_tree):
        service.soft_delete_node(sample_tree["physics"])

        with pytest.raises(NodeNotFoundError):
            service.assign_item_to_category(100, sample_tree["physics"])

    @pytest.mark.parametrize("field", ["weight", "confidence"])
    def test_ratio_range(self, service, sample_tree, field):
        with pytest.raises(ValidationException):
            service.assign_item_to_category(100, sample_tree["algebra"], **{field: 1.5})

        assert service.get_item_categories(100) == []


class TestSetPrimaryAndRemove:
    """切换主分类与移除"""

    def test_set_primary(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])
        service.assign_item_to_category(100, sample_tree["physics"])

        info = service.set_primary_category(100, sample_tree["physics"])

        assert info.is_primary
        assert _primary_nodes(service, 100) == [sample_tree["physics"]]

    def test_set_primary_is_noop_when_already_primary(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])

        assert service.set_primary_category(100, sample_tree["algebra"]).is_primary

        with pytest.raises(ItemAlreadyPrimaryError):
            service.set_primary_category(100, sample_tree["algebra"], strict=True)

    def test_set_primary_requires_record(self, service, sample_tree):
        with pytest.raises(CategorizationNotFoundError):
            service.set_primary_category(100, sample_tree["algebra"])

    def test_remove_primary_promotes_most_recent(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])
        service.assign_item_to_category(100, sample_tree["math"])
        service.assign_item_to_category(100, sample_tree["physics"])

        assert service.remove_item_from_category(100, sample_tree["algebra"]) is True

        assert _primary_nodes(service, 100) == [sample_tree["physics"]]

    def test_remove_missing(self, service, sample_tree):
        assert service.remove_item_from_category(100, sample_tree["algebra"]) is False

    def test_node_items(self, service, sample_tree):
        service.assign_item_to_category(100, sample_tree["algebra"])
        service.assign_item_to_category(200, sample_tree["math"])

        assert [r.item_id for r in service.get_node_items(sample_tree["math"])] == [200]
        assert [r.item_id for r in service.get_node_items(sample_tree["math"], include_descendants=True)] == [100, 200]


class TestBulkOperations:
    """批量归类与转移"""

    def test_bulk_assign(self, service, sample_tree):
        result = service.bulk_assign_items([1, 2, 2, 3], sample_tree["algebra"])

        assert result.success
        assert result.assigned_count == 3
        assert result.skipped_count == 0

        again = service.bulk_assign_items([1, 2, 3], sample_tree["algebra"])
        assert again.assigned_count == 0
        assert again.skipped_count == 3

    def test_bulk_assign_as_primary(self, service, sample_tree):
        service.assign_item_to_category(1, sample_tree["physics"])

        result = service.bulk_assign_items([1, 2], sample_tree["algebra"], set_as_primary=True)

        assert result.assigned_count == 2
        assert _primary_nodes(service, 1) == [sample_tree["algebra"]]
        assert _primary_nodes(service, 2) == [sample_tree["algebra"]]

    def test_bulk_assign_error_as_result(self, service, sample_tree):
        result = service.bulk_assign_items([1], 99)

        assert not result.success
        assert result.error_code == "NODE_NOT_FOUND"

    def test_move_items(self, service, sample_tree):
        service.assign_item_to_category(1, sample_tree["algebra"])
        service.assign_item_to_category(2, sample_tree["algebra"])

        moved = service.move_items([1, 2, 3], sample_tree["algebra"], sample_tree["physics"])

        assert moved == 2
        assert service.get_node_items(sample_tree["algebra"]) == []
        assert _primary_nodes(service, 1) == [sample_tree["physics"]]

    def test_move_items_merges(self, service, sample_tree):
        service.assign_item_to_category(1, sample_tree["algebra"])
        service.assign_item_to_category(1, sample_tree["physics"])

        service.move_items([1], sample_tree["algebra"], sample_tree["physics"])

        records = service.get_item_categories(1)
        assert [(r.node_id, r.is_primary) for r in records] == [(sample_tree["physics"], True)]


class TestValidateAndFix:
    """归类一致性"""

    def test_clean_state_is_valid(self, service, sample_tree):
        service.assign_item_to_category(1, sample_tree["algebra"])

        report = service.validate_categorizations()

        assert report.is_valid
        assert report.checked_count == 1
        assert report.issues == []

    def test_orphaned_and_missing_primary(self, service, sample_tree, db_session):
        db_session.add(Categorization(item_id=7, node_id=99, is_primary=False))
        db_session.add(Categorization(item_id=7, node_id=sample_tree["physics"], is_primary=False))
        db_session.commit()

        report = service.validate_categorizations()

        assert not report.is_valid
        assert len(report.orphaned_categorization_ids) == 1
        assert report.items_without_primary == [7]

        result = service.fix_categorizations()

        assert result.removed_orphans == 1
        assert result.promoted == 1
        assert _primary_nodes(service, 7) == [sample_tree["physics"]]
        assert service.validate_categorizations().is_valid

    def test_records_on_deleted_node_are_orphaned(self, service, sample_tree, db_session):
        db_session.add(Categorization(item_id=8, node_id=sample_tree["physics"], is_primary=True))
        db_session.commit()
        service.nodes.mark_deleted([service.nodes.get(sample_tree["physics"])])
        db_session.commit()

        report = service.validate_categorizations()

        assert len(report.orphaned_categorization_ids) == 1
