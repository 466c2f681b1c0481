"""树一致性校验测试

直接修改数据库制造各类不一致，检查校验报告。
"""

from qbtree.category import CategoryNode, IssueSeverity, IssueType


def _issue_types(report):
    return {i.issue_type for i in report.issues}


class TestTreeValidator:
    """树一致性校验"""

    def test_clean_tree(self, service, sample_tree):
        report = service.validate_tree()

        assert report.is_valid
        assert report.checked_count == 4
        assert report.issues == []

    def test_deleted_nodes_are_not_checked(self, service, sample_tree):
        service.soft_delete_node(sample_tree["math"])

        report = service.validate_tree()

        assert report.is_valid
        assert report.checked_count == 2

    def test_path_inconsistency(self, service, sample_tree, db_session):
        db_session.get(CategoryNode, sample_tree["algebra"]).path = "-9-3-"
        db_session.commit()

        report = service.validate_tree()

        assert not report.is_valid
        assert report.invalid_path_count == 1
        issue = report.errors[0]
        assert issue.issue_type == IssueType.PATH_INCONSISTENCY
        assert issue.expected == "-1-2-3-"
        assert issue.actual == "-9-3-"

    def test_level_inconsistency(self, service, sample_tree, db_session):
        db_session.get(CategoryNode, sample_tree["algebra"]).level = 5
        db_session.commit()

        report = service.validate_tree()

        assert _issue_types(report) == {IssueType.LEVEL_INCONSISTENCY}

    def test_malformed_path(self, service, sample_tree, db_session):
        db_session.get(CategoryNode, sample_tree["physics"]).path = "1/4"
        db_session.commit()

        report = service.validate_tree()

        assert _issue_types(report) == {IssueType.MALFORMED_PATH}
        assert report.invalid_path_count == 1

    def test_orphaned_node(self, service, sample_tree, db_session):
        db_session.get(CategoryNode, sample_tree["physics"]).parent_id = 99
        db_session.commit()

        report = service.validate_tree()

        assert report.orphaned_count == 1
        assert IssueType.ORPHANED_NODE in _issue_types(report)

    def test_child_of_deleted_parent_is_orphaned(self, service, sample_tree):
        service.nodes.mark_deleted([service.nodes.get(sample_tree["math"])])
        service.session.commit()

        report = service.validate_tree()

        assert report.orphaned_count == 1
        assert report.errors[0].node_id == sample_tree["algebra"]

    def test_circular_reference(self, service, sample_tree, db_session):
        db_session.get(CategoryNode, sample_tree["math"]).parent_id = sample_tree["algebra"]
        db_session.commit()

        report = service.validate_tree()

        assert report.circular_reference_count == 2
        assert all(
            i.severity == IssueSeverity.CRITICAL
            for i in report.issues if i.issue_type == IssueType.CIRCULAR_REFERENCE
        )
        assert not report.is_valid

    def test_duplicate_sort_order_is_warning(self, service, sample_tree, db_session):
        db_session.get(CategoryNode, sample_tree["physics"]).sort_order = 1
        db_session.commit()

        report = service.validate_tree()

        assert report.is_valid
        assert [w.issue_type for w in report.warnings] == [IssueType.DUPLICATE_SORT_ORDER]

    def test_repair_fixes_reported_paths(self, service, sample_tree, db_session):
        node = db_session.get(CategoryNode, sample_tree["algebra"])
        node.path = "-2-3-"
        node.level = 1
        db_session.commit()
        assert not service.validate_tree().is_valid

        service.repair_tree()

        assert service.validate_tree().is_valid
