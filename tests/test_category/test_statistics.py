"""统计测试"""

from qbtree.category import Categorization


class TestTreeStatistics:
    """树结构统计"""

    def test_sample_tree(self, service, sample_tree):
        stats = service.get_statistics()

        assert stats.total_nodes == 4
        assert stats.active_nodes == 4
        assert stats.root_count == 1
        assert stats.leaf_count == 2
        assert stats.max_depth == 2
        assert stats.nodes_by_level == {0: 1, 1: 2, 2: 1}
        assert stats.nodes_by_type == {"unspecified": 4}
        assert stats.avg_children_per_node == 1.5
        assert stats.average_depth == 1.0
        assert stats.deleted_nodes == 0
        assert stats.last_modified is not None

    def test_empty_tree(self, service):
        stats = service.get_statistics()

        assert stats.total_nodes == 0
        assert stats.max_depth == 0
        assert stats.nodes_by_level == {}

    def test_subtree_statistics(self, service, sample_tree):
        stats = service.get_statistics(sample_tree["math"])

        assert stats.total_nodes == 2
        assert stats.root_count == 1
        assert stats.leaf_count == 1

    def test_deleted_and_inactive(self, service, sample_tree):
        service.update_node(sample_tree["physics"], {"is_active": False})
        service.soft_delete_node(sample_tree["math"])

        stats = service.get_statistics()

        assert stats.total_nodes == 2
        assert stats.inactive_nodes == 1
        assert stats.deleted_nodes == 2
        assert stats.max_depth == 1

    def test_items(self, service, sample_tree):
        service.assign_item_to_category(1, sample_tree["algebra"])
        service.assign_item_to_category(1, sample_tree["physics"])
        service.assign_item_to_category(2, sample_tree["algebra"])

        stats = service.get_statistics()

        assert stats.total_items == 2
        assert stats.uncategorized_nodes == 2


class TestCategorizationStatistics:
    """归类统计"""

    def test_counts(self, service, sample_tree):
        service.assign_item_to_category(1, sample_tree["algebra"])
        service.assign_item_to_category(1, sample_tree["physics"])
        service.assign_item_to_category(2, sample_tree["algebra"])

        stats = service.get_categorization_statistics()

        assert stats.total_categorizations == 3
        assert stats.categorized_items == 2
        assert stats.primary_count == 2
        assert stats.secondary_count == 1
        assert stats.items_without_primary == 0
        assert stats.nodes_with_items == 2
        assert stats.average_categories_per_item == 1.5
        assert stats.top_nodes[0] == {
            "node_id": sample_tree["algebra"], "code": "ALG", "name": "Algebra", "count": 2,
        }

    def test_top_n(self, service, sample_tree):
        service.assign_item_to_category(1, sample_tree["algebra"])
        service.assign_item_to_category(2, sample_tree["physics"])

        assert len(service.get_categorization_statistics(top_n=1).top_nodes) == 1

    def test_items_without_primary(self, service, sample_tree, db_session):
        db_session.add(Categorization(item_id=5, node_id=sample_tree["math"], is_primary=False))
        db_session.commit()

        stats = service.get_categorization_statistics()

        assert stats.items_with_primary == 0
        assert stats.items_without_primary == 1

    def test_empty(self, service, sample_tree):
        assert service.get_categorization_statistics().total_categorizations == 0
