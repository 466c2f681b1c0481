"""分类树统计"""

from collections import Counter, defaultdict
from typing import Dict, List, Optional

from sqlalchemy import func

from ..orm import INCLUDE_DELETED_OPTION
from ..orm.tree import path_codec
from .categorization_store import CategorizationStore
from .models import Categorization, CategoryNode
from .node_store import NodeStore
from .schemas import CategorizationStatistics, TreeStatistics


class StatisticsAggregator:
    """分类树与题目归类的统计

    使用示例:
        stats = StatisticsAggregator(NodeStore(), CategorizationStore())
        tree_stats = stats.get_tree_statistics()
        tree_stats.max_depth, tree_stats.nodes_by_level
    """

    def __init__(self, nodes: NodeStore, categorizations: CategorizationStore):
        self.nodes = nodes
        self.categorizations = categorizations

    def get_tree_statistics(self, root_id: Optional[int] = None) -> TreeStatistics:
        """树结构统计（root_id 给出时只统计该子树）"""
        if root_id is None:
            live = self.nodes.list_all()
            deleted_query = CategoryNode.query.execution_options(**{INCLUDE_DELETED_OPTION: True})
        else:
            root = self.nodes.get(root_id)
            live = self.nodes.get_subtree(root)
            deleted_query = (
                CategoryNode.query.execution_options(**{INCLUDE_DELETED_OPTION: True})
                .filter(CategoryNode.path.startswith(root.path))
            )
        deleted_count = deleted_query.filter(CategoryNode.deleted_at.isnot(None)).count()

        stats = TreeStatistics(total_nodes=len(live), deleted_nodes=deleted_count)
        if not live:
            return stats

        child_counts = Counter(n.parent_id for n in live if n.parent_id is not None)
        direct_items = self.categorizations.count_by_node([n.id for n in live])
        live_ids = {n.id for n in live}

        stats.active_nodes = sum(1 for n in live if n.is_active)
        stats.inactive_nodes = stats.total_nodes - stats.active_nodes
        stats.root_count = sum(1 for n in live if n.parent_id is None or n.parent_id not in live_ids)
        stats.leaf_count = sum(1 for n in live if not child_counts.get(n.id))
        stats.max_depth = max(n.level for n in live)
        stats.average_depth = round(sum(n.level for n in live) / len(live), 2)
        parents = [c for c in child_counts.values() if c]
        stats.avg_children_per_node = round(sum(parents) / len(parents), 2) if parents else 0.0
        stats.uncategorized_nodes = sum(1 for n in live if not direct_items.get(n.id))
        stats.nodes_by_level = dict(sorted(Counter(n.level for n in live).items()))
        stats.nodes_by_type = dict(Counter(n.category_type or "unspecified" for n in live))
        stats.last_modified = max((n.updated_at or n.created_at for n in live if n.updated_at or n.created_at),
                                  default=None)
        stats.total_items = (
            Categorization.query
            .filter(Categorization.node_id.in_(list(live_ids)))
            .with_entities(func.count(func.distinct(Categorization.item_id)))
            .scalar()
        ) or 0
        return stats

    def get_descendant_item_counts(self, root_id: Optional[int] = None) -> Dict[int, int]:
        """每个节点子树内（含自身）归类的不同题目数"""
        if root_id is None:
            live = self.nodes.list_all()
        else:
            live = self.nodes.get_subtree(self.nodes.get(root_id))
        live_ids = {n.id for n in live}
        records = self.categorizations.get_node_records(live_ids)

        items_by_node: Dict[int, set] = defaultdict(set)
        paths = {n.id: path_codec.parse_path(n.path) for n in live}
        for record in records:
            for ancestor_id in paths.get(record.node_id, []):
                if ancestor_id in live_ids:
                    items_by_node[ancestor_id].add(record.item_id)
        return {node_id: len(items_by_node.get(node_id, ())) for node_id in live_ids}

    def get_categorization_statistics(self, top_n: int = 10) -> CategorizationStatistics:
        records: List[Categorization] = Categorization.query.all()
        stats = CategorizationStatistics(total_categorizations=len(records))
        if not records:
            return stats

        by_item: Dict[int, List[Categorization]] = defaultdict(list)
        for record in records:
            by_item[record.item_id].append(record)

        stats.categorized_items = len(by_item)
        stats.primary_count = sum(1 for r in records if r.is_primary)
        stats.secondary_count = stats.total_categorizations - stats.primary_count
        stats.items_with_primary = sum(1 for rs in by_item.values() if any(r.is_primary for r in rs))
        stats.items_without_primary = stats.categorized_items - stats.items_with_primary
        stats.average_categories_per_item = round(len(records) / len(by_item), 2)

        node_counts = Counter(r.node_id for r in records)
        stats.nodes_with_items = len(node_counts)
        top = node_counts.most_common(top_n)
        names = self.nodes.get_many([node_id for node_id, _ in top], include_deleted=True)
        stats.top_nodes = [
            {
                "node_id": node_id,
                "code": names[node_id].code if node_id in names else None,
                "name": names[node_id].name if node_id in names else None,
                "count": count,
            }
            for node_id, count in top
        ]
        return stats


__all__ = [
    "StatisticsAggregator",
]
