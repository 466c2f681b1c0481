"""分类节点搜索

不区分大小写的子串匹配（名称、编码、描述），按相关度排序：
完全匹配名称 > 编码完全匹配 > 名称前缀 > 名称包含 > 编码包含 > 描述包含。
每条结果附带从根到命中节点的面包屑。
"""

from typing import Dict, List, Optional, Tuple, Union

from ..config import TreeSettings
from ..log import get_logger
from ..orm.tree import path_codec
from .enums import MatchType
from .mappers import node_to_breadcrumb, node_to_info
from .models import CategoryNode
from .node_store import NodeStore
from .schemas import Breadcrumb, SearchCriteria, SearchResult

logger = get_logger("qbtree.category.search")

RELEVANCE_SCORES = {
    MatchType.EXACT_NAME: 100,
    MatchType.EXACT_CODE: 80,
    MatchType.NAME_PREFIX: 75,
    MatchType.NAME_CONTAINS: 50,
    MatchType.CODE_CONTAINS: 40,
    MatchType.DESCRIPTION: 25,
}


def score_match(node: CategoryNode, term: str, criteria: SearchCriteria) -> Optional[Tuple[MatchType, int]]:
    """计算节点对搜索词的命中类型与相关度，未命中返回 None"""
    term = term.casefold()
    name = (node.name or "").casefold()
    code = (node.code or "").casefold()
    description = (node.description or "").casefold()

    candidates = []
    if name == term:
        candidates.append(MatchType.EXACT_NAME)
    elif name.startswith(term):
        candidates.append(MatchType.NAME_PREFIX)
    elif term in name:
        candidates.append(MatchType.NAME_CONTAINS)
    if criteria.search_in_codes:
        if code == term:
            candidates.append(MatchType.EXACT_CODE)
        elif term in code:
            candidates.append(MatchType.CODE_CONTAINS)
    if criteria.search_in_descriptions and term in description:
        candidates.append(MatchType.DESCRIPTION)

    if not candidates:
        return None
    best = max(candidates, key=lambda m: RELEVANCE_SCORES[m])
    return best, RELEVANCE_SCORES[best]


class SearchEngine:
    """分类节点搜索

    使用示例:
        engine = SearchEngine(NodeStore(), TreeSettings())
        results = engine.search("alg", scope_node_id=1)
        results[0].breadcrumbs    # [Root, Math, Algebra]
    """

    def __init__(self, nodes: NodeStore, settings: Optional[TreeSettings] = None):
        self.nodes = nodes
        self.settings = settings or TreeSettings()

    def search(
        self,
        term: Union[str, SearchCriteria],
        scope_node_id: Optional[int] = None,
        include_inactive: bool = False,
        max_results: Optional[int] = None,
    ) -> List[SearchResult]:
        """搜索节点

        Args:
            term: 搜索词，或完整的 SearchCriteria（此时忽略其余参数）
            scope_node_id: 限定在该节点的子树内（含自身）
            include_inactive: 是否包含停用节点
            max_results: 最多返回条数，None 时使用配置

        Raises:
            NodeNotFoundError: scope 节点不存在
        """
        if isinstance(term, SearchCriteria):
            criteria = term
        else:
            criteria = SearchCriteria(
                term=term,
                scope_node_id=scope_node_id,
                include_inactive=include_inactive,
                max_results=max_results,
            )
        limit = criteria.max_results or self.settings.search_max_results
        needle = criteria.term.casefold()

        model = CategoryNode
        query = model.query.filter(model.deleted_at.is_(None))
        if criteria.scope_node_id is not None:
            scope = self.nodes.get(criteria.scope_node_id)
            query = query.filter(model.path.startswith(scope.path))
        if not criteria.include_inactive:
            query = query.filter(model.is_active.is_(True))
        if criteria.category_type is not None:
            query = query.filter(model.category_type == criteria.category_type)
        if criteria.level is not None:
            query = query.filter(model.level == criteria.level)

        # 数据库的 lower() 通常只折叠 ASCII，匹配在 Python 侧用 casefold 完成
        candidates = query.all()

        scored = []
        for node in candidates:
            match = score_match(node, needle, criteria)
            if match is not None:
                scored.append((node, match[0], match[1]))
        scored.sort(key=lambda x: (-x[2], x[0].level, x[0].sort_order, x[0].id))
        scored = scored[:limit]

        breadcrumbs = self._breadcrumbs_for([node for node, _, _ in scored])
        results = [
            SearchResult(
                node=node_to_info(node),
                breadcrumbs=breadcrumbs[node.id],
                match_type=match_type,
                relevance_score=score,
            )
            for node, match_type, score in scored
        ]
        logger.debug(f"搜索: term={criteria.term!r}, scope={criteria.scope_node_id}, hits={len(results)}")
        return results

    def _breadcrumbs_for(self, hits: List[CategoryNode]) -> Dict[int, List[Breadcrumb]]:
        """一次查询取回所有命中节点的祖先，拼出面包屑（根在前，含命中节点）"""
        path_ids = {node.id: path_codec.parse_path(node.path) for node in hits}
        wanted = {i for ids in path_ids.values() for i in ids}
        by_id = self.nodes.get_many(wanted, include_deleted=True)
        return {
            node_id: [node_to_breadcrumb(by_id[i]) for i in ids if i in by_id]
            for node_id, ids in path_ids.items()
        }

    def get_breadcrumbs(self, node_id: int) -> List[Breadcrumb]:
        node = self.nodes.get(node_id)
        return self._breadcrumbs_for([node])[node.id]


__all__ = [
    "RELEVANCE_SCORES",
    "score_match",
    "SearchEngine",
]
