"""分类树服务

对外的统一入口，组合各组件并负责：
- 结构变更前锁定受影响的子树（TreeLockManager），加锁后重新读取路径，
  路径已被其他变更修改时重新加锁
- 变更完成后按受影响的路径失效子树缓存
- 返回结果对象的变更操作把 TreeError 转换为 success=False 的结果
  （raise_on_error=True 时原样抛出）
"""

from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional, Union

from sqlalchemy import select

from ..config import TreeSettings
from ..exceptions import LockTimeoutError, MalformedPathError, TreeError
from ..log import get_logger
from ..orm import INCLUDE_DELETED_OPTION, atomic
from ..orm.tree import path_codec
from .cache import SubtreeCache
from .categorization_store import CategorizationStore
from .enums import CategorizationPolicy, ChildHandlingStrategy, CollisionPolicy
from .import_export import AbortSignal, ImportExportEngine, TemplateInput
from .locking import FOREST_PREFIX, TreeLockManager
from .mappers import categorization_to_info, node_to_info, node_to_tree_node
from .models import CategoryNode
from .mutator import TreeMutator
from .node_store import NodeStore
from .schemas import (
    Breadcrumb,
    BulkAssignResult,
    BulkOperationResult,
    CategorizationFixResult,
    CategorizationInfo,
    CategorizationStatistics,
    CategorizationValidationResult,
    CategoryTreeNode,
    CopyResult,
    DeleteResult,
    ImportResult,
    MergeResult,
    MoveResult,
    NodeCreate,
    NodeInfo,
    NodeMove,
    NodePatch,
    OperationResult,
    RepairResult,
    RestoreResult,
    SearchCriteria,
    SearchResult,
    TreeExport,
    TreeStatistics,
    TreeValidationResult,
)
from .search import SearchEngine
from .statistics import StatisticsAggregator
from .validator import TreeValidator

logger = get_logger("qbtree.category.service")

# 加锁后发现路径变化时重新加锁的次数上限
_MAX_LOCK_RETRIES = 3


class CategoryTreeService:
    """分类树服务

    使用示例:
        from qbtree.orm import init_database
        from qbtree.category import CategoryTreeService, ChildHandlingStrategy

        init_database("sqlite:///./question_bank.db", create_tables=True)
        service = CategoryTreeService()

        root = service.create_node({"name": "Root", "code": "ROOT"})
        math = service.create_node({"name": "Math", "code": "MATH"}, parent_id=root.id)

        result = service.move_node(math.id, new_parent_id=None)
        if not result.success:
            print(result.error_code, result.error_message)

        service.delete_node(root.id, ChildHandlingStrategy.PREVENT_DELETION, raise_on_error=True)
    """

    def __init__(
        self,
        settings: Optional[TreeSettings] = None,
        locks: Optional[TreeLockManager] = None,
        cache: Optional[SubtreeCache] = None,
    ):
        self.settings = settings or TreeSettings()
        self.nodes = NodeStore()
        self.categorizations = CategorizationStore()
        self.mutator = TreeMutator(self.nodes, self.categorizations, self.settings)
        self.validator = TreeValidator(self.nodes, self.settings)
        self.search_engine = SearchEngine(self.nodes, self.settings)
        self.import_export = ImportExportEngine(self.nodes, self.settings)
        self.statistics = StatisticsAggregator(self.nodes, self.categorizations)
        self.locks = locks or TreeLockManager(self.settings.lock_mode, self.settings.lock_timeout)
        self.cache = cache or SubtreeCache(self.settings.cache_size, self.settings.cache_enabled)

    @property
    def session(self):
        return self.nodes.session

    # ==================== 加锁与结果转换 ====================

    def _path_of(self, node_id: Optional[int]) -> Optional[str]:
        """读取数据库中的最新路径（不经过 identity map），不存在时返回 None"""
        if node_id is None:
            return None
        stmt = (
            select(CategoryNode.path)
            .where(CategoryNode.id == node_id)
            .execution_options(**{INCLUDE_DELETED_OPTION: True})
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _parent_path_of(self, node_id: Optional[int]) -> Optional[str]:
        path = self._path_of(node_id)
        if path is None:
            return None
        try:
            return path_codec.parent_path_of(path)
        except MalformedPathError:
            return None

    @contextmanager
    def _locked(self, resolve: Callable[[], List[Optional[str]]], name: str) -> Iterator[List[Optional[str]]]:
        """锁定 resolve() 给出的路径前缀，完成后失效缓存

        resolve 在加锁后会再执行一次，结果变化（路径被并发变更修改）时重新加锁，
        连续 _MAX_LOCK_RETRIES 次仍变化时抛出 LockTimeoutError。
        """
        entries = None
        paths = resolve()
        try:
            entries = self.locks.acquire(paths)
            for _ in range(_MAX_LOCK_RETRIES):
                current = resolve()
                if current == paths:
                    break
                logger.debug(f"[{name}] 加锁期间路径已变化，重新加锁: {paths} -> {current}")
                self.locks.release(entries)
                entries = None
                paths = current
                entries = self.locks.acquire(paths)
            else:
                logger.warning(f"[{name}] 路径持续变化，放弃加锁: {paths}")
                raise LockTimeoutError([FOREST_PREFIX if p is None else p for p in paths], self.locks.timeout)
            self.session.expire_all()
            yield paths
        finally:
            if entries is not None:
                self.locks.release(entries)
            self.cache.invalidate_paths(paths)

    def _as_result(self, result_cls, func: Callable[[], OperationResult], raise_on_error: bool, name: str):
        try:
            return func()
        except TreeError as e:
            if raise_on_error:
                raise
            logger.warning(f"[{name}] 操作失败: {e.code_value} {e.message}")
            return result_cls(success=False, error_code=e.code_value, error_message=e.message)

    # ==================== 节点 CRUD ====================

    def create_node(self, data: Union[NodeCreate, dict], parent_id: Optional[int] = None) -> NodeInfo:
        """创建节点（排在同级末尾）

        Raises:
            ParentNotFoundError / DuplicateCodeError
        """
        with self._locked(lambda: [self._path_of(parent_id)], "create"):
            with atomic(self.session, "create"):
                node = self.nodes.create(data, parent_id=parent_id)
            info = node_to_info(node, child_count=0, item_count=0)
        logger.info(f"创建节点: id={info.id}, code={info.code}, parent={parent_id}")
        return info

    def update_node(self, node_id: int, patch: Union[NodePatch, dict]) -> NodeInfo:
        """更新节点属性（不能修改 parent_id / path / sort_order）"""
        with self._locked(lambda: [self._path_of(node_id)], "update"):
            with atomic(self.session, "update"):
                node = self.nodes.update_attributes(node_id, patch)
            return node_to_info(node)

    def get_node(self, node_id: int) -> NodeInfo:
        """获取节点（附带子节点数和子树题目数）"""
        node = self.nodes.get(node_id)
        item_counts = self.statistics.get_descendant_item_counts(node_id)
        return node_to_info(
            node,
            child_count=self.nodes.count_children(node.id),
            item_count=item_counts.get(node.id, 0),
        )

    def get_node_by_code(self, code: str) -> Optional[NodeInfo]:
        node = self.nodes.get_by_code(code, include_deleted=False)
        return node_to_info(node) if node else None

    def get_children(self, parent_id: Optional[int] = None, include_inactive: bool = True) -> List[NodeInfo]:
        if parent_id is not None:
            self.nodes.get(parent_id)
        return [node_to_info(n) for n in self.nodes.get_children(parent_id, include_inactive)]

    def get_roots(self, include_inactive: bool = True) -> List[NodeInfo]:
        return self.get_children(None, include_inactive)

    def get_descendants(self, node_id: int) -> List[NodeInfo]:
        node = self.nodes.get(node_id)
        return [node_to_info(n) for n in self.nodes.get_subtree(node, include_root=False)]

    def get_ancestors(self, node_id: int) -> List[NodeInfo]:
        """祖先节点（根在前，不含自身）"""
        node = self.nodes.get(node_id)
        return [node_to_info(n) for n in self.nodes.get_ancestors(node)]

    def get_breadcrumbs(self, node_id: int) -> List[Breadcrumb]:
        return self.search_engine.get_breadcrumbs(node_id)

    def get_siblings(self, node_id: int, include_self: bool = False) -> List[NodeInfo]:
        """同级节点（按排序号），根节点的同级是其他根节点"""
        node = self.nodes.get(node_id)
        return [node_to_info(n) for n in self.nodes.get_siblings(node, include_self)]

    def find_node_by_path(self, tree_path: str) -> Optional[NodeInfo]:
        """按路径查找存活节点

        接受物化路径（"-1-2-3-"）或从根开始、以 "/" 分隔的编码路径（"ROOT/MATH/ALG"）。

        Raises:
            MalformedPathError: 以分隔符开头但格式错误的物化路径
        """
        tree_path = (tree_path or "").strip()
        if tree_path.startswith(path_codec.PATH_SEPARATOR):
            node = self.nodes.find_by_path(tree_path)
        else:
            codes = [c.strip() for c in tree_path.split("/") if c.strip()]
            node = self.nodes.find_by_code_path(codes) if codes else None
        return node_to_info(node) if node else None

    def get_tree(self, root_id: Optional[int] = None, include_inactive: bool = False) -> List[CategoryTreeNode]:
        """嵌套树视图（带直接/子树题目归类数），结果经子树缓存"""
        key = ("tree", root_id, include_inactive)
        cached = self.cache.get(key)
        if cached is not None:
            return [t.model_copy(deep=True) for t in cached]

        if root_id is None:
            nodes = self.nodes.list_all()
            root_path = None
        else:
            root = self.nodes.get(root_id)
            nodes = self.nodes.get_subtree(root)
            root_path = root.path

        direct = self.categorizations.count_by_node([n.id for n in nodes])
        views = {}
        roots: List[CategoryTreeNode] = []
        # nodes 按层级排序，父节点总在子节点之前；停用节点的子树整体隐藏
        for n in nodes:
            if not include_inactive and not n.is_active:
                continue
            view = node_to_tree_node(n, direct.get(n.id, 0))
            views[n.id] = view
            is_top = n.id == root_id if root_id is not None else n.parent_id is None
            if is_top:
                roots.append(view)
            elif n.parent_id in views:
                views[n.parent_id].children.append(view)
        for view in roots:
            self._sum_item_counts(view)

        self.cache.set(key, root_path, roots)
        return [t.model_copy(deep=True) for t in roots]

    def _sum_item_counts(self, view: CategoryTreeNode) -> int:
        view.item_count = view.direct_item_count + sum(self._sum_item_counts(c) for c in view.children)
        return view.item_count

    # ==================== 结构变更 ====================

    def move_node(
        self,
        node_id: int,
        new_parent_id: Optional[int] = None,
        new_sort_order: Optional[int] = None,
        max_affected: Optional[int] = None,
        raise_on_error: bool = False,
    ) -> MoveResult:
        """移动节点（含子树）到新父节点下"""
        def run():
            resolve = lambda: [self._parent_path_of(node_id), self._path_of(new_parent_id)]
            with self._locked(resolve, "move"):
                return self.mutator.move(node_id, new_parent_id, new_sort_order, max_affected)
        return self._as_result(MoveResult, run, raise_on_error, "move")

    def copy_node(
        self,
        node_id: int,
        new_parent_id: Optional[int] = None,
        include_children: bool = True,
        include_items: bool = False,
        max_affected: Optional[int] = None,
        raise_on_error: bool = False,
    ) -> CopyResult:
        """复制节点（可含子树与题目归类）"""
        def run():
            resolve = lambda: [self._path_of(node_id), self._path_of(new_parent_id)]
            with self._locked(resolve, "copy"):
                return self.mutator.copy(node_id, new_parent_id, include_children, include_items, max_affected)
        return self._as_result(CopyResult, run, raise_on_error, "copy")

    def delete_node(
        self,
        node_id: int,
        strategy: Union[ChildHandlingStrategy, str] = ChildHandlingStrategy.PREVENT_DELETION,
        categorization_policy: Optional[Union[CategorizationPolicy, str]] = None,
        max_affected: Optional[int] = None,
        raise_on_error: bool = False,
    ) -> DeleteResult:
        """按子节点处理策略软删除节点"""
        strategy = ChildHandlingStrategy(strategy)

        def run():
            def resolve():
                paths = [self._parent_path_of(node_id)]
                if strategy == ChildHandlingStrategy.REASSIGN_TO_ROOT:
                    paths.append(None)
                return paths
            with self._locked(resolve, "delete"):
                return self.mutator.delete(node_id, strategy, categorization_policy, max_affected)
        return self._as_result(DeleteResult, run, raise_on_error, "delete")

    def soft_delete_node(self, node_id: int) -> bool:
        """软删除节点及其整个子树（同一批次，可通过 restore_node 整体恢复）"""
        result = self.delete_node(node_id, ChildHandlingStrategy.DELETE_WITH_PARENT, raise_on_error=True)
        return result.success

    def restore_node(self, node_id: int, raise_on_error: bool = False) -> RestoreResult:
        """恢复软删除的节点及同批删除的子孙"""
        def run():
            with self._locked(lambda: [self._parent_path_of(node_id)], "restore"):
                return self.mutator.restore(node_id)
        return self._as_result(RestoreResult, run, raise_on_error, "restore")

    def hard_delete_node(self, node_id: int) -> bool:
        """物理删除节点（不能有子节点，含已软删除的子节点）"""
        with self._locked(lambda: [self._parent_path_of(node_id)], "hard_delete"):
            with atomic(self.session, "hard_delete"):
                self.nodes.hard_delete(node_id)
        return True

    def purge_deleted(self) -> int:
        """物理删除所有已软删除的节点"""
        with self._locked(lambda: [None], "purge"):
            with atomic(self.session, "purge"):
                purged = self.nodes.purge_deleted()
        return len(purged)

    def reorder_children(self, parent_id: Optional[int], ordered_ids: List[int]) -> bool:
        """按给定顺序重排子节点

        Raises:
            ReorderSetMismatchError: 列表与当前子节点集合不一致
        """
        with self._locked(lambda: [self._path_of(parent_id)], "reorder"):
            return self.mutator.reorder(parent_id, ordered_ids)

    def normalize_sort_orders(self, parent_id: Optional[int] = None, all_groups: bool = False) -> int:
        resolve = (lambda: [None]) if all_groups else (lambda: [self._path_of(parent_id)])
        with self._locked(resolve, "normalize"):
            return self.mutator.normalize_sort_orders(parent_id, all_groups)

    def compact_tree(self) -> int:
        """清理停用且子树内没有题目的中间节点"""
        with self._locked(lambda: [None], "compact"):
            return len(self.mutator.compact())

    # ==================== 合并与批量 ====================

    def merge_nodes(
        self,
        source_id: int,
        target_id: int,
        max_affected: Optional[int] = None,
        raise_on_error: bool = False,
    ) -> MergeResult:
        """把源节点的子节点与题目归类并入目标节点，然后软删除源节点"""
        def run():
            resolve = lambda: [self._parent_path_of(source_id), self._path_of(target_id)]
            with self._locked(resolve, "merge"):
                return self.mutator.merge(source_id, target_id, max_affected)
        return self._as_result(MergeResult, run, raise_on_error, "merge")

    def bulk_move_nodes(
        self,
        moves: Iterable[Union[NodeMove, dict]],
        max_affected: Optional[int] = None,
        raise_on_error: bool = False,
    ) -> BulkOperationResult:
        """一次加锁、一个事务内执行一批移动"""
        moves = [m if isinstance(m, NodeMove) else NodeMove(**m) for m in moves]

        def resolve():
            paths = []
            for m in moves:
                paths.extend([self._parent_path_of(m.node_id), self._path_of(m.new_parent_id)])
            return paths

        def run():
            with self._locked(resolve, "bulk_move"):
                return self.mutator.bulk_move(moves, max_affected)
        return self._as_result(BulkOperationResult, run, raise_on_error, "bulk_move")

    def bulk_delete_nodes(
        self,
        node_ids: Iterable[int],
        strategy: Union[ChildHandlingStrategy, str] = ChildHandlingStrategy.PREVENT_DELETION,
        categorization_policy: Optional[Union[CategorizationPolicy, str]] = None,
        max_affected: Optional[int] = None,
        raise_on_error: bool = False,
    ) -> BulkOperationResult:
        """一次加锁、一个事务内删除一批节点"""
        node_ids = list(node_ids)
        strategy = ChildHandlingStrategy(strategy)

        def resolve():
            paths = [self._parent_path_of(i) for i in node_ids]
            if strategy == ChildHandlingStrategy.REASSIGN_TO_ROOT:
                paths.append(None)
            return paths

        def run():
            with self._locked(resolve, "bulk_delete"):
                return self.mutator.bulk_delete(node_ids, strategy, categorization_policy, max_affected)
        return self._as_result(BulkOperationResult, run, raise_on_error, "bulk_delete")

    def bulk_activate_nodes(self, node_ids: Iterable[int], raise_on_error: bool = False) -> BulkOperationResult:
        return self._bulk_set_active(node_ids, True, raise_on_error)

    def bulk_deactivate_nodes(self, node_ids: Iterable[int], raise_on_error: bool = False) -> BulkOperationResult:
        return self._bulk_set_active(node_ids, False, raise_on_error)

    def _bulk_set_active(self, node_ids: Iterable[int], is_active: bool, raise_on_error: bool) -> BulkOperationResult:
        node_ids = list(node_ids)

        def run():
            with self._locked(lambda: [self._path_of(i) for i in node_ids], "bulk_set_active"):
                return self.mutator.bulk_set_active(node_ids, is_active)
        return self._as_result(BulkOperationResult, run, raise_on_error, "bulk_set_active")

    # ==================== 校验与修复 ====================

    def validate_tree(self) -> TreeValidationResult:
        return self.validator.validate_all()

    def repair_tree(self, node_ids: Optional[Iterable[int]] = None) -> RepairResult:
        """按 parent_id 重建路径与层级（node_ids 为空时处理全部节点）"""
        with self._locked(lambda: [None], "repair"):
            return self.mutator.repair_paths(node_ids)

    # ==================== 搜索 ====================

    def search(
        self,
        term: Union[str, SearchCriteria],
        scope_node_id: Optional[int] = None,
        include_inactive: bool = False,
        max_results: Optional[int] = None,
    ) -> List[SearchResult]:
        return self.search_engine.search(term, scope_node_id, include_inactive, max_results)

    # ==================== 导入导出 ====================

    def export_subtree(self, node_id: Optional[int] = None, include_inactive: bool = True) -> TreeExport:
        return self.import_export.export_subtree(node_id, include_inactive)

    def import_tree(
        self,
        template: TemplateInput,
        target_parent_id: Optional[int] = None,
        collision_policy: Union[CollisionPolicy, str] = CollisionPolicy.SKIP,
        should_abort: AbortSignal = None,
        raise_on_error: bool = False,
    ) -> ImportResult:
        """在目标父节点下导入模板"""
        def run():
            with self._locked(lambda: [self._path_of(target_parent_id)], "import"):
                return self.import_export.import_tree(template, target_parent_id, collision_policy, should_abort)
        return self._as_result(ImportResult, run, raise_on_error, "import")

    def validate_import(
        self,
        template: TemplateInput,
        target_parent_id: Optional[int] = None,
        collision_policy: Union[CollisionPolicy, str] = CollisionPolicy.SKIP,
        raise_on_error: bool = False,
    ) -> ImportResult:
        """导入预检：推演导入结果（dry_run=True），不加锁也不写入"""
        def run():
            return self.import_export.preview_import(template, target_parent_id, collision_policy)
        return self._as_result(ImportResult, run, raise_on_error, "validate_import")

    # ==================== 题目归类 ====================

    def assign_item_to_category(
        self,
        item_id: int,
        node_id: int,
        is_primary: bool = False,
        weight: Optional[float] = None,
        confidence: Optional[float] = None,
        assigned_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> bool:
        """把题目归类到节点（题目的第一个归类自动成为主分类）

        与删除节点互斥：节点所在子树加锁后再检查节点是否存在。
        """
        with self._locked(lambda: [self._path_of(node_id)], "assign"):
            with atomic(self.session, "assign"):
                self.categorizations.assign(item_id, node_id, is_primary, weight, confidence, assigned_by, note)
        return True

    def remove_item_from_category(self, item_id: int, node_id: int) -> bool:
        with self._locked(lambda: [self._path_of(node_id)], "unassign"):
            with atomic(self.session, "unassign"):
                return self.categorizations.remove(item_id, node_id)

    def set_primary_category(self, item_id: int, node_id: int, strict: bool = False) -> CategorizationInfo:
        with self._locked(lambda: [self._path_of(node_id)], "set_primary"):
            with atomic(self.session, "set_primary"):
                record = self.categorizations.set_primary(item_id, node_id, strict)
            return categorization_to_info(record)

    def bulk_assign_items(
        self,
        item_ids: Iterable[int],
        node_id: int,
        set_as_primary: bool = False,
        assigned_by: Optional[str] = None,
        raise_on_error: bool = False,
    ) -> BulkAssignResult:
        def run():
            with self._locked(lambda: [self._path_of(node_id)], "bulk_assign"):
                with atomic(self.session, "bulk_assign"):
                    return self.categorizations.bulk_assign(item_ids, node_id, set_as_primary, assigned_by)
        return self._as_result(BulkAssignResult, run, raise_on_error, "bulk_assign")

    def move_items(self, item_ids: Iterable[int], from_node_id: int, to_node_id: int) -> int:
        resolve = lambda: [self._path_of(from_node_id), self._path_of(to_node_id)]
        with self._locked(resolve, "move_items"):
            with atomic(self.session, "move_items"):
                return self.categorizations.move_items(item_ids, from_node_id, to_node_id)

    def get_item_categories(self, item_id: int) -> List[CategorizationInfo]:
        return [categorization_to_info(r) for r in self.categorizations.get_item_records(item_id)]

    def get_node_items(self, node_id: int, include_descendants: bool = False) -> List[CategorizationInfo]:
        node = self.nodes.get(node_id)
        if include_descendants:
            node_ids = [n.id for n in self.nodes.get_subtree(node)]
        else:
            node_ids = [node.id]
        return [categorization_to_info(r) for r in self.categorizations.get_node_records(node_ids)]

    def validate_categorizations(self) -> CategorizationValidationResult:
        return self.categorizations.validate()

    def fix_categorizations(self) -> CategorizationFixResult:
        with self._locked(lambda: [None], "fix_categorizations"):
            with atomic(self.session, "fix_categorizations"):
                return self.categorizations.fix()

    # ==================== 统计 ====================

    def get_statistics(self, root_id: Optional[int] = None) -> TreeStatistics:
        return self.statistics.get_tree_statistics(root_id)

    def get_categorization_statistics(self, top_n: int = 10) -> CategorizationStatistics:
        return self.statistics.get_categorization_statistics(top_n)


__all__ = [
    "CategoryTreeService",
]
