"""树结构变更

所有结构变更（移动、复制、删除、合并、批量操作、排序、恢复、修复）的唯一入口：
- 先校验（父节点存在、无循环、影响节点数不超限），校验失败时不做任何写入
- 每个操作在一个事务内完成（atomic），失败整体回滚
- 路径改写统一经 NodeStore.rewrite_subtree_path / TreeMixin.set_path

加锁由服务层负责，TreeMutator 本身假定调用方已持有相关子树的锁。
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Union

from ..config import TreeSettings
from ..exceptions import (
    CycleDetectedError,
    HasChildrenError,
    ReorderSetMismatchError,
    SubtreeTooLargeError,
)
from ..log import get_logger
from ..orm import atomic
from ..orm.tree import iter_depth_first, path_codec
from .categorization_store import CategorizationStore
from .enums import CategorizationPolicy, ChildHandlingStrategy
from .mappers import node_to_create
from .models import CategoryNode
from .node_store import NodeStore, generate_unique_code
from .schemas import (
    BulkOperationResult,
    CopyResult,
    DeleteResult,
    MergeResult,
    MoveResult,
    NodeMove,
    RepairResult,
    RestoreResult,
)

logger = get_logger("qbtree.category.mutator")


class TreeMutator:
    """树结构变更

    使用示例:
        mutator = TreeMutator(NodeStore(), CategorizationStore(), TreeSettings())

        mutator.move(3, new_parent_id=1)
        mutator.copy(2, new_parent_id=5, include_items=True)
        mutator.delete(2, ChildHandlingStrategy.REASSIGN_TO_PARENT)
        mutator.reorder(1, [4, 2, 3])
        mutator.merge(5, 2)
        mutator.bulk_move([{"node_id": 3, "new_parent_id": 4}])
    """

    def __init__(
        self,
        nodes: NodeStore,
        categorizations: CategorizationStore,
        settings: Optional[TreeSettings] = None,
    ):
        self.nodes = nodes
        self.categorizations = categorizations
        self.settings = settings or TreeSettings()

    @property
    def session(self):
        return self.nodes.session

    # ==================== 校验 ====================

    def _check_affected(self, node_id: int, affected: int, max_affected: Optional[int] = None) -> None:
        limit = self.settings.max_affected_nodes if max_affected is None else max_affected
        if limit and affected > limit:
            raise SubtreeTooLargeError(node_id, affected, limit)

    def _check_no_cycle(self, node: CategoryNode, new_parent: Optional[CategoryNode]) -> None:
        """目标父节点不能是自身或其子孙

        先按路径判断；再沿 parent_id 向上走（最多 max_depth * 2 步），
        防止路径已损坏时漏判。
        """
        if new_parent is None:
            return
        if new_parent.id == node.id or node.is_ancestor_of(new_parent):
            raise CycleDetectedError(node.id, new_parent.id)
        current_id = new_parent.parent_id
        for _ in range(self.settings.max_depth * 2):
            if current_id is None:
                return
            if current_id == node.id:
                raise CycleDetectedError(node.id, new_parent.id)
            parent = self.nodes.find(current_id, include_deleted=True)
            current_id = parent.parent_id if parent else None

    def _depth_warning(self, deepest_level: int) -> Optional[str]:
        if deepest_level > self.settings.max_depth:
            return f"操作后最大层级 {deepest_level} 超过建议深度 {self.settings.max_depth}"
        return None

    # ==================== 移动 ====================

    def move(
        self,
        node_id: int,
        new_parent_id: Optional[int] = None,
        new_sort_order: Optional[int] = None,
        max_affected: Optional[int] = None,
    ) -> MoveResult:
        """移动节点（含整个子树）

        Args:
            node_id: 要移动的节点
            new_parent_id: 新父节点，None 表示移为根节点
            new_sort_order: 在新父节点下的位置（从 1 开始），None 表示末尾
            max_affected: 影响节点数上限，None 时使用配置

        Raises:
            NodeNotFoundError / ParentNotFoundError / CycleDetectedError / SubtreeTooLargeError
        """
        with atomic(self.session, "move"):
            result = self._move(node_id, new_parent_id, new_sort_order, max_affected)
        logger.info(f"移动节点: id={node_id}, {result.old_path} -> {result.new_path}, affected={result.affected_count}")
        return result

    def _move(self, node_id, new_parent_id, new_sort_order, max_affected) -> MoveResult:
        """移动的写入部分，由调用方负责事务"""
        node = self.nodes.get(node_id)
        new_parent = self.nodes.get_parent_node(new_parent_id)
        self._check_no_cycle(node, new_parent)
        affected = self.nodes.count_subtree(node)
        self._check_affected(node_id, affected, max_affected)

        old_parent_id, old_path, old_level = node.parent_id, node.path, node.level
        subtree_height = self.nodes.max_level_in_subtree(node) - old_level
        new_path = node.build_path(new_parent)

        node.parent_id = new_parent_id
        self.nodes.rewrite_subtree_path(node, new_path)
        if old_parent_id != new_parent_id:
            CategoryNode.insert_at(node, new_sort_order, {"parent_id": new_parent_id})
            self.nodes.resequence_children(old_parent_id, exclude_ids=[node.id])
        elif new_sort_order is not None:
            # 同一父节点下只调整位置
            CategoryNode.insert_at(node, new_sort_order, {"parent_id": new_parent_id})
        self.session.flush()

        result = MoveResult(
            node_id=node.id,
            old_parent_id=old_parent_id,
            new_parent_id=new_parent_id,
            old_path=old_path,
            new_path=new_path,
            affected_count=affected,
        )
        warning = self._depth_warning(node.level + subtree_height)
        if warning:
            result.warnings.append(warning)
        return result

    # ==================== 复制 ====================

    def copy(
        self,
        node_id: int,
        new_parent_id: Optional[int] = None,
        include_children: bool = True,
        include_items: bool = False,
        max_affected: Optional[int] = None,
        assigned_by: Optional[str] = None,
    ) -> CopyResult:
        """复制节点（可含子树和题目归类）

        按深度优先、同级按排序号的顺序复制，结果可重现。
        复制出的根节点名称加后缀；所有编码都会生成新的唯一编码。
        复制的题目归类都是次分类，不影响题目已有的主分类。
        """
        with atomic(self.session, "copy"):
            source = self.nodes.get(node_id)
            target_parent = self.nodes.get_parent_node(new_parent_id)
            snapshot = self.nodes.get_subtree(source) if include_children else [source]
            self._check_affected(node_id, len(snapshot), max_affected)

            children_of: Dict[int, List[CategoryNode]] = defaultdict(list)
            for n in snapshot[1:]:
                children_of[n.parent_id].append(n)

            taken = self.nodes.taken_codes()
            name_suffix = self.settings.copy_name_suffix
            id_mapping: Dict[int, int] = {}
            deepest = 0
            for src, parent_src, _depth in iter_depth_first([source], lambda n: children_of[n.id]):
                overrides = {"code": generate_unique_code(src.code, taken, self.settings.copy_code_suffix)}
                if parent_src is None:
                    overrides["name"] = src.name[:200 - len(name_suffix)] + name_suffix
                    parent_id = target_parent.id if target_parent else None
                else:
                    parent_id = id_mapping[parent_src.id]
                copied = self.nodes.create(node_to_create(src, **overrides), parent_id=parent_id)
                id_mapping[src.id] = copied.id
                deepest = max(deepest, copied.level)

            items_copied = 0
            if include_items:
                items_copied = self.categorizations.copy_to_nodes(id_mapping, assigned_by=assigned_by)

            result = CopyResult(
                source_id=node_id,
                new_root_id=id_mapping[source.id],
                copied_count=len(id_mapping),
                items_copied=items_copied,
                id_mapping=id_mapping,
            )
            warning = self._depth_warning(deepest)
            if warning:
                result.warnings.append(warning)

        logger.info(f"复制节点: id={node_id} -> {result.new_root_id}, count={result.copied_count}")
        return result

    # ==================== 删除 ====================

    def delete(
        self,
        node_id: int,
        strategy: ChildHandlingStrategy = ChildHandlingStrategy.PREVENT_DELETION,
        categorization_policy: Optional[CategorizationPolicy] = None,
        max_affected: Optional[int] = None,
    ) -> DeleteResult:
        """软删除节点，按策略处理子节点与题目归类

        Args:
            strategy: 子节点处理策略
            categorization_policy: 题目归类处理策略，None 时使用配置

        Raises:
            HasChildrenError: PREVENT_DELETION 策略下节点存在子节点
            SubtreeTooLargeError: 影响节点数超限
        """
        strategy = ChildHandlingStrategy(strategy)
        with atomic(self.session, "delete"):
            result = self._delete(node_id, strategy, categorization_policy, max_affected)

        logger.info(
            f"删除节点: id={node_id}, strategy={strategy.value}, deleted={len(result.deleted_ids)}, "
            f"children_reassigned={result.children_reassigned}, items_reassigned={result.items_reassigned}, "
            f"items_removed={result.items_removed}"
        )
        return result

    def _delete(self, node_id, strategy, categorization_policy, max_affected) -> DeleteResult:
        """删除的写入部分，由调用方负责事务"""
        policy = CategorizationPolicy(categorization_policy or self.settings.categorization_policy)
        handlers = {
            ChildHandlingStrategy.PREVENT_DELETION: self._delete_prevent,
            ChildHandlingStrategy.DELETE_WITH_PARENT: self._delete_with_parent,
            ChildHandlingStrategy.REASSIGN_TO_PARENT: self._delete_reassign_to_parent,
            ChildHandlingStrategy.REASSIGN_TO_ROOT: self._delete_reassign_to_root,
        }

        node = self.nodes.get(node_id)
        children = self.nodes.get_children(node.id)
        result = DeleteResult(node_id=node.id, strategy=strategy)

        deleted = handlers[strategy](node, children, result, max_affected)
        result.deleted_ids = [n.id for n in deleted]

        reassigned, removed, lost = self.categorizations.reconcile_deleted_nodes(
            result.deleted_ids, node.parent_id, policy
        )
        result.items_reassigned = reassigned
        result.items_removed = removed
        result.items_lost_primary = len(lost)
        if lost:
            result.warnings.append(f"{len(lost)} 个题目失去了主分类，需要重新归类")
        return result

    def _delete_prevent(self, node, children, result, max_affected) -> List[CategoryNode]:
        if children:
            raise HasChildrenError(node.id, len(children))
        self.nodes.mark_deleted([node])
        self.nodes.resequence_children(node.parent_id)
        return [node]

    def _delete_with_parent(self, node, children, result, max_affected) -> List[CategoryNode]:
        subtree = self.nodes.get_subtree(node)
        self._check_affected(node.id, len(subtree), max_affected)
        self.nodes.mark_deleted(subtree)
        self.nodes.resequence_children(node.parent_id)
        return subtree

    def _reattach_children(self, children: List[CategoryNode], parent: Optional[CategoryNode]) -> None:
        parent_id = parent.id if parent else None
        for child in children:
            child.parent_id = parent_id
            self.nodes.rewrite_subtree_path(child, child.build_path(parent))

    def _delete_reassign_to_parent(self, node, children, result, max_affected) -> List[CategoryNode]:
        """子节点提升到被删节点的位置，保持原有相对顺序"""
        self._check_affected(node.id, self.nodes.count_subtree(node), max_affected)
        parent = self.nodes.get_parent_node(node.parent_id)
        siblings = self.nodes.get_children(node.parent_id)
        position = next(i for i, s in enumerate(siblings) if s.id == node.id)
        new_order = siblings[:position] + children + siblings[position + 1:]

        self._reattach_children(children, parent)
        self.nodes.mark_deleted([node])
        CategoryNode.resequence(new_order)
        self.session.flush()
        result.children_reassigned = len(children)
        return [node]

    def _delete_reassign_to_root(self, node, children, result, max_affected) -> List[CategoryNode]:
        """子节点变为根节点，排在现有根节点之后"""
        self._check_affected(node.id, self.nodes.count_subtree(node), max_affected)
        roots = [r for r in self.nodes.get_children(None) if r.id != node.id]

        self._reattach_children(children, None)
        self.nodes.mark_deleted([node])
        CategoryNode.resequence(roots + children)
        if node.parent_id is not None:
            self.nodes.resequence_children(node.parent_id)
        self.session.flush()
        result.children_reassigned = len(children)
        return [node]

    # ==================== 合并 ====================

    def merge(self, source_id: int, target_id: int, max_affected: Optional[int] = None) -> MergeResult:
        """把源节点合并到目标节点

        源节点的子节点（连同子树）移到目标节点下，排在目标现有子节点之后；
        源节点上的题目归类转移到目标节点；最后软删除源节点。

        Raises:
            NodeNotFoundError: 源或目标不存在
            CycleDetectedError: 目标是源节点自身或其子孙
            ItemsNotAllowedError: 源节点有题目而目标不允许挂载题目
        """
        with atomic(self.session, "merge"):
            source = self.nodes.get(source_id)
            target = self.nodes.get(target_id)
            self._check_no_cycle(source, target)
            self._check_affected(source.id, self.nodes.count_subtree(source), max_affected)

            children = self.nodes.get_children(source.id)
            existing = [c for c in self.nodes.get_children(target.id) if c.id != source.id]
            self._reattach_children(children, target)

            item_ids = [r.item_id for r in self.categorizations.get_node_records([source.id])]
            items_moved = 0
            if item_ids:
                items_moved = self.categorizations.move_items(item_ids, source.id, target.id)

            self.nodes.mark_deleted([source])
            CategoryNode.resequence(existing + children)
            if source.parent_id != target.id:
                self.nodes.resequence_children(source.parent_id)
            self.session.flush()

            result = MergeResult(
                source_id=source.id,
                target_id=target.id,
                children_moved=len(children),
                items_moved=items_moved,
            )
            warning = self._depth_warning(self.nodes.max_level_in_subtree(target))
            if warning:
                result.warnings.append(warning)

        logger.info(
            f"合并节点: {source_id} -> {target_id}, children={result.children_moved}, items={result.items_moved}"
        )
        return result

    # ==================== 批量 ====================

    def bulk_move(
        self,
        moves: Iterable[Union[NodeMove, dict]],
        max_affected: Optional[int] = None,
    ) -> BulkOperationResult:
        """按顺序执行一批移动，任一项失败时整批回滚"""
        moves = [m if isinstance(m, NodeMove) else NodeMove(**m) for m in moves]
        result = BulkOperationResult()
        with atomic(self.session, "bulk_move"):
            for move in moves:
                moved = self._move(move.node_id, move.new_parent_id, move.new_sort_order, max_affected)
                result.processed_ids.append(move.node_id)
                result.affected_count += moved.affected_count
                result.warnings.extend(moved.warnings)
        logger.info(f"批量移动: count={len(result.processed_ids)}, affected={result.affected_count}")
        return result

    def bulk_delete(
        self,
        node_ids: Iterable[int],
        strategy: ChildHandlingStrategy = ChildHandlingStrategy.PREVENT_DELETION,
        categorization_policy: Optional[CategorizationPolicy] = None,
        max_affected: Optional[int] = None,
    ) -> BulkOperationResult:
        """按顺序删除一批节点，任一项失败时整批回滚

        已被本批中前面的级联删除带走的节点记入 skipped_ids。
        """
        strategy = ChildHandlingStrategy(strategy)
        result = BulkOperationResult()
        deleted = set()
        with atomic(self.session, "bulk_delete"):
            for node_id in dict.fromkeys(node_ids):
                if node_id in deleted:
                    result.skipped_ids.append(node_id)
                    continue
                one = self._delete(node_id, strategy, categorization_policy, max_affected)
                deleted.update(one.deleted_ids)
                result.processed_ids.append(node_id)
                result.affected_count += len(one.deleted_ids)
                result.warnings.extend(one.warnings)
        logger.info(
            f"批量删除: strategy={strategy.value}, count={len(result.processed_ids)}, "
            f"deleted={result.affected_count}, skipped={len(result.skipped_ids)}"
        )
        return result

    def bulk_set_active(self, node_ids: Iterable[int], is_active: bool) -> BulkOperationResult:
        """批量启用/停用节点，状态已一致的节点记入 skipped_ids"""
        result = BulkOperationResult()
        with atomic(self.session, "bulk_set_active"):
            for node_id in dict.fromkeys(node_ids):
                node = self.nodes.get(node_id)
                if node.is_active == is_active:
                    result.skipped_ids.append(node_id)
                    continue
                node.is_active = is_active
                result.processed_ids.append(node_id)
            self.session.flush()
        result.affected_count = len(result.processed_ids)
        logger.info(f"批量{'启用' if is_active else '停用'}节点: count={result.affected_count}")
        return result

    # ==================== 排序 ====================

    def reorder(self, parent_id: Optional[int], ordered_ids: List[int]) -> bool:
        """按给定顺序重排父节点的子节点（位置从 1 开始）

        Raises:
            ParentNotFoundError: 父节点不存在
            ReorderSetMismatchError: 列表与当前子节点集合不完全一致
        """
        ordered_ids = list(ordered_ids)
        with atomic(self.session, "reorder"):
            self.nodes.get_parent_node(parent_id)
            current = {c.id for c in self.nodes.get_children(parent_id)}
            seen, duplicated = set(), set()
            for node_id in ordered_ids:
                if node_id in seen:
                    duplicated.add(node_id)
                seen.add(node_id)
            missing = current - seen
            unexpected = seen - current
            if missing or unexpected or duplicated:
                raise ReorderSetMismatchError(parent_id, missing, unexpected, duplicated)

            changed = CategoryNode.reorder(ordered_ids, {"parent_id": parent_id})
            self.session.flush()
        logger.info(f"重排子节点: parent={parent_id}, changed={changed}")
        return True

    def normalize_sort_orders(self, parent_id: Optional[int] = None, all_groups: bool = False) -> int:
        """消除排序号的间隙与重复（保持相对顺序）

        Args:
            parent_id: 要规范化的父节点，None 表示根层级
            all_groups: 为 True 时规范化所有兄弟组
        """
        with atomic(self.session, "normalize"):
            if all_groups:
                parent_ids = {n.parent_id for n in self.nodes.list_all()}
            else:
                parent_ids = {parent_id}
            changed = sum(self.nodes.resequence_children(pid) for pid in parent_ids)
            self.session.flush()
        if changed:
            logger.info(f"规范化排序号: changed={changed}")
        return changed

    # ==================== 恢复 ====================

    def restore(self, node_id: int) -> RestoreResult:
        """恢复软删除的节点（含同批删除的子孙）"""
        with atomic(self.session, "restore"):
            restored = self.nodes.restore(node_id)
            result = RestoreResult(node_id=node_id, restored_ids=[n.id for n in restored])
            if not restored:
                result.warnings.append(f"节点 {node_id} 未被删除")
        return result

    # ==================== 修复 ====================

    def repair_paths(self, node_ids: Optional[Iterable[int]] = None) -> RepairResult:
        """按 parent_id 重新计算路径与层级

        从根节点开始逐层计算期望路径；父链断开（孤立节点、循环）的节点
        无法到达，只在 warnings 中列出，需要先移动或删除。

        Args:
            node_ids: 只修复这些节点及其子树，None 表示全部
        """
        with atomic(self.session, "repair"):
            all_nodes = self.nodes.list_all(include_deleted=True)
            children_of: Dict[Optional[int], List[CategoryNode]] = defaultdict(list)
            for n in all_nodes:
                children_of[n.parent_id].append(n)

            selected = set(node_ids) if node_ids is not None else None
            result = RepairResult()
            reached = set()
            stack = [(root, None, False) for root in reversed(children_of[None])]
            while stack:
                node, parent_path, inherited = stack.pop()
                reached.add(node.id)
                in_scope = selected is None or inherited or node.id in selected
                expected = path_codec.compute_path(parent_path, node.id)
                if in_scope and (node.path != expected or node.level != path_codec.level_of(expected)):
                    node.set_path(expected)
                    result.repaired_ids.append(node.id)
                for child in reversed(children_of[node.id]):
                    stack.append((child, expected, in_scope and selected is not None))

            unreachable = [n.id for n in all_nodes if n.id not in reached]
            if selected is not None:
                unreachable = [i for i in unreachable if i in selected]
            if unreachable:
                result.warnings.append(f"以下节点的父链断开，无法修复路径: {sorted(unreachable)}")
            result.repaired_count = len(result.repaired_ids)
            self.session.flush()

        if result.repaired_count:
            logger.info(f"修复节点路径: count={result.repaired_count}")
        return result

    def compact(self) -> List[int]:
        """清理停用的中间节点

        停用、非根、有子节点且子树内没有任何题目归类的节点被软删除，
        其子节点提升到父节点下（REASSIGN_TO_PARENT）。

        Returns:
            被删除的节点ID
        """
        candidates = [
            n for n in self.nodes.list_all()
            if not n.is_active and n.parent_id is not None
        ]
        removed = []
        for node in sorted(candidates, key=lambda n: (-n.level, n.id)):
            node = self.nodes.find(node.id)
            if node is None or not self.nodes.count_children(node.id):
                continue
            subtree_ids = [n.id for n in self.nodes.get_subtree(node)]
            if self.categorizations.count_by_node(subtree_ids):
                continue
            self.delete(node.id, ChildHandlingStrategy.REASSIGN_TO_PARENT)
            removed.append(node.id)
        return removed


__all__ = [
    "TreeMutator",
]
