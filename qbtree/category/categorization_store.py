"""题目归类存储

维护题目与分类节点之间的关系：
- 同一题目在同一节点只有一条记录
- 每个题目最多一条主分类；首次归类自动成为主分类
- 移除主分类后，剩余记录中最近归类的一条自动提升为主分类
- 节点删除时按策略转移或移除其上的归类

主分类切换时先降级旧记录并 flush，再提升新记录，避免部分唯一索引的瞬时冲突。
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func

from ..exceptions import (
    DuplicateCategorizationError,
    ItemAlreadyPrimaryError,
    ItemsNotAllowedError,
    NodeNotFoundError,
    CategorizationNotFoundError,
    ValidationException,
)
from ..log import get_logger
from ..orm import INCLUDE_DELETED_OPTION
from .enums import CategorizationPolicy, IssueSeverity, IssueType
from .models import Categorization, CategoryNode
from .schemas import (
    BulkAssignResult,
    CategorizationFixResult,
    CategorizationValidationResult,
    ValidationIssue,
)

logger = get_logger("qbtree.category.categorization_store")


def _check_ratio(name: str, value: Optional[float]) -> None:
    if value is not None and not 0 <= value <= 1:
        raise ValidationException(f"{name} 必须在 0 到 1 之间: {value}", field=name)


def _most_recent(records: List[Categorization]) -> Optional[Categorization]:
    if not records:
        return None
    return max(records, key=lambda r: (r.assigned_at or datetime.min, r.id or 0))


class CategorizationStore:
    """题目归类存储

    使用示例:
        store = CategorizationStore()
        store.assign(item_id=1001, node_id=5)                    # 首次归类，自动成为主分类
        store.assign(item_id=1001, node_id=8, weight=0.5)        # 次分类
        store.set_primary(1001, 8)                               # 切换主分类
        store.remove(1001, 8)                                    # 节点5 重新成为主分类
    """

    model = Categorization

    @property
    def session(self):
        return self.model.query.session

    # ==================== 查询 ====================

    def find(self, item_id: int, node_id: int) -> Optional[Categorization]:
        return (
            self.model.query
            .filter(self.model.item_id == item_id, self.model.node_id == node_id)
            .one_or_none()
        )

    def get_item_records(self, item_id: int) -> List[Categorization]:
        """题目的全部归类（主分类在前）"""
        return (
            self.model.query
            .filter(self.model.item_id == item_id)
            .order_by(self.model.is_primary.desc(), self.model.assigned_at, self.model.id)
            .all()
        )

    def get_primary(self, item_id: int) -> Optional[Categorization]:
        return (
            self.model.query
            .filter(self.model.item_id == item_id, self.model.is_primary.is_(True))
            .first()
        )

    def get_node_records(self, node_ids: Iterable[int], primary_only: bool = False) -> List[Categorization]:
        node_ids = list(node_ids)
        if not node_ids:
            return []
        query = self.model.query.filter(self.model.node_id.in_(node_ids))
        if primary_only:
            query = query.filter(self.model.is_primary.is_(True))
        return query.order_by(self.model.item_id, self.model.id).all()

    def count_by_node(self, node_ids: Optional[Iterable[int]] = None) -> Dict[int, int]:
        """每个节点上直接归类的记录数"""
        query = self.model.query.with_entities(self.model.node_id, func.count(self.model.id))
        if node_ids is not None:
            node_ids = list(node_ids)
            if not node_ids:
                return {}
            query = query.filter(self.model.node_id.in_(node_ids))
        return {node_id: count for node_id, count in query.group_by(self.model.node_id).all()}

    # ==================== 写入 ====================

    def _get_assignable_node(self, node_id: int) -> CategoryNode:
        node = (
            CategoryNode.query
            .filter(CategoryNode.id == node_id, CategoryNode.deleted_at.is_(None))
            .one_or_none()
        )
        if node is None:
            raise NodeNotFoundError(node_id)
        if not node.allow_items:
            raise ItemsNotAllowedError(node_id)
        return node

    def _promote(self, record: Categorization) -> None:
        """把 record 设为主分类（先降级题目当前的主分类）"""
        current = self.get_primary(record.item_id)
        if current is not None and current is not record:
            current.is_primary = False
            self.session.flush()
        record.is_primary = True
        self.session.flush()

    def assign(
        self,
        item_id: int,
        node_id: int,
        is_primary: bool = False,
        weight: Optional[float] = None,
        confidence: Optional[float] = None,
        assigned_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Categorization:
        """把题目归类到节点

        已存在同节点记录时：要求设为主分类则切换主分类，否则视为重复归类。

        Raises:
            NodeNotFoundError: 节点不存在或已删除
            ItemsNotAllowedError: 节点不允许挂载题目
            DuplicateCategorizationError: 题目已归类到该节点
            ItemAlreadyPrimaryError: 该节点已经是题目的主分类
        """
        _check_ratio("weight", weight)
        _check_ratio("confidence", confidence)
        self._get_assignable_node(node_id)

        existing = self.find(item_id, node_id)
        if existing is not None:
            if not is_primary:
                raise DuplicateCategorizationError(item_id, node_id)
            if existing.is_primary:
                raise ItemAlreadyPrimaryError(item_id, node_id)
            self._promote(existing)
            return existing

        record = self.model(
            item_id=item_id,
            node_id=node_id,
            is_primary=False,
            weight=weight,
            confidence=confidence,
            assigned_by=assigned_by,
            assigned_at=datetime.now(),
            note=note,
        )
        self.session.add(record)
        self.session.flush()
        if is_primary or self.get_primary(item_id) is None:
            self._promote(record)
        logger.debug(f"题目归类: item={item_id}, node={node_id}, primary={record.is_primary}")
        return record

    def set_primary(self, item_id: int, node_id: int, strict: bool = False) -> Categorization:
        """设置题目的主分类（题目必须已归类到该节点）

        Args:
            strict: 为 True 时，目标已是主分类则抛出 ItemAlreadyPrimaryError
        """
        record = self.find(item_id, node_id)
        if record is None:
            raise CategorizationNotFoundError(item_id, node_id)
        if record.is_primary:
            if strict:
                raise ItemAlreadyPrimaryError(item_id, node_id)
            return record
        self._promote(record)
        return record

    def remove(self, item_id: int, node_id: int) -> bool:
        """移除题目在某节点的归类

        Returns:
            是否存在并被移除
        """
        record = self.find(item_id, node_id)
        if record is None:
            return False
        was_primary = record.is_primary
        self.session.delete(record)
        self.session.flush()
        if was_primary:
            self._ensure_primary(item_id)
        return True

    def _ensure_primary(self, item_id: int) -> Optional[Categorization]:
        """题目没有主分类时，把最近归类的一条提升为主分类"""
        records = self.get_item_records(item_id)
        if not records or any(r.is_primary for r in records):
            return None
        candidate = _most_recent(records)
        self._promote(candidate)
        return candidate

    def bulk_assign(
        self,
        item_ids: Iterable[int],
        node_id: int,
        set_as_primary: bool = False,
        assigned_by: Optional[str] = None,
    ) -> BulkAssignResult:
        """批量归类，已归类的题目跳过（要求主分类时会切换主分类）"""
        self._get_assignable_node(node_id)
        result = BulkAssignResult(node_id=node_id)
        for item_id in dict.fromkeys(item_ids):
            existing = self.find(item_id, node_id)
            if existing is not None and (not set_as_primary or existing.is_primary):
                result.skipped_count += 1
                continue
            self.assign(item_id, node_id, is_primary=set_as_primary, assigned_by=assigned_by)
            result.assigned_count += 1
        return result

    def move_items(self, item_ids: Iterable[int], from_node_id: int, to_node_id: int) -> int:
        """把一批题目从一个节点转移到另一个节点（保留主分类标记）

        目标节点上已有记录的题目做合并：删除源记录，主分类标记转到目标记录上。

        Returns:
            转移的记录数
        """
        self._get_assignable_node(to_node_id)
        moved = 0
        for item_id in dict.fromkeys(item_ids):
            record = self.find(item_id, from_node_id)
            if record is None:
                continue
            self._transfer(record, to_node_id)
            moved += 1
        return moved

    def _transfer(self, record: Categorization, target_node_id: int) -> None:
        target = self.find(record.item_id, target_node_id)
        if target is None:
            record.node_id = target_node_id
            self.session.flush()
            return
        was_primary = record.is_primary
        self.session.delete(record)
        self.session.flush()
        if was_primary:
            target.is_primary = True
            self.session.flush()

    def reconcile_deleted_nodes(
        self,
        node_ids: Iterable[int],
        target_node_id: Optional[int],
        policy: CategorizationPolicy,
    ) -> Tuple[int, int, Set[int]]:
        """处理被删除节点上的归类

        Args:
            node_ids: 被删除的节点
            target_node_id: 最近的存活祖先（被删节点为根时为 None）
            policy: 转移或移除；没有可转移的目标（根节点或目标不允许挂载题目）时一律移除

        Returns:
            (转移数, 移除数, 失去全部归类的题目ID集合)
        """
        records = self.get_node_records(node_ids)
        if not records:
            return 0, 0, set()

        target_ok = False
        if policy == CategorizationPolicy.REASSIGN_TO_PARENT and target_node_id is not None:
            target = CategoryNode.query.filter(CategoryNode.id == target_node_id).one_or_none()
            target_ok = target is not None and target.deleted_at is None and target.allow_items

        reassigned = removed = 0
        touched_items = set()
        for record in records:
            touched_items.add(record.item_id)
            if target_ok:
                self._transfer(record, target_node_id)
                reassigned += 1
            else:
                self.session.delete(record)
                self.session.flush()
                removed += 1

        lost = set()
        for item_id in touched_items:
            if self._ensure_primary(item_id) is None and self.get_primary(item_id) is None:
                lost.add(item_id)
        return reassigned, removed, lost

    def copy_to_nodes(self, id_mapping: Dict[int, int], assigned_by: Optional[str] = None) -> int:
        """把源节点上的归类复制到对应的新节点（复制出的记录都是次分类）"""
        records = self.get_node_records(id_mapping.keys())
        now = datetime.now()
        for record in records:
            self.session.add(self.model(
                item_id=record.item_id,
                node_id=id_mapping[record.node_id],
                is_primary=False,
                weight=record.weight,
                confidence=record.confidence,
                assigned_by=assigned_by or record.assigned_by,
                assigned_at=now,
                note=record.note,
            ))
        self.session.flush()
        return len(records)

    # ==================== 校验与修复 ====================

    def _live_node_ids(self) -> Set[int]:
        rows = CategoryNode.query.filter(CategoryNode.deleted_at.is_(None)).with_entities(CategoryNode.id).all()
        return {row[0] for row in rows}

    def validate(self) -> CategorizationValidationResult:
        """检查归类一致性：多个主分类、缺少主分类、指向已删除节点"""
        records = (
            self.model.query
            .execution_options(**{INCLUDE_DELETED_OPTION: True})
            .order_by(self.model.item_id, self.model.id)
            .all()
        )
        live_ids = self._live_node_ids()
        result = CategorizationValidationResult(checked_count=len(records))

        by_item: Dict[int, List[Categorization]] = defaultdict(list)
        for record in records:
            by_item[record.item_id].append(record)
            if record.node_id not in live_ids:
                result.orphaned_categorization_ids.append(record.id)
                result.issues.append(ValidationIssue(
                    issue_type=IssueType.ORPHANED_CATEGORIZATION,
                    severity=IssueSeverity.ERROR,
                    node_id=record.node_id,
                    item_id=record.item_id,
                    description=f"题目 {record.item_id} 归类到不存在或已删除的节点 {record.node_id}",
                ))

        for item_id, item_records in by_item.items():
            primary_count = sum(1 for r in item_records if r.is_primary)
            if primary_count > 1:
                result.multiple_primary_items.append(item_id)
                result.issues.append(ValidationIssue(
                    issue_type=IssueType.MULTIPLE_PRIMARY,
                    severity=IssueSeverity.ERROR,
                    item_id=item_id,
                    description=f"题目 {item_id} 存在 {primary_count} 个主分类",
                ))
            elif primary_count == 0:
                result.items_without_primary.append(item_id)
                result.issues.append(ValidationIssue(
                    issue_type=IssueType.MISSING_PRIMARY,
                    severity=IssueSeverity.WARNING,
                    item_id=item_id,
                    description=f"题目 {item_id} 没有主分类",
                ))

        result.is_valid = not any(i.severity != IssueSeverity.WARNING for i in result.issues)
        return result

    def fix(self) -> CategorizationFixResult:
        """修复归类：删除孤立记录，多个主分类只保留最近一条，缺少主分类时补齐"""
        report = self.validate()
        result = CategorizationFixResult()

        if report.orphaned_categorization_ids:
            affected_items = {
                r.item_id for r in
                self.model.query.filter(self.model.id.in_(report.orphaned_categorization_ids)).all()
            }
            result.removed_orphans = (
                self.model.query
                .filter(self.model.id.in_(report.orphaned_categorization_ids))
                .delete(synchronize_session="fetch")
            )
            self.session.flush()
        else:
            affected_items = set()

        for item_id in report.multiple_primary_items:
            primaries = [r for r in self.get_item_records(item_id) if r.is_primary]
            keep = _most_recent(primaries)
            for record in primaries:
                if record is not keep:
                    record.is_primary = False
                    result.demoted += 1
            self.session.flush()

        for item_id in set(report.items_without_primary) | affected_items:
            if self._ensure_primary(item_id) is not None:
                result.promoted += 1

        if result.removed_orphans or result.demoted or result.promoted:
            logger.info(
                f"修复题目归类: removed={result.removed_orphans}, "
                f"demoted={result.demoted}, promoted={result.promoted}"
            )
        return result


__all__ = [
    "CategorizationStore",
]
