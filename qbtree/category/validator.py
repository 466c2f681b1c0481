"""树一致性校验

只读检查，发现的问题只报告不修改（修复见 TreeMutator.repair_paths）：
- 孤立节点：父节点不存在或已删除
- 循环引用：沿 parent_id 向上最多 max_depth * 2 步
- 路径不一致：期望路径（父链）与存储路径不同；层级与路径不符；路径格式错误
- 编码重复：按小写编码分组
- 兄弟节点排序号重复（警告）
"""

from collections import defaultdict
from typing import Dict, List, Optional

from ..config import TreeSettings
from ..exceptions import MalformedPathError
from ..log import get_logger
from ..orm.tree import path_codec
from .enums import IssueSeverity, IssueType
from .models import CategoryNode
from .node_store import NodeStore
from .schemas import TreeValidationResult, ValidationIssue

logger = get_logger("qbtree.category.validator")


class TreeValidator:
    """树一致性校验

    使用示例:
        validator = TreeValidator(NodeStore(), TreeSettings())
        report = validator.validate_all()
        if not report.is_valid:
            for issue in report.issues:
                print(issue.issue_type, issue.node_id, issue.description)
    """

    def __init__(self, nodes: NodeStore, settings: Optional[TreeSettings] = None):
        self.nodes = nodes
        self.settings = settings or TreeSettings()

    def validate_all(self) -> TreeValidationResult:
        """校验所有存活节点"""
        all_nodes = self.nodes.list_all(include_deleted=True)
        by_id: Dict[int, CategoryNode] = {n.id: n for n in all_nodes}
        live = [n for n in all_nodes if n.deleted_at is None]
        result = TreeValidationResult(checked_count=len(live))

        cyclic = set()
        for node in live:
            if self._in_cycle(node, by_id):
                cyclic.add(node.id)
                result.circular_reference_count += 1
                result.issues.append(ValidationIssue(
                    issue_type=IssueType.CIRCULAR_REFERENCE,
                    severity=IssueSeverity.CRITICAL,
                    node_id=node.id,
                    description=f"节点 {node.id} 的父链存在循环",
                ))

        for node in live:
            if node.parent_id is not None:
                parent = by_id.get(node.parent_id)
                if parent is None or parent.deleted_at is not None:
                    result.orphaned_count += 1
                    state = "不存在" if parent is None else "已删除"
                    result.issues.append(ValidationIssue(
                        issue_type=IssueType.ORPHANED_NODE,
                        severity=IssueSeverity.ERROR,
                        node_id=node.id,
                        description=f"节点 {node.id} 的父节点 {node.parent_id} {state}",
                    ))
            if node.id not in cyclic:
                self._check_path(node, by_id, result)

        self._check_duplicate_codes(live, result)
        self._check_sort_orders(live, result)

        result.is_valid = not any(i.severity != IssueSeverity.WARNING for i in result.issues)
        if result.is_valid:
            logger.debug(f"树校验通过: checked={result.checked_count}")
        else:
            logger.warning(
                f"树校验发现问题: orphaned={result.orphaned_count}, invalid_path={result.invalid_path_count}, "
                f"circular={result.circular_reference_count}, duplicate_code={result.duplicate_code_count}"
            )
        return result

    # ==================== 各项检查 ====================

    def _in_cycle(self, node: CategoryNode, by_id: Dict[int, CategoryNode]) -> bool:
        seen = {node.id}
        current = node.parent_id
        for _ in range(self.settings.max_depth * 2):
            if current is None:
                return False
            if current in seen:
                return True
            seen.add(current)
            parent = by_id.get(current)
            if parent is None:
                return False
            current = parent.parent_id
        # 超出步数上限仍未到达根节点，按循环处理
        return current is not None

    def _expected_path(self, node: CategoryNode, by_id: Dict[int, CategoryNode]) -> Optional[str]:
        """由父链计算期望路径，父链断开时返回 None"""
        chain = [node.id]
        current = node.parent_id
        while current is not None:
            parent = by_id.get(current)
            if parent is None or current in chain:
                return None
            chain.append(current)
            current = parent.parent_id
        return path_codec.format_path(list(reversed(chain)))

    def _check_path(self, node: CategoryNode, by_id: Dict[int, CategoryNode],
                    result: TreeValidationResult) -> None:
        try:
            stored_level = path_codec.level_of(node.path)
            repeated = path_codec.has_repeated_id(node.path)
        except MalformedPathError:
            result.invalid_path_count += 1
            result.issues.append(ValidationIssue(
                issue_type=IssueType.MALFORMED_PATH,
                severity=IssueSeverity.ERROR,
                node_id=node.id,
                description=f"节点 {node.id} 的路径格式错误",
                actual=str(node.path),
            ))
            return

        expected = self._expected_path(node, by_id)
        if repeated or (expected is not None and node.path != expected):
            result.invalid_path_count += 1
            result.issues.append(ValidationIssue(
                issue_type=IssueType.PATH_INCONSISTENCY,
                severity=IssueSeverity.ERROR,
                node_id=node.id,
                description=f"节点 {node.id} 的路径与父链不一致",
                expected=expected,
                actual=node.path,
            ))
        elif node.level != stored_level:
            result.invalid_path_count += 1
            result.issues.append(ValidationIssue(
                issue_type=IssueType.LEVEL_INCONSISTENCY,
                severity=IssueSeverity.ERROR,
                node_id=node.id,
                description=f"节点 {node.id} 的层级与路径不一致",
                expected=str(stored_level),
                actual=str(node.level),
            ))

    def _check_duplicate_codes(self, live: List[CategoryNode], result: TreeValidationResult) -> None:
        groups: Dict[str, List[CategoryNode]] = defaultdict(list)
        for node in live:
            groups[(node.code or "").lower()].append(node)
        for code, group in groups.items():
            if len(group) < 2:
                continue
            result.duplicate_code_count += len(group)
            for node in group:
                result.issues.append(ValidationIssue(
                    issue_type=IssueType.DUPLICATE_CODE,
                    severity=IssueSeverity.ERROR,
                    node_id=node.id,
                    description=f"编码 {code!r} 被 {len(group)} 个节点使用",
                    actual=node.code,
                ))

    def _check_sort_orders(self, live: List[CategoryNode], result: TreeValidationResult) -> None:
        groups: Dict[Optional[int], Dict[int, List[int]]] = defaultdict(lambda: defaultdict(list))
        for node in live:
            groups[node.parent_id][node.sort_order].append(node.id)
        for parent_id, orders in groups.items():
            for sort_order, ids in orders.items():
                if len(ids) > 1:
                    result.issues.append(ValidationIssue(
                        issue_type=IssueType.DUPLICATE_SORT_ORDER,
                        severity=IssueSeverity.WARNING,
                        node_id=parent_id,
                        description=f"父节点 {parent_id} 下排序号 {sort_order} 重复: {sorted(ids)}",
                    ))


__all__ = [
    "TreeValidator",
]
