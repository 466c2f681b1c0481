"""分类树导入导出

导出：把子树（或整片森林）转换为不含 ID 的嵌套模板，附带版本与导出时间。
导入：在目标父节点下按模板逐个创建节点，编码冲突按 CollisionPolicy 处理：

    ==========  ====================================================
    skip        不创建该节点，子节点挂到已存在的节点下（已删除则整棵跳过）
    rename      生成新的唯一编码后创建
    update      用模板属性原地更新已存在的节点，子节点挂到其下
    fail        写入前预检，发现任何冲突即失败
    ==========  ====================================================

导入不是全有或全无：调用方可以在节点之间中止（should_abort），
中止前已创建的节点保留并如实报告。
preview_import 按同样的规则推演一次导入，只报告结果不写入。
"""

import threading
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from pydantic import ValidationError

from ..config import TreeSettings
from ..exceptions import DuplicateCodeError, ErrorCode, ImportAbortedError
from ..log import get_logger
from ..orm import atomic
from .enums import CollisionPolicy
from .mappers import node_to_template, template_to_create, template_to_patch
from .models import CategoryNode
from .node_store import NodeStore, generate_unique_code
from .schemas import ImportResult, TemplateNode, TreeExport

logger = get_logger("qbtree.category.import_export")

TemplateInput = Union[TreeExport, TemplateNode, List[TemplateNode], dict, list]
AbortSignal = Union[threading.Event, Callable[[], bool], None]


def _as_templates(template: TemplateInput) -> List[TemplateNode]:
    if isinstance(template, TreeExport):
        return list(template.nodes)
    if isinstance(template, TemplateNode):
        return [template]
    if isinstance(template, dict):
        if "nodes" in template:
            return list(TreeExport(**template).nodes)
        return [TemplateNode(**template)]
    return [t if isinstance(t, TemplateNode) else TemplateNode(**t) for t in template]


def _sorted_children(templates: Iterable[TemplateNode]) -> List[TemplateNode]:
    """按模板中的 sort_order 排列（未给出的保持原顺序排在后面）"""
    indexed = list(enumerate(templates))
    indexed.sort(key=lambda x: (x[1].sort_order is None, x[1].sort_order or 0, x[0]))
    return [t for _, t in indexed]


def _should_abort(signal: AbortSignal) -> bool:
    if signal is None:
        return False
    if isinstance(signal, threading.Event):
        return signal.is_set()
    return bool(signal())


class ImportExportEngine:
    """分类树导入导出

    使用示例:
        engine = ImportExportEngine(NodeStore(), TreeSettings())

        export = engine.export_subtree(1)
        yaml_text = yaml.safe_dump(export.model_dump(mode="json"), allow_unicode=True)

        result = engine.import_tree(export, target_parent_id=None, collision_policy="rename")
        result.code_to_id["MATH"]
    """

    def __init__(self, nodes: NodeStore, settings: Optional[TreeSettings] = None):
        self.nodes = nodes
        self.settings = settings or TreeSettings()

    @property
    def session(self):
        return self.nodes.session

    # ==================== 导出 ====================

    def export_subtree(self, node_id: Optional[int] = None, include_inactive: bool = True) -> TreeExport:
        """导出子树（node_id 为 None 时导出全部根节点）

        停用节点不导出时，其子树一并省略。
        """
        if node_id is None:
            nodes = self.nodes.list_all()
            roots = [n for n in nodes if n.parent_id is None]
        else:
            root = self.nodes.get(node_id)
            nodes = self.nodes.get_subtree(root)
            roots = [root]

        children_of: Dict[int, List[CategoryNode]] = {}
        for n in nodes:
            if n.parent_id is not None:
                children_of.setdefault(n.parent_id, []).append(n)

        count = 0

        def build(node: CategoryNode) -> TemplateNode:
            nonlocal count
            count += 1
            kids = [
                build(child) for child in children_of.get(node.id, [])
                if include_inactive or child.is_active
            ]
            return node_to_template(node, kids)

        templates = [build(r) for r in roots if include_inactive or r.is_active]
        logger.info(f"导出分类树: root={node_id}, count={count}")
        return TreeExport(nodes=templates, node_count=count)

    # ==================== 导入 ====================

    def _precheck(self, templates: List[TemplateNode]) -> None:
        """fail 策略：模板内部或与现有节点存在编码冲突时直接失败"""
        seen: Set[str] = set()
        taken = self.nodes.taken_codes()
        stack = list(templates)
        while stack:
            template = stack.pop()
            code = template.code.lower()
            if code in seen or code in taken:
                existing = self.nodes.get_by_code(template.code)
                raise DuplicateCodeError(template.code, existing.id if existing else None)
            seen.add(code)
            stack.extend(template.children)

    def import_tree(
        self,
        template: TemplateInput,
        target_parent_id: Optional[int] = None,
        collision_policy: Union[CollisionPolicy, str] = CollisionPolicy.SKIP,
        should_abort: AbortSignal = None,
    ) -> ImportResult:
        """在目标父节点下导入模板

        Args:
            template: TreeExport / TemplateNode / 节点列表 / 等价的 dict
            target_parent_id: 目标父节点，None 表示作为根节点导入
            collision_policy: 编码冲突处理策略
            should_abort: threading.Event 或返回 bool 的函数，每创建一个节点前检查

        Raises:
            ParentNotFoundError: 目标父节点不存在
            DuplicateCodeError: fail 策略下存在编码冲突（不做任何写入）
        """
        policy = CollisionPolicy(collision_policy)
        templates = _as_templates(template)
        result = ImportResult()

        self.nodes.get_parent_node(target_parent_id)
        if policy == CollisionPolicy.FAIL:
            self._precheck(templates)

        taken = self.nodes.taken_codes()
        # (模板, 父节点ID)
        stack = [(t, target_parent_id) for t in reversed(_sorted_children(templates))]
        with atomic(self.session, "import"):
            while stack:
                if _should_abort(should_abort):
                    result.aborted = True
                    error = ImportAbortedError(result.created_count)
                    result.success = False
                    result.error_code = error.code_value
                    result.error_message = error.message
                    result.warnings.append(error.message)
                    break
                node_template, parent_id = stack.pop()
                node_id = self._import_one(node_template, parent_id, policy, taken, result)
                if node_id is None:
                    continue
                for child in reversed(_sorted_children(node_template.children)):
                    stack.append((child, node_id))

        logger.info(
            f"导入分类树: parent={target_parent_id}, created={result.created_count}, "
            f"updated={result.updated_count}, skipped={result.skipped_count}, aborted={result.aborted}"
        )
        return result

    def _import_one(
        self,
        template: TemplateNode,
        parent_id: Optional[int],
        policy: CollisionPolicy,
        taken: Set[str],
        result: ImportResult,
    ) -> Optional[int]:
        """导入单个节点，返回其子节点应挂载的节点ID（None 表示跳过整棵子树）"""
        existing = None
        if template.code.lower() in taken:
            existing = self.nodes.get_by_code(template.code)

        if existing is None:
            node = self.nodes.create(template_to_create(template), parent_id=parent_id)
            taken.add(node.code.lower())
            self._record_created(node, template, result)
            return node.id

        if policy == CollisionPolicy.RENAME:
            code = generate_unique_code(template.code, taken)
            node = self.nodes.create(template_to_create(template, code=code), parent_id=parent_id)
            result.renamed_count += 1
            result.warnings.append(f"编码 {template.code} 已存在，重命名为 {code}")
            self._record_created(node, template, result)
            return node.id

        if existing.deleted_at is not None:
            skipped = self._count(template)
            result.skipped_count += skipped
            result.warnings.append(f"编码 {template.code} 被已删除的节点占用，跳过 {skipped} 个节点")
            return None

        if policy == CollisionPolicy.UPDATE:
            self.nodes.update_attributes(existing.id, template_to_patch(template))
            result.updated_count += 1
            result.warnings.append(f"编码 {template.code} 已存在，已更新节点 {existing.id}")
        else:
            result.skipped_count += 1
            result.warnings.append(f"编码 {template.code} 已存在，跳过")
        result.code_to_id[template.code] = existing.id
        return existing.id

    # ==================== 预检 ====================

    def preview_import(
        self,
        template: TemplateInput,
        target_parent_id: Optional[int] = None,
        collision_policy: Union[CollisionPolicy, str] = CollisionPolicy.SKIP,
    ) -> ImportResult:
        """按 import_tree 的规则推演一次导入，不写入任何数据

        模板格式错误时返回 success=False（VALIDATION_ERROR），逐条错误放在 warnings 中。

        Raises:
            ParentNotFoundError / DuplicateCodeError（fail 策略）
        """
        policy = CollisionPolicy(collision_policy)
        result = ImportResult(dry_run=True)
        try:
            templates = _as_templates(template)
        except ValidationError as e:
            result.success = False
            result.error_code = ErrorCode.VALIDATION_ERROR.value
            result.error_message = f"模板格式错误: {e.error_count()} 处"
            result.warnings = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            return result

        self.nodes.get_parent_node(target_parent_id)
        if policy == CollisionPolicy.FAIL:
            self._precheck(templates)

        taken = self.nodes.taken_codes()
        # 推演中“已创建”的编码，它们在数据库里还查不到
        planned: Set[str] = set()
        stack = list(reversed(_sorted_children(templates)))
        while stack:
            node_template = stack.pop()
            code = node_template.code.lower()
            existing = None
            if code in taken and code not in planned:
                existing = self.nodes.get_by_code(node_template.code)
            if code not in taken:
                taken.add(code)
                planned.add(code)
                result.created_count += 1
            elif policy == CollisionPolicy.RENAME:
                renamed = generate_unique_code(node_template.code, taken)
                planned.add(renamed.lower())
                result.created_count += 1
                result.renamed_count += 1
                result.warnings.append(f"编码 {node_template.code} 已存在，将重命名为 {renamed}")
            elif existing is not None and existing.deleted_at is not None:
                skipped = self._count(node_template)
                result.skipped_count += skipped
                result.warnings.append(f"编码 {node_template.code} 被已删除的节点占用，将跳过 {skipped} 个节点")
                continue
            elif policy == CollisionPolicy.UPDATE:
                result.updated_count += 1
                if existing is not None:
                    result.code_to_id[node_template.code] = existing.id
            else:
                result.skipped_count += 1
                if existing is not None:
                    result.code_to_id[node_template.code] = existing.id
            stack.extend(reversed(_sorted_children(node_template.children)))

        logger.info(
            f"导入预检: parent={target_parent_id}, create={result.created_count}, "
            f"update={result.updated_count}, skip={result.skipped_count}"
        )
        return result

    def _record_created(self, node: CategoryNode, template: TemplateNode, result: ImportResult) -> None:
        result.created_count += 1
        result.created_ids.append(node.id)
        result.code_to_id[template.code] = node.id
        if node.level > self.settings.max_depth:
            result.warnings.append(f"节点 {node.code} 的层级 {node.level} 超过建议深度 {self.settings.max_depth}")

    def _count(self, template: TemplateNode) -> int:
        return 1 + sum(self._count(child) for child in template.children)


__all__ = [
    "ImportExportEngine",
]
