"""ORM 对象与 DTO 之间的显式转换

字段逐一列出，新增模型字段时需要同步修改这里。
"""

import json
from typing import Any, Dict, List, Optional

from .models import Categorization, CategoryNode
from .schemas import (
    Breadcrumb,
    CategorizationInfo,
    CategoryTreeNode,
    NodeCreate,
    NodeInfo,
    NodePatch,
    TemplateNode,
)

# 节点上可由 NodeCreate / NodePatch 写入的普通属性（metadata 单独处理）
NODE_ATTRIBUTE_FIELDS = (
    "name",
    "code",
    "description",
    "category_type",
    "color",
    "icon",
    "is_active",
    "allow_items",
    "curriculum_code",
    "grade_level",
    "subject",
)


def load_metadata(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    return json.loads(raw)


def dump_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    if metadata is None:
        return None
    return json.dumps(metadata, ensure_ascii=False, sort_keys=True)


# ==================== ORM -> DTO ====================

def node_to_info(
    node: CategoryNode,
    child_count: Optional[int] = None,
    item_count: Optional[int] = None,
) -> NodeInfo:
    return NodeInfo(
        id=node.id,
        parent_id=node.parent_id,
        name=node.name,
        code=node.code,
        description=node.description,
        category_type=node.category_type,
        color=node.color,
        icon=node.icon,
        is_active=node.is_active,
        allow_items=node.allow_items,
        metadata=load_metadata(node.metadata_json),
        curriculum_code=node.curriculum_code,
        grade_level=node.grade_level,
        subject=node.subject,
        path=node.path,
        level=node.level,
        sort_order=node.sort_order,
        child_count=child_count,
        item_count=item_count,
        created_at=node.created_at,
        updated_at=node.updated_at,
        deleted_at=node.deleted_at,
    )


def node_to_breadcrumb(node: CategoryNode) -> Breadcrumb:
    return Breadcrumb(
        id=node.id,
        name=node.name,
        code=node.code,
        level=node.level,
        category_type=node.category_type,
    )


def node_to_tree_node(node: CategoryNode, direct_item_count: int = 0) -> CategoryTreeNode:
    """单个节点的树视图（children / item_count 由调用方填充）"""
    return CategoryTreeNode(
        id=node.id,
        parent_id=node.parent_id,
        name=node.name,
        code=node.code,
        category_type=node.category_type,
        level=node.level,
        sort_order=node.sort_order,
        is_active=node.is_active,
        direct_item_count=direct_item_count,
        item_count=direct_item_count,
    )


def node_to_template(node: CategoryNode, children: Optional[List[TemplateNode]] = None) -> TemplateNode:
    return TemplateNode(
        code=node.code,
        name=node.name,
        description=node.description,
        category_type=node.category_type,
        level=node.level,
        sort_order=node.sort_order,
        color=node.color,
        icon=node.icon,
        is_active=node.is_active,
        allow_items=node.allow_items,
        metadata=load_metadata(node.metadata_json),
        curriculum_code=node.curriculum_code,
        grade_level=node.grade_level,
        subject=node.subject,
        children=children or [],
    )


def categorization_to_info(record: Categorization) -> CategorizationInfo:
    return CategorizationInfo(
        id=record.id,
        item_id=record.item_id,
        node_id=record.node_id,
        is_primary=record.is_primary,
        weight=record.weight,
        confidence=record.confidence,
        assigned_by=record.assigned_by,
        assigned_at=record.assigned_at,
        note=record.note,
    )


# ==================== DTO -> 创建属性 ====================

def node_to_create(node: CategoryNode, **overrides) -> NodeCreate:
    """以已有节点的属性生成创建参数（复制节点时使用）"""
    data = {field: getattr(node, field) for field in NODE_ATTRIBUTE_FIELDS}
    data["metadata"] = load_metadata(node.metadata_json)
    data.update(overrides)
    return NodeCreate(**data)


def template_to_create(template: TemplateNode, **overrides) -> NodeCreate:
    data = {field: getattr(template, field) for field in NODE_ATTRIBUTE_FIELDS}
    data["metadata"] = template.metadata
    data.update(overrides)
    return NodeCreate(**data)


def template_to_patch(template: TemplateNode) -> NodePatch:
    """导入 update 策略下用模板属性覆盖已有节点（编码不变）"""
    data = {field: getattr(template, field) for field in NODE_ATTRIBUTE_FIELDS if field != "code"}
    data["metadata"] = template.metadata
    return NodePatch(**data)


def create_to_columns(data: NodeCreate) -> Dict[str, Any]:
    """NodeCreate -> CategoryNode 构造参数"""
    columns = {field: getattr(data, field) for field in NODE_ATTRIBUTE_FIELDS}
    columns["metadata_json"] = dump_metadata(data.metadata)
    return columns


def apply_patch(node: CategoryNode, patch: NodePatch) -> List[str]:
    """把 patch 中显式给出的字段写入节点

    Returns:
        实际发生变化的字段名
    """
    changed = []
    for field in patch.model_fields_set:
        value = getattr(patch, field)
        if field == "metadata":
            column, value = "metadata_json", dump_metadata(value)
        else:
            column = field
        if field in ("name", "code") and value is None:
            continue
        if getattr(node, column) != value:
            setattr(node, column, value)
            changed.append(field)
    return changed


__all__ = [
    "NODE_ATTRIBUTE_FIELDS",
    "load_metadata",
    "dump_metadata",
    "node_to_info",
    "node_to_breadcrumb",
    "node_to_tree_node",
    "node_to_template",
    "categorization_to_info",
    "node_to_create",
    "template_to_create",
    "template_to_patch",
    "create_to_columns",
    "apply_patch",
]
