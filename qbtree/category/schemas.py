"""分类树数据传输对象 (DTO)

输入 DTO（NodeCreate / NodePatch / SearchCriteria / TemplateNode）负责校验，
输出 DTO 只承载数据；ORM 对象与 DTO 之间的转换统一在 mappers 中显式完成。

使用示例:
    from qbtree.category.schemas import NodeCreate, NodePatch

    data = NodeCreate(name="代数", code="ALG", category_type="topic")
    patch = NodePatch(name="代数基础")
    NodePatch(parent_id=1)    # ValidationError: 结构字段不能通过属性更新修改
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import (
    ChildHandlingStrategy,
    IssueSeverity,
    IssueType,
    MatchType,
)
from .models import CategoryType


def _strip_required(value: str) -> str:
    value = value.strip() if isinstance(value, str) else value
    if not value:
        raise ValueError("不能为空")
    return value


# ==================== 输入 ====================

class NodeCreate(BaseModel):
    """创建节点的属性（不含 parent_id，由调用参数给出）"""
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    name: str = Field(..., max_length=200, description="名称")
    code: str = Field(..., max_length=50, description="编码（全树唯一，不区分大小写）")
    description: Optional[str] = Field(default=None, max_length=500)
    category_type: Optional[CategoryType] = None
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)
    is_active: bool = True
    allow_items: bool = True
    metadata: Optional[Dict[str, Any]] = None
    curriculum_code: Optional[str] = Field(default=None, max_length=50)
    grade_level: Optional[str] = Field(default=None, max_length=20)
    subject: Optional[str] = Field(default=None, max_length=100)

    @field_validator("name", "code")
    @classmethod
    def _not_blank(cls, v):
        return _strip_required(v)


class NodePatch(BaseModel):
    """节点属性更新

    只包含可修改的属性；parent_id / path / level / sort_order 等结构字段
    不在此列，传入时直接校验失败（结构变更必须经过 TreeMutator）。
    """
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    name: Optional[str] = Field(default=None, max_length=200)
    code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    category_type: Optional[CategoryType] = None
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None
    allow_items: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None
    curriculum_code: Optional[str] = Field(default=None, max_length=50)
    grade_level: Optional[str] = Field(default=None, max_length=20)
    subject: Optional[str] = Field(default=None, max_length=100)

    @field_validator("name", "code")
    @classmethod
    def _not_blank(cls, v):
        if v is None:
            return v
        return _strip_required(v)


class SearchCriteria(BaseModel):
    """搜索条件"""
    model_config = ConfigDict(use_enum_values=True)

    term: str = Field(..., min_length=1, description="搜索词（不区分大小写）")
    scope_node_id: Optional[int] = Field(default=None, description="限定在该节点的子树内（含自身）")
    include_inactive: bool = False
    search_in_codes: bool = True
    search_in_descriptions: bool = True
    category_type: Optional[CategoryType] = None
    level: Optional[int] = Field(default=None, ge=0)
    max_results: Optional[int] = Field(default=None, ge=1, description="为空时使用配置的默认值")

    @field_validator("term")
    @classmethod
    def _strip_term(cls, v):
        return _strip_required(v)


class NodeMove(BaseModel):
    """批量移动中的一项"""
    model_config = ConfigDict(extra="forbid")

    node_id: int
    new_parent_id: Optional[int] = None
    new_sort_order: Optional[int] = Field(default=None, ge=1)


class TemplateNode(BaseModel):
    """导入/导出模板中的节点（按编码标识，带子节点）"""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    code: str = Field(..., max_length=50)
    name: str = Field(..., max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    category_type: Optional[CategoryType] = None
    level: Optional[int] = Field(default=None, description="导出时的层级，仅供参考")
    sort_order: Optional[int] = None
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)
    is_active: bool = True
    allow_items: bool = True
    metadata: Optional[Dict[str, Any]] = None
    curriculum_code: Optional[str] = Field(default=None, max_length=50)
    grade_level: Optional[str] = Field(default=None, max_length=20)
    subject: Optional[str] = Field(default=None, max_length=100)
    children: List["TemplateNode"] = Field(default_factory=list)

    @field_validator("name", "code")
    @classmethod
    def _not_blank(cls, v):
        return _strip_required(v)


class TreeExport(BaseModel):
    """导出文档"""
    version: str = "1.0"
    exported_at: datetime = Field(default_factory=datetime.now)
    node_count: int = 0
    nodes: List[TemplateNode] = Field(default_factory=list)


# ==================== 节点视图 ====================

class NodeInfo(BaseModel):
    """节点信息"""
    id: int
    parent_id: Optional[int] = None
    name: str
    code: str
    description: Optional[str] = None
    category_type: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool = True
    allow_items: bool = True
    metadata: Optional[Dict[str, Any]] = None
    curriculum_code: Optional[str] = None
    grade_level: Optional[str] = None
    subject: Optional[str] = None
    path: str
    level: int
    sort_order: int
    child_count: Optional[int] = None
    item_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class Breadcrumb(BaseModel):
    """面包屑中的一项"""
    id: int
    name: str
    code: str
    level: int
    category_type: Optional[str] = None


class CategoryTreeNode(BaseModel):
    """嵌套树视图中的节点"""
    id: int
    parent_id: Optional[int] = None
    name: str
    code: str
    category_type: Optional[str] = None
    level: int
    sort_order: int
    is_active: bool = True
    direct_item_count: int = 0
    item_count: int = Field(default=0, description="含子孙节点的题目归类数")
    children: List["CategoryTreeNode"] = Field(default_factory=list)

    @property
    def has_children(self) -> bool:
        return bool(self.children)


class CategorizationInfo(BaseModel):
    """题目归类信息"""
    id: int
    item_id: int
    node_id: int
    is_primary: bool
    weight: Optional[float] = None
    confidence: Optional[float] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    note: Optional[str] = None


# ==================== 操作结果 ====================

class OperationResult(BaseModel):
    """变更操作结果基类"""
    success: bool = True
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class MoveResult(OperationResult):
    node_id: Optional[int] = None
    old_parent_id: Optional[int] = None
    new_parent_id: Optional[int] = None
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    affected_count: int = 0


class CopyResult(OperationResult):
    source_id: Optional[int] = None
    new_root_id: Optional[int] = None
    copied_count: int = 0
    items_copied: int = 0
    id_mapping: Dict[int, int] = Field(default_factory=dict, description="源节点ID -> 新节点ID")


class DeleteResult(OperationResult):
    node_id: Optional[int] = None
    strategy: Optional[ChildHandlingStrategy] = None
    deleted_ids: List[int] = Field(default_factory=list)
    children_reassigned: int = 0
    items_reassigned: int = 0
    items_removed: int = 0
    items_lost_primary: int = 0


class MergeResult(OperationResult):
    source_id: Optional[int] = None
    target_id: Optional[int] = None
    children_moved: int = 0
    items_moved: int = 0


class BulkOperationResult(OperationResult):
    """批量操作结果（整批在一个事务内，任一项失败则全部不生效）"""
    processed_ids: List[int] = Field(default_factory=list)
    skipped_ids: List[int] = Field(default_factory=list)
    affected_count: int = 0


class RestoreResult(OperationResult):
    node_id: Optional[int] = None
    restored_ids: List[int] = Field(default_factory=list)


class ImportResult(OperationResult):
    dry_run: bool = Field(default=False, description="预检结果，未写入任何节点")
    created_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    renamed_count: int = 0
    aborted: bool = False
    created_ids: List[int] = Field(default_factory=list)
    code_to_id: Dict[str, int] = Field(default_factory=dict, description="模板编码 -> 节点ID")


class BulkAssignResult(OperationResult):
    node_id: Optional[int] = None
    assigned_count: int = 0
    skipped_count: int = 0


class RepairResult(OperationResult):
    repaired_count: int = 0
    repaired_ids: List[int] = Field(default_factory=list)


# ==================== 校验 ====================

class ValidationIssue(BaseModel):
    issue_type: IssueType
    severity: IssueSeverity
    description: str
    node_id: Optional[int] = None
    item_id: Optional[int] = None
    expected: Optional[str] = None
    actual: Optional[str] = None


class TreeValidationResult(BaseModel):
    """树一致性校验报告"""
    is_valid: bool = True
    checked_count: int = 0
    issues: List[ValidationIssue] = Field(default_factory=list)
    orphaned_count: int = 0
    invalid_path_count: int = 0
    circular_reference_count: int = 0
    duplicate_code_count: int = 0
    validated_at: datetime = Field(default_factory=datetime.now)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity != IssueSeverity.WARNING]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.WARNING]


class CategorizationValidationResult(BaseModel):
    is_valid: bool = True
    checked_count: int = 0
    issues: List[ValidationIssue] = Field(default_factory=list)
    multiple_primary_items: List[int] = Field(default_factory=list)
    items_without_primary: List[int] = Field(default_factory=list)
    orphaned_categorization_ids: List[int] = Field(default_factory=list)


class CategorizationFixResult(OperationResult):
    removed_orphans: int = 0
    demoted: int = 0
    promoted: int = 0


# ==================== 搜索与统计 ====================

class SearchResult(BaseModel):
    node: NodeInfo
    breadcrumbs: List[Breadcrumb] = Field(default_factory=list)
    match_type: MatchType
    relevance_score: int


class TreeStatistics(BaseModel):
    total_nodes: int = 0
    active_nodes: int = 0
    inactive_nodes: int = 0
    deleted_nodes: int = 0
    root_count: int = 0
    leaf_count: int = 0
    max_depth: int = 0
    average_depth: float = 0.0
    avg_children_per_node: float = Field(default=0.0, description="非叶子节点的平均子节点数")
    total_items: int = Field(default=0, description="已归类的不同题目数")
    uncategorized_nodes: int = Field(default=0, description="没有直接归类的存活节点数")
    last_modified: Optional[datetime] = None
    nodes_by_level: Dict[int, int] = Field(default_factory=dict)
    nodes_by_type: Dict[str, int] = Field(default_factory=dict)


class CategorizationStatistics(BaseModel):
    total_categorizations: int = 0
    categorized_items: int = 0
    primary_count: int = 0
    secondary_count: int = 0
    items_with_primary: int = 0
    items_without_primary: int = 0
    nodes_with_items: int = 0
    average_categories_per_item: float = 0.0
    top_nodes: List[Dict[str, Any]] = Field(default_factory=list, description="归类数最多的节点")


TemplateNode.model_rebuild()
CategoryTreeNode.model_rebuild()


__all__ = [
    # 输入
    "NodeCreate",
    "NodePatch",
    "SearchCriteria",
    "NodeMove",
    "TemplateNode",
    "TreeExport",
    # 视图
    "NodeInfo",
    "Breadcrumb",
    "CategoryTreeNode",
    "CategorizationInfo",
    # 结果
    "OperationResult",
    "MoveResult",
    "CopyResult",
    "DeleteResult",
    "MergeResult",
    "BulkOperationResult",
    "RestoreResult",
    "ImportResult",
    "BulkAssignResult",
    "RepairResult",
    # 校验
    "ValidationIssue",
    "TreeValidationResult",
    "CategorizationValidationResult",
    "CategorizationFixResult",
    # 搜索与统计
    "SearchResult",
    "TreeStatistics",
    "CategorizationStatistics",
]
