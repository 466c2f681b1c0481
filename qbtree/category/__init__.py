"""分类树模块

题库分类树引擎：
- CategoryNode / Categorization: 数据模型
- NodeStore / CategorizationStore: 存储
- TreeMutator: 移动、复制、删除、排序、恢复、修复
- TreeValidator: 一致性校验
- SearchEngine: 搜索与面包屑
- ImportExportEngine: 模板导入导出
- StatisticsAggregator: 统计
- CategoryTreeService: 对外统一入口（加锁、缓存、结果转换）

使用示例:
    from qbtree.category import CategoryTreeService, ChildHandlingStrategy

    service = CategoryTreeService()
    root = service.create_node({"name": "Root", "code": "ROOT"})
    service.delete_node(root.id, ChildHandlingStrategy.REASSIGN_TO_PARENT)
"""

from .models import CategoryType, CategoryNode, Categorization
from .enums import (
    ChildHandlingStrategy,
    CategorizationPolicy,
    CollisionPolicy,
    IssueSeverity,
    IssueType,
    MatchType,
)
from .schemas import (
    NodeCreate,
    NodePatch,
    SearchCriteria,
    NodeMove,
    TemplateNode,
    TreeExport,
    NodeInfo,
    Breadcrumb,
    CategoryTreeNode,
    CategorizationInfo,
    OperationResult,
    MoveResult,
    CopyResult,
    DeleteResult,
    MergeResult,
    BulkOperationResult,
    RestoreResult,
    ImportResult,
    BulkAssignResult,
    RepairResult,
    ValidationIssue,
    TreeValidationResult,
    CategorizationValidationResult,
    CategorizationFixResult,
    SearchResult,
    TreeStatistics,
    CategorizationStatistics,
)
from .node_store import NodeStore, generate_unique_code
from .categorization_store import CategorizationStore
from .cache import SubtreeCache
from .locking import TreeLockManager
from .mutator import TreeMutator
from .validator import TreeValidator
from .search import SearchEngine
from .import_export import ImportExportEngine
from .statistics import StatisticsAggregator
from .service import CategoryTreeService

__all__ = [
    # 模型
    "CategoryType",
    "CategoryNode",
    "Categorization",
    # 枚举
    "ChildHandlingStrategy",
    "CategorizationPolicy",
    "CollisionPolicy",
    "IssueSeverity",
    "IssueType",
    "MatchType",
    # DTO
    "NodeCreate",
    "NodePatch",
    "SearchCriteria",
    "NodeMove",
    "TemplateNode",
    "TreeExport",
    "NodeInfo",
    "Breadcrumb",
    "CategoryTreeNode",
    "CategorizationInfo",
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
    "ValidationIssue",
    "TreeValidationResult",
    "CategorizationValidationResult",
    "CategorizationFixResult",
    "SearchResult",
    "TreeStatistics",
    "CategorizationStatistics",
    # 组件
    "NodeStore",
    "generate_unique_code",
    "CategorizationStore",
    "SubtreeCache",
    "TreeLockManager",
    "TreeMutator",
    "TreeValidator",
    "SearchEngine",
    "ImportExportEngine",
    "StatisticsAggregator",
    # 服务
    "CategoryTreeService",
]
