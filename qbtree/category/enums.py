"""分类树枚举定义"""

from enum import Enum


class ChildHandlingStrategy(str, Enum):
    """删除节点时子节点的处理策略"""
    REASSIGN_TO_PARENT = "reassign_to_parent"    # 子节点提升到被删节点的父节点下
    DELETE_WITH_PARENT = "delete_with_parent"    # 整个子树一起软删除
    REASSIGN_TO_ROOT = "reassign_to_root"        # 子节点变为根节点
    PREVENT_DELETION = "prevent_deletion"        # 有子节点时拒绝删除


class CategorizationPolicy(str, Enum):
    """删除节点时该节点上题目归类的处理策略"""
    REASSIGN_TO_PARENT = "reassign_to_parent"    # 转移到最近的存活祖先
    REMOVE = "remove"                            # 直接移除


class CollisionPolicy(str, Enum):
    """导入时编码冲突的处理策略"""
    SKIP = "skip"        # 跳过该节点（子节点挂到已存在节点下）
    RENAME = "rename"    # 生成新的唯一编码后创建
    UPDATE = "update"    # 原地更新已存在节点的属性
    FAIL = "fail"        # 预检发现冲突即失败，不做任何写入


class IssueSeverity(str, Enum):
    """校验问题严重程度"""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class IssueType(str, Enum):
    """校验问题类型"""
    ORPHANED_NODE = "orphaned_node"                    # 父节点不存在或已删除
    CIRCULAR_REFERENCE = "circular_reference"          # 父链存在循环
    PATH_INCONSISTENCY = "path_inconsistency"          # 路径与父链不一致
    LEVEL_INCONSISTENCY = "level_inconsistency"        # 层级与路径不一致
    MALFORMED_PATH = "malformed_path"                  # 路径格式错误
    DUPLICATE_CODE = "duplicate_code"                  # 编码重复
    DUPLICATE_SORT_ORDER = "duplicate_sort_order"      # 兄弟节点排序号重复
    MULTIPLE_PRIMARY = "multiple_primary"              # 题目存在多个主分类
    MISSING_PRIMARY = "missing_primary"                # 题目有归类但没有主分类
    ORPHANED_CATEGORIZATION = "orphaned_categorization"  # 归类指向不存在或已删除的节点


class MatchType(str, Enum):
    """搜索命中类型"""
    EXACT_NAME = "exact_name"
    NAME_PREFIX = "name_prefix"
    NAME_CONTAINS = "name_contains"
    EXACT_CODE = "exact_code"
    CODE_CONTAINS = "code_contains"
    DESCRIPTION = "description"


__all__ = [
    "ChildHandlingStrategy",
    "CategorizationPolicy",
    "CollisionPolicy",
    "IssueSeverity",
    "IssueType",
    "MatchType",
]
