"""异常模块

提供业务异常体系与分类树异常：
- BusinessException 及按 HTTP 语义划分的异常族
- ErrorCode: 错误代码枚举
- 分类树异常: ParentNotFoundError, DuplicateCodeError, CycleDetectedError 等

使用示例:
    from qbtree.exceptions import TreeError, HasChildrenError

    try:
        service.delete_node(2, ChildHandlingStrategy.PREVENT_DELETION, raise_on_error=True)
    except HasChildrenError as e:
        print(e.code, e.child_count)
"""

from .exceptions import (
    ErrorCode,
    ErrorCodeType,
    BusinessException,
    ResourceNotFoundException,
    ResourceConflictException,
    ValidationException,
)

from .tree_errors import (
    TreeError,
    NodeNotFoundError,
    ParentNotFoundError,
    CategorizationNotFoundError,
    DuplicateCodeError,
    CycleDetectedError,
    HasChildrenError,
    ItemAlreadyPrimaryError,
    DuplicateCategorizationError,
    LockTimeoutError,
    MalformedPathError,
    ReorderSetMismatchError,
    SubtreeTooLargeError,
    ItemsNotAllowedError,
    ImportAbortedError,
)

__all__ = [
    # 基础异常
    "ErrorCode",
    "ErrorCodeType",
    "BusinessException",
    "ResourceNotFoundException",
    "ResourceConflictException",
    "ValidationException",
    # 分类树异常
    "TreeError",
    "NodeNotFoundError",
    "ParentNotFoundError",
    "CategorizationNotFoundError",
    "DuplicateCodeError",
    "CycleDetectedError",
    "HasChildrenError",
    "ItemAlreadyPrimaryError",
    "DuplicateCategorizationError",
    "LockTimeoutError",
    "MalformedPathError",
    "ReorderSetMismatchError",
    "SubtreeTooLargeError",
    "ItemsNotAllowedError",
    "ImportAbortedError",
]
