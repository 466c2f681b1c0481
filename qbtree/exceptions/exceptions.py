"""业务异常类定义

定义分类树引擎使用的业务异常类体系。
"""

import copy
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fastapi import status


class ErrorCode(str, Enum):
    """错误代码枚举

    继承自 str，可以直接作为字符串使用，也可以直接写入结果对象的 error_code。

    使用示例:
        from qbtree.exceptions import ErrorCode, BusinessException

        raise BusinessException("节点编码重复", code=ErrorCode.DUPLICATE_CODE)

        if result.error_code == ErrorCode.HAS_CHILDREN:
            ...
    """

    # ==================== 通用错误 ====================
    BUSINESS_ERROR = "BUSINESS_ERROR"
    OPERATION_FAILED = "OPERATION_FAILED"

    # ==================== 资源相关 (404) ====================
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    NODE_NOT_FOUND = "NODE_NOT_FOUND"
    PARENT_NOT_FOUND = "PARENT_NOT_FOUND"
    CATEGORIZATION_NOT_FOUND = "CATEGORIZATION_NOT_FOUND"

    # ==================== 冲突相关 (409) ====================
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_CODE = "DUPLICATE_CODE"
    DUPLICATE_CATEGORIZATION = "DUPLICATE_CATEGORIZATION"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    HAS_CHILDREN = "HAS_CHILDREN"
    ITEM_ALREADY_PRIMARY = "ITEM_ALREADY_PRIMARY"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"

    # ==================== 验证相关 (400) ====================
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MALFORMED_PATH = "MALFORMED_PATH"
    REORDER_SET_MISMATCH = "REORDER_SET_MISMATCH"
    SUBTREE_TOO_LARGE = "SUBTREE_TOO_LARGE"
    ITEMS_NOT_ALLOWED = "ITEMS_NOT_ALLOWED"
    IMPORT_ABORTED = "IMPORT_ABORTED"


# 类型别名，支持枚举和字符串
ErrorCodeType = Union[str, ErrorCode]


class BusinessException(Exception):
    """业务异常基类

    所有业务异常都应该继承此类。

    属性:
        message: 错误消息（面向用户）
        code: 错误代码（用于程序判断，支持 ErrorCode 枚举或字符串）
        status_code: HTTP 状态码（供上层 API 转换响应）
        details: 详细错误信息列表
        extra: 额外的上下文信息

    使用示例:
        raise BusinessException("操作失败", code=ErrorCode.OPERATION_FAILED)

        raise BusinessException(
            message="导入失败",
            code=ErrorCode.DUPLICATE_CODE,
            details=["MATH 已存在", "PHY 已存在"],
            node_id=12,
        )
    """

    def __init__(
        self,
        message: str,
        code: ErrorCodeType = ErrorCode.BUSINESS_ERROR,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        """初始化业务异常

        Args:
            message: 错误消息
            code: 错误代码
            status_code: HTTP 状态码
            details: 详细错误信息列表
            **extra: 额外的上下文信息
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or []
        self.extra = extra
        super().__init__(message)

    @property
    def code_value(self) -> str:
        """错误代码的字符串形式"""
        return self.code.value if isinstance(self.code, Enum) else str(self.code)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式

        Returns:
            包含异常信息的字典
        """
        return {
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "details": copy.deepcopy(self.details),
            "extra": copy.deepcopy(self.extra)
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"status_code={self.status_code})"
        )


class ResourceNotFoundException(BusinessException):
    """资源不存在异常

    使用示例:
        raise ResourceNotFoundException("分类节点不存在", resource_type="CategoryNode", resource_id=3)
    """

    def __init__(
        self,
        message: str = "资源不存在",
        code: ErrorCodeType = ErrorCode.RESOURCE_NOT_FOUND,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
            **extra
        )


class ResourceConflictException(BusinessException):
    """资源冲突异常

    当资源已存在或与当前状态冲突时抛出此异常。

    使用示例:
        raise ResourceConflictException("编码已被使用", code=ErrorCode.DUPLICATE_CODE, field="code")
    """

    def __init__(
        self,
        message: str = "资源冲突",
        code: ErrorCodeType = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
            **extra
        )


class ValidationException(BusinessException):
    """数据验证异常

    使用示例:
        raise ValidationException("节点名称不能为空", field="name")
    """

    def __init__(
        self,
        message: str = "数据验证失败",
        code: ErrorCodeType = ErrorCode.VALIDATION_ERROR,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
            **extra
        )
