"""分类树异常类

定义树结构变更、校验、归类相关的异常层次结构。
每个异常都归入与其 HTTP 语义一致的业务异常族，
上层 API 可直接使用 status_code / code 生成响应。
"""

from typing import Iterable, Optional

from .exceptions import (
    BusinessException,
    ErrorCode,
    ResourceConflictException,
    ResourceNotFoundException,
    ValidationException,
)


class TreeError(BusinessException):
    """分类树异常基类

    所有分类树异常同时继承此类，便于统一捕获：

        try:
            service.move_node(3, 1)
        except TreeError as e:
            ...
    """


# ==================== 不存在 (404) ====================

class NodeNotFoundError(ResourceNotFoundException, TreeError):
    """分类节点不存在（或已被软删除）"""

    def __init__(self, node_id, message: Optional[str] = None):
        self.node_id = node_id
        super().__init__(
            message or f"分类节点不存在: {node_id}",
            code=ErrorCode.NODE_NOT_FOUND,
            node_id=node_id,
        )


class ParentNotFoundError(ResourceNotFoundException, TreeError):
    """父节点不存在（或已被软删除）"""

    def __init__(self, parent_id, message: Optional[str] = None):
        self.parent_id = parent_id
        super().__init__(
            message or f"父节点不存在: {parent_id}",
            code=ErrorCode.PARENT_NOT_FOUND,
            parent_id=parent_id,
        )


class CategorizationNotFoundError(ResourceNotFoundException, TreeError):
    """题目归类记录不存在"""

    def __init__(self, item_id, node_id):
        self.item_id = item_id
        self.node_id = node_id
        super().__init__(
            f"题目 {item_id} 未归类到节点 {node_id}",
            code=ErrorCode.CATEGORIZATION_NOT_FOUND,
            item_id=item_id,
            node_id=node_id,
        )


# ==================== 冲突 (409) ====================

class DuplicateCodeError(ResourceConflictException, TreeError):
    """节点编码重复（全树范围，不区分大小写）"""

    def __init__(self, code: str, existing_id=None):
        self.node_code = code
        self.existing_id = existing_id
        super().__init__(
            f"分类编码已存在: {code}",
            code=ErrorCode.DUPLICATE_CODE,
            node_code=code,
            existing_id=existing_id,
        )


class CycleDetectedError(ResourceConflictException, TreeError):
    """移动会产生循环引用（目标父节点是自身或其子孙）"""

    def __init__(self, node_id, new_parent_id):
        self.node_id = node_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"不能将节点 {node_id} 移动到自身或其子孙节点 {new_parent_id} 下",
            code=ErrorCode.CYCLE_DETECTED,
            node_id=node_id,
            new_parent_id=new_parent_id,
        )


class HasChildrenError(ResourceConflictException, TreeError):
    """节点存在子节点，不允许删除"""

    def __init__(self, node_id, child_count: int):
        self.node_id = node_id
        self.child_count = child_count
        super().__init__(
            f"节点 {node_id} 存在 {child_count} 个子节点，不允许删除",
            code=ErrorCode.HAS_CHILDREN,
            node_id=node_id,
            child_count=child_count,
        )


class ItemAlreadyPrimaryError(ResourceConflictException, TreeError):
    """题目已经以该节点作为主分类"""

    def __init__(self, item_id, node_id):
        self.item_id = item_id
        self.node_id = node_id
        super().__init__(
            f"题目 {item_id} 的主分类已经是节点 {node_id}",
            code=ErrorCode.ITEM_ALREADY_PRIMARY,
            item_id=item_id,
            node_id=node_id,
        )


class DuplicateCategorizationError(ResourceConflictException, TreeError):
    """题目已归类到该节点"""

    def __init__(self, item_id, node_id):
        self.item_id = item_id
        self.node_id = node_id
        super().__init__(
            f"题目 {item_id} 已归类到节点 {node_id}",
            code=ErrorCode.DUPLICATE_CATEGORIZATION,
            item_id=item_id,
            node_id=node_id,
        )


class LockTimeoutError(ResourceConflictException, TreeError):
    """等待子树锁超时"""

    def __init__(self, paths: Iterable[str], timeout: float):
        self.paths = list(paths)
        self.timeout = timeout
        super().__init__(
            f"等待子树锁超时（{timeout}s）: {', '.join(self.paths)}",
            code=ErrorCode.LOCK_TIMEOUT,
        )


# ==================== 验证失败 (400) ====================

class MalformedPathError(ValidationException, TreeError):
    """物化路径格式错误"""

    def __init__(self, path, reason: str = ""):
        self.path = path
        super().__init__(
            f"路径格式错误: {path!r}" + (f"（{reason}）" if reason else ""),
            code=ErrorCode.MALFORMED_PATH,
            path=path,
        )


class ReorderSetMismatchError(ValidationException, TreeError):
    """排序的节点集合与当前子节点集合不一致"""

    def __init__(self, parent_id, missing: Iterable[int] = (), unexpected: Iterable[int] = (),
                 duplicated: Iterable[int] = ()):
        self.parent_id = parent_id
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        self.duplicated = sorted(duplicated)
        details = []
        if self.missing:
            details.append(f"缺少子节点: {self.missing}")
        if self.unexpected:
            details.append(f"不属于该父节点: {self.unexpected}")
        if self.duplicated:
            details.append(f"重复的节点: {self.duplicated}")
        super().__init__(
            f"排序列表与父节点 {parent_id} 的子节点集合不一致",
            code=ErrorCode.REORDER_SET_MISMATCH,
            details=details,
            parent_id=parent_id,
        )


class SubtreeTooLargeError(ValidationException, TreeError):
    """子树规模超过单次变更允许的上限"""

    def __init__(self, node_id, affected: int, limit: int):
        self.node_id = node_id
        self.affected = affected
        self.limit = limit
        super().__init__(
            f"节点 {node_id} 的子树包含 {affected} 个节点，超过上限 {limit}",
            code=ErrorCode.SUBTREE_TOO_LARGE,
            node_id=node_id,
            affected=affected,
            limit=limit,
        )


class ItemsNotAllowedError(ValidationException, TreeError):
    """节点不允许挂载题目"""

    def __init__(self, node_id):
        self.node_id = node_id
        super().__init__(
            f"节点 {node_id} 不允许挂载题目",
            code=ErrorCode.ITEMS_NOT_ALLOWED,
            node_id=node_id,
        )


class ImportAbortedError(ValidationException, TreeError):
    """导入被调用方中止"""

    def __init__(self, created: int):
        self.created = created
        super().__init__(
            f"导入已中止，中止前已创建 {created} 个节点",
            code=ErrorCode.IMPORT_ABORTED,
            created=created,
        )
