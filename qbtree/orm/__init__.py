"""ORM 模块

提供：
- CoreModel / Base: 基础模型（主键、时间戳、CRUD）
- 数据库会话管理: init_database, db_session_scope, get_db
- SoftDeleteMixin: 软删除（查询自动过滤，include_deleted 可关闭）
- SortFieldMixin / SortableMixin: 同组连续排序
- atomic: 结构变更事务
- tree: 物化路径树形支持

使用示例:
    from qbtree.orm import init_database, db_session_scope

    init_database("sqlite:///./question_bank.db", create_tables=True)
"""

from .core_model import Base, CoreModel
from .db_session import (
    db_manager,
    init_database,
    get_engine,
    get_db,
    db_session_scope,
    on_request_end,
)
from .soft_delete import (
    SoftDeleteMixin,
    INCLUDE_DELETED_OPTION,
    activate_soft_delete_hook,
    is_soft_delete_active,
)
from .sortable import SortFieldMixin, SortableMixin
from .transaction import atomic
from .utils import to_snake_case

__all__ = [
    # 模型
    "Base",
    "CoreModel",
    # 会话
    "db_manager",
    "init_database",
    "get_engine",
    "get_db",
    "db_session_scope",
    "on_request_end",
    # 软删除
    "SoftDeleteMixin",
    "INCLUDE_DELETED_OPTION",
    "activate_soft_delete_hook",
    "is_soft_delete_active",
    # 排序
    "SortFieldMixin",
    "SortableMixin",
    # 事务
    "atomic",
    # 工具
    "to_snake_case",
]
