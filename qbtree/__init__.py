"""
qbtree - 题库分类树引擎

提供物化路径分类树、结构变更、一致性校验、搜索、导入导出与题目归类
"""

from .version import __version__, __author__, __description__

# 导出配置
from .config import (
    AppSettings,
    DatabaseSettings,
    LoggingSettings,
    TreeSettings,
    load_yaml_config,
)

# 导出日志
from .log import setup_logger, setup_root_logger, get_logger

# 导出异常
from .exceptions import (
    ErrorCode,
    BusinessException,
    TreeError,
)

# 导出ORM
from .orm import (
    CoreModel,
    init_database,
    get_engine,
    get_db,
    db_session_scope,
)

# 导出分类树
from .category import (
    CategoryNode,
    Categorization,
    ChildHandlingStrategy,
    CategorizationPolicy,
    CollisionPolicy,
    CategoryTreeService,
)

__all__ = [
    "__version__",
    "__author__",
    "__description__",
    # 配置
    "AppSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "TreeSettings",
    "load_yaml_config",
    # 日志
    "setup_logger",
    "setup_root_logger",
    "get_logger",
    # 异常
    "ErrorCode",
    "BusinessException",
    "TreeError",
    # ORM
    "CoreModel",
    "init_database",
    "get_engine",
    "get_db",
    "db_session_scope",
    # 分类树
    "CategoryNode",
    "Categorization",
    "ChildHandlingStrategy",
    "CategorizationPolicy",
    "CollisionPolicy",
    "CategoryTreeService",
]
