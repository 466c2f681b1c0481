"""日志模块

提供日志配置与获取：
- setup_logger / setup_root_logger: 配置日志器
- get_logger: 按模块名获取日志器

使用示例:
    from qbtree.log import setup_root_logger, get_logger

    setup_root_logger(level="DEBUG")
    logger = get_logger()
    logger.info("分类树初始化完成")
"""

from .logger import (
    setup_logger,
    setup_root_logger,
    create_formatter,
    MicrosecondFormatter,
    DEFAULT_LOG_FORMAT,
    orm_logger,
    tree_logger,
    logger,
    get_logger,
)

__all__ = [
    "setup_logger",
    "setup_root_logger",
    "create_formatter",
    "MicrosecondFormatter",
    "DEFAULT_LOG_FORMAT",
    "orm_logger",
    "tree_logger",
    "logger",
    "get_logger",
]
