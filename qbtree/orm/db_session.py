"""
数据库会话管理模块

提供数据库引擎创建、会话管理等功能。

公开 API:
- db_manager: 数据库管理器单例
- init_database(): 初始化数据库连接
- get_engine(): 获取数据库引擎
- get_db(): 依赖注入用的上下文管理器
- db_session_scope(): 非 HTTP 场景的上下文管理器
- on_request_end(): 请求结束清理
"""

import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Generator
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ..log import get_logger

_logger = get_logger("qbtree.orm.session")

__all__ = [
    'db_manager',
    'init_database',
    'get_engine',
    'get_db',
    'db_session_scope',
    'on_request_end',
]


class DatabaseManager:
    """数据库管理器（单例）

    封装数据库连接状态和会话管理，提供统一的访问接口。

    使用示例:
        from qbtree.orm import db_manager

        db_manager.init(database_url="sqlite:///./question_bank.db")
        engine = db_manager.engine
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._engine = None
        self._session_scope = None
        self._session_maker = None
        self._request_id_var: ContextVar[str] = ContextVar('qbtree_request_id', default='')
        self._initialized = True

    # ==================== 属性访问 ====================

    @property
    def engine(self):
        """获取数据库引擎（只读）

        Raises:
            RuntimeError: 数据库未初始化时
        """
        if self._engine is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._engine

    @property
    def session_scope(self):
        """获取 scoped session（只读）"""
        if self._session_scope is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._session_scope

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None and self._session_scope is not None

    # ==================== 核心方法 ====================

    def init(
        self,
        database_url: str = None,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        pool_pre_ping: bool = True,
        logger: logging.Logger = None,
        scopefunc: Callable = None,
        config: Any = None,
        auto_setup_query: bool = True,
        create_tables: bool = False,
    ):
        """初始化数据库连接

        Args:
            database_url: 数据库连接URL（如果提供 config 则忽略）
            echo: 是否输出SQL语句（如果提供 config 则忽略）
            pool_size: 连接池大小
            max_overflow: 最大溢出连接数
            pool_timeout: 连接超时时间
            pool_recycle: 连接回收时间
            pool_pre_ping: 连接前是否ping
            logger: 日志记录器
            scopefunc: session作用域函数，默认按请求ID（ContextVar）区分
            config: 数据库配置对象（DatabaseSettings），提供后自动提取配置
            auto_setup_query: 是否自动设置 CoreModel.query 属性，默认 True
            create_tables: 是否创建所有已声明的表

        Returns:
            tuple: (engine, session_scope)

        使用示例:
            from qbtree.orm import init_database, db_session_scope

            engine, session = init_database(config=settings.database, create_tables=True)

            with db_session_scope() as session:
                nodes = session.query(CategoryNode).all()
        """
        if config is not None:
            database_url = getattr(config, "url", database_url)
            echo = getattr(config, "echo", echo)
            pool_size = getattr(config, "pool_size", pool_size)
            max_overflow = getattr(config, "max_overflow", max_overflow)
            pool_timeout = getattr(config, "pool_timeout", pool_timeout)
            pool_recycle = getattr(config, "pool_recycle", pool_recycle)
            pool_pre_ping = getattr(config, "pool_pre_ping", pool_pre_ping)

        if not database_url:
            raise ValueError("database_url 是必需的，请通过参数或 config 提供")

        if logger is None:
            logger = _logger

        logger.info(f"数据库配置URL: {database_url}")

        if database_url.startswith("sqlite:///"):
            db_path = database_url[len("sqlite:///"):]
            is_memory_db = db_path == ":memory:" or db_path == ""

            try:
                if is_memory_db:
                    # 内存数据库：使用 StaticPool（单连接）
                    self._engine = create_engine(
                        database_url,
                        echo=echo,
                        connect_args={"check_same_thread": False},
                        poolclass=StaticPool,
                    )
                    logger.info("SQLite内存数据库引擎创建成功（StaticPool）")
                else:
                    logger.info(f"SQLite文件数据库路径: {os.path.abspath(db_path)}")
                    self._engine = create_engine(
                        database_url,
                        echo=echo,
                        connect_args={
                            "check_same_thread": False,
                            "timeout": pool_timeout
                        },
                        poolclass=QueuePool,
                        pool_size=pool_size,
                        max_overflow=max_overflow,
                        pool_timeout=pool_timeout,
                        pool_pre_ping=pool_pre_ping,
                        pool_recycle=pool_recycle
                    )
                    logger.info(f"SQLite文件数据库引擎创建成功（QueuePool, pool_size={pool_size}）")
            except Exception as e:
                logger.error(f"创建SQLite数据库引擎失败: {str(e)}")
                raise
        else:
            try:
                self._engine = create_engine(
                    database_url,
                    echo=echo,
                    pool_pre_ping=pool_pre_ping,
                    pool_size=pool_size,
                    max_overflow=max_overflow,
                    pool_timeout=pool_timeout,
                    pool_recycle=pool_recycle
                )
                logger.info("数据库引擎创建成功")
            except Exception as e:
                logger.error(f"创建数据库引擎失败: {str(e)}")
                raise

        self._session_maker = sessionmaker(
            autocommit=False,
            autoflush=True,
            bind=self._engine,
        )

        if scopefunc is None:
            scopefunc = self._get_request_id

        self._session_scope = scoped_session(self._session_maker, scopefunc=scopefunc)

        if auto_setup_query:
            from .core_model import CoreModel
            CoreModel.query = self._session_scope.query_property()
            logger.info("CoreModel.query 属性已自动设置")

        if create_tables:
            from .core_model import Base
            Base.metadata.create_all(bind=self._engine)
            logger.info("数据表创建完成")

        logger.info("数据库session创建成功")
        return self._engine, self._session_scope

    def get_session(self) -> Session:
        """获取 scoped session（低级 API）

        直接使用需要自行处理提交与清理，推荐使用 db_session_scope()。
        """
        if self._session_scope is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._session_scope()

    def cleanup(self):
        """请求结束时清理 session（幂等，多次调用安全）

        有未提交的更改时先尝试提交，失败则回滚，最后移除 session。
        """
        request_id = self._get_request_id()

        if self._session_scope and self._session_scope.registry.has():
            session = self._session_scope()
            if session.dirty or session.new or session.deleted:
                try:
                    session.commit()
                    _logger.debug(f"[request_id={request_id}] 自动提交成功")
                except Exception as e:
                    _logger.warning(f"[request_id={request_id}] 自动提交失败，回滚: {e}")
                    session.rollback()
            self._session_scope.remove()
            _logger.debug(f"[request_id={request_id}] session_scope 移除完成")

        self._request_id_var.set('')

    # ==================== 请求ID管理（内部使用） ====================

    def _set_request_id(self, request_id: str = None) -> str:
        if not request_id:
            request_id = uuid4().hex[:8]
        self._request_id_var.set(request_id)
        return request_id

    def _get_request_id(self) -> str:
        value = self._request_id_var.get()
        if not value:
            value = uuid4().hex[:8]
            self._request_id_var.set(value)
        return value


# ==================== 全局单例 ====================

db_manager = DatabaseManager()


# ==================== 公开 API 函数 ====================

def init_database(
    database_url: str = None,
    echo: bool = False,
    config: Any = None,
    scopefunc: Callable = None,
    auto_setup_query: bool = True,
    create_tables: bool = False,
    **kwargs,
):
    """初始化数据库连接

    db_manager.init() 的便捷包装函数，参数说明见 DatabaseManager.init()。

    Returns:
        tuple: (engine, session_scope)
    """
    return db_manager.init(
        database_url=database_url,
        echo=echo,
        config=config,
        scopefunc=scopefunc,
        auto_setup_query=auto_setup_query,
        create_tables=create_tables,
        **kwargs,
    )


def get_engine():
    """获取数据库引擎"""
    return db_manager.engine


def on_request_end():
    """请求结束时自动提交并清理 session"""
    db_manager.cleanup()


@contextmanager
def db_session_scope(
    request_id: str = None,
    auto_commit: bool = True
) -> Generator[Session, None, None]:
    """非 HTTP 场景的 session 上下文管理器

    自动管理 session 生命周期：设置请求ID、自动提交或回滚、自动清理。

    Args:
        request_id: 请求ID，用于日志追踪，不传则自动生成
        auto_commit: 是否自动提交，默认 True

    使用示例:
        with db_session_scope(request_id="import-math") as session:
            service.import_tree(template, target_parent_id=None)
    """
    db_manager._set_request_id(request_id)
    session = db_manager.get_session()
    try:
        yield session
        if auto_commit:
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        on_request_end()


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """获取数据库 session（依赖注入）"""
    with db_session_scope() as session:
        yield session
