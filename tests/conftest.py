"""
Pytest 公共配置和 Fixtures

提供测试所需的公共资源：
- 内存数据库（每个测试一个独立的库）
- 绑定到 CoreModel.query 的 scoped session
- 分类树服务与常用的示例树
"""

import os
import tempfile

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from qbtree.orm import Base, CoreModel

# 注册模型到 Base.metadata
from qbtree.category import models  # noqa: F401


# ==================== 基础 Fixtures ====================

@pytest.fixture(scope="session")
def temp_dir():
    """创建临时目录"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def temp_file(temp_dir):
    """创建临时文件的工厂函数"""
    created_files = []

    def _create_file(filename: str, content: str = "") -> str:
        filepath = os.path.join(temp_dir, filename)
        if os.path.dirname(filepath):
            os.makedirs(os.path.dirname(filepath), exist_ok=True)
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(content)
        created_files.append(filepath)
        return filepath

    yield _create_file

    for f in created_files:
        if os.path.exists(f):
            os.remove(f)


# ==================== 数据库 Fixtures ====================

@pytest.fixture(scope="function")
def memory_engine():
    """创建内存数据库引擎

    使用 StaticPool 和 check_same_thread=False 确保：
    1. 所有操作使用同一个连接（StaticPool）
    2. 允许跨线程访问（并发加锁测试需要）
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(memory_engine):
    """建表并把 scoped session 绑定到 CoreModel.query"""
    Base.metadata.create_all(bind=memory_engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=True, bind=memory_engine)
    session_scope = scoped_session(SessionLocal)
    CoreModel.query = session_scope.query_property()
    yield session_scope()
    session_scope.remove()
    Base.metadata.drop_all(bind=memory_engine)


# ==================== 分类树 Fixtures ====================

@pytest.fixture
def tree_settings():
    from qbtree.config import TreeSettings
    return TreeSettings()


@pytest.fixture
def service(db_session, tree_settings):
    """分类树服务"""
    from qbtree.category import CategoryTreeService
    return CategoryTreeService(settings=tree_settings)


@pytest.fixture
def sample_tree(service):
    """示例树

        Root(1)
        ├── Math(2)
        │   └── Algebra(3)
        └── Physics(4)
    """
    root = service.create_node({"name": "Root", "code": "ROOT"})
    math = service.create_node({"name": "Math", "code": "MATH"}, parent_id=root.id)
    algebra = service.create_node({"name": "Algebra", "code": "ALG"}, parent_id=math.id)
    physics = service.create_node({"name": "Physics", "code": "PHY"}, parent_id=root.id)
    return {"root": root.id, "math": math.id, "algebra": algebra.id, "physics": physics.id}
