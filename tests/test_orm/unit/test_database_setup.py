"""数据库初始化、事务与基础模型测试"""

import pytest

from qbtree.category import CategoryNode, NodeStore
from qbtree.orm import atomic, db_manager, db_session_scope, init_database, to_snake_case


class TestAtomic:
    """atomic 事务"""

    def test_commit_on_success(self, db_session):
        with atomic(db_session, "create"):
            NodeStore().create({"name": "Root", "code": "ROOT"})
        db_session.expire_all()

        assert CategoryNode.query.count() == 1

    def test_rollback_on_error(self, db_session):
        with pytest.raises(RuntimeError):
            with atomic(db_session, "create"):
                NodeStore().create({"name": "Root", "code": "ROOT"})
                raise RuntimeError("boom")

        assert CategoryNode.query.count() == 0


class TestCoreModel:
    """CoreModel"""

    def test_table_name(self):
        assert CategoryNode.__tablename__ == "category_node"
        assert to_snake_case("CategoryNode") == "category_node"

    def test_system_fields_ignored_on_construct(self):
        node = CategoryNode(id=99, name="Root", code="ROOT", path="-1-", level=0, sort_order=1)

        assert node.id is None

    def test_get_and_to_dict(self, db_session):
        node = NodeStore().create({"name": "Root", "code": "ROOT"})
        db_session.commit()

        loaded = CategoryNode.get(node.id)
        data = loaded.to_dict(exclude={"metadata_json"})

        assert data["code"] == "ROOT"
        assert data["path"] == f"-{node.id}-"
        assert "metadata_json" not in data

    def test_get_deleted(self, db_session):
        store = NodeStore()
        node = store.create({"name": "Root", "code": "ROOT"})
        store.mark_deleted([node])
        db_session.commit()

        assert CategoryNode.get(node.id) is None
        assert CategoryNode.get(node.id, include_deleted=True) is not None


class TestInitDatabase:
    """init_database / db_session_scope"""

    def test_requires_url(self):
        with pytest.raises(ValueError):
            init_database()

    def test_memory_database_scope(self):
        engine, _ = init_database("sqlite:///:memory:", create_tables=True)
        try:
            assert engine.pool.__class__.__name__ == "StaticPool"

            with db_session_scope(request_id="import-1"):
                NodeStore().create({"name": "Root", "code": "ROOT"})

            with db_session_scope(request_id="check-1"):
                assert CategoryNode.query.count() == 1

            with pytest.raises(RuntimeError):
                with db_session_scope(request_id="import-2"):
                    NodeStore().create({"name": "Other", "code": "OTHER"})
                    raise RuntimeError("boom")

            with db_session_scope(request_id="check-2"):
                assert CategoryNode.query.count() == 1
        finally:
            engine.dispose()

    def test_manager_is_singleton(self):
        from qbtree.orm.db_session import DatabaseManager

        assert DatabaseManager() is db_manager
