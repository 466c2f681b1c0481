"""子树缓存、子树锁与树视图测试

并发测试使用文件数据库：每个线程通过 scoped session 拿到自己的连接。
"""

import itertools
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from qbtree.category import CategoryTreeService, SubtreeCache, TreeLockManager
from qbtree.exceptions import LockTimeoutError, NodeNotFoundError
from qbtree.orm import Base, CoreModel


def _acquire_in_thread(locks, paths, timeout=0.05):
    """在另一个线程中加锁，返回 (是否成功, 异常)"""
    outcome = {}

    def worker():
        try:
            entries = locks.acquire(paths, timeout=timeout)
            locks.release(entries)
            outcome["ok"] = True
        except LockTimeoutError as e:
            outcome["ok"] = False
            outcome["error"] = e

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join(5)
    return outcome.get("ok"), outcome.get("error")


@pytest.fixture
def file_service(tmp_path, tree_settings):
    """文件数据库上的服务，返回 (service, session_scope)"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tree.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=engine)
    session_scope = scoped_session(sessionmaker(autoflush=True, bind=engine))
    CoreModel.query = session_scope.query_property()
    yield CategoryTreeService(settings=tree_settings), session_scope
    session_scope.remove()
    engine.dispose()


def _run_in_threads(session_scope, *calls):
    """每个调用一个线程，同时开始，返回各自的 (结果, 异常)"""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, func):
        try:
            barrier.wait(5)
            outcomes[index] = (func(), None)
        except Exception as e:
            outcomes[index] = (None, e)
        finally:
            session_scope.remove()

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)
    return outcomes


class TestSubtreeCache:
    """子树缓存"""

    def test_get_and_set(self):
        cache = SubtreeCache(maxsize=4)
        cache.set("a", "-1-", [1])

        assert cache.get("a") == [1]
        assert cache.get("b") is None
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 1

    def test_invalidate_overlapping(self):
        cache = SubtreeCache()
        cache.set("math", "-1-2-", "m")
        cache.set("physics", "-1-4-", "p")
        cache.set("forest", None, "f")

        removed = cache.invalidate_paths(["-1-2-3-"])

        assert removed == 2
        assert cache.get("math") is None
        assert cache.get("forest") is None
        assert cache.get("physics") == "p"

    def test_prefix_of_other_id_does_not_overlap(self):
        cache = SubtreeCache()
        cache.set("twelve", "-12-", "x")

        assert cache.invalidate_paths(["-1-"]) == 0

    def test_none_clears_all(self):
        cache = SubtreeCache()
        cache.set("a", "-1-", 1)
        cache.set("b", "-5-", 2)

        assert cache.invalidate_paths([None]) == 2
        assert cache.get_stats()["size"] == 0

    def test_disabled(self):
        cache = SubtreeCache(enabled=False)
        cache.set("a", "-1-", 1)

        assert cache.get("a") is None
        assert cache.get_stats()["size"] == 0

    def test_lru_eviction(self):
        cache = SubtreeCache(maxsize=2)
        cache.set("a", "-1-", 1)
        cache.set("b", "-2-", 2)
        cache.get("a")
        cache.set("c", "-3-", 3)

        assert cache.get("a") == 1
        assert cache.get("b") is None


class TestTreeLockManager:
    """子树锁"""

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            TreeLockManager(mode="table")

    def test_reentrant_in_same_thread(self):
        locks = TreeLockManager(timeout=0.05)

        with locks.hold(["-1-2-"]):
            with locks.hold(["-1-2-3-"]):
                assert sorted(locks.held_prefixes()) == ["-1-2-", "-1-2-3-"]

        assert locks.held_prefixes() == []

    def test_overlapping_prefix_times_out(self):
        locks = TreeLockManager(timeout=0.05)

        with locks.hold(["-1-2-"]):
            ok, error = _acquire_in_thread(locks, ["-1-2-3-"])

        assert ok is False
        assert error.code_value == "LOCK_TIMEOUT"
        assert error.paths == ["-1-2-3-"]

    def test_disjoint_prefixes_run_concurrently(self):
        locks = TreeLockManager(timeout=0.05)

        with locks.hold(["-1-2-"]):
            ok, _ = _acquire_in_thread(locks, ["-1-4-"])

        assert ok is True

    def test_root_level_locks_forest(self):
        locks = TreeLockManager(timeout=0.05)

        with locks.hold([None]):
            assert locks.held_prefixes() == ["-"]
            ok, _ = _acquire_in_thread(locks, ["-7-"])

        assert ok is False

    def test_global_mode_serializes_everything(self):
        locks = TreeLockManager(mode="global", timeout=0.05)

        with locks.hold(["-1-2-"]):
            ok, _ = _acquire_in_thread(locks, ["-9-"])

        assert ok is False

    def test_waiter_proceeds_after_release(self):
        locks = TreeLockManager(timeout=2)
        entries = locks.acquire(["-1-"])
        timer = threading.Timer(0.05, locks.release, args=(entries,))
        timer.start()

        ok, _ = _acquire_in_thread(locks, ["-1-2-"], timeout=2)
        timer.join()

        assert ok is True


class TestTreeView:
    """嵌套树视图与缓存"""

    def test_item_counts(self, service, sample_tree):
        service.assign_item_to_category(1, sample_tree["algebra"])
        service.assign_item_to_category(2, sample_tree["math"])
        service.assign_item_to_category(1, sample_tree["physics"])

        tree = service.get_tree()

        root = tree[0]
        math = root.children[0]
        assert math.direct_item_count == 1
        assert math.item_count == 2
        assert root.item_count == 3
        assert math.children[0].has_children is False

    def test_cache_hit(self, service, sample_tree):
        service.get_tree(sample_tree["math"])
        service.get_tree(sample_tree["math"])

        assert service.cache.get_stats()["hits"] == 1

    def test_move_invalidates(self, service, sample_tree):
        assert [c.code for c in service.get_tree()[0].children] == ["MATH", "PHY"]

        service.move_node(sample_tree["algebra"], sample_tree["root"])

        assert [c.code for c in service.get_tree()[0].children] == ["MATH", "PHY", "ALG"]

    def test_assign_invalidates(self, service, sample_tree):
        assert service.get_tree(sample_tree["math"])[0].item_count == 0

        service.assign_item_to_category(1, sample_tree["algebra"])

        assert service.get_tree(sample_tree["math"])[0].item_count == 1

    def test_returned_views_are_copies(self, service, sample_tree):
        tree = service.get_tree()
        tree[0].name = "changed"
        tree[0].children.clear()

        again = service.get_tree()
        assert again[0].name == "Root"
        assert len(again[0].children) == 2

    def test_inactive_subtree_hidden(self, service, sample_tree):
        service.update_node(sample_tree["math"], {"is_active": False})

        assert [c.code for c in service.get_tree()[0].children] == ["PHY"]
        assert len(service.get_tree(include_inactive=True)[0].children) == 2


class TestServiceLocking:
    """服务层加锁"""

    def test_overlapping_moves_are_serialized(self, file_service):
        service, session_scope = file_service
        root = service.create_node({"name": "Root", "code": "ROOT"})
        a = service.create_node({"name": "A", "code": "A"}, parent_id=root.id)
        a1 = service.create_node({"name": "A1", "code": "A1"}, parent_id=a.id)
        b = service.create_node({"name": "B", "code": "B"}, parent_id=root.id)
        b1 = service.create_node({"name": "B1", "code": "B1"}, parent_id=b.id)

        outcomes = _run_in_threads(
            session_scope,
            lambda: service.move_node(a.id, b1.id),
            lambda: service.move_node(b.id, a1.id),
        )

        results = [result for result, error in outcomes]
        assert [error for _, error in outcomes] == [None, None]
        # 先执行的一方成功，另一方看到新路径后判定为循环
        assert sorted(r.success for r in results) == [False, True]
        assert next(r for r in results if not r.success).error_code == "CYCLE_DETECTED"
        session_scope().expire_all()
        assert service.validate_tree().is_valid

    def test_move_and_delete_on_same_subtree(self, file_service):
        service, session_scope = file_service
        root = service.create_node({"name": "Root", "code": "ROOT"})
        a = service.create_node({"name": "A", "code": "A"}, parent_id=root.id)
        a1 = service.create_node({"name": "A1", "code": "A1"}, parent_id=a.id)
        b = service.create_node({"name": "B", "code": "B"}, parent_id=root.id)

        outcomes = _run_in_threads(
            session_scope,
            lambda: service.move_node(a1.id, b.id),
            lambda: service.delete_node(a.id, "delete_with_parent"),
        )

        assert [error for _, error in outcomes] == [None, None]
        assert outcomes[1][0].success
        session_scope().expire_all()
        assert service.validate_tree().is_valid
        assert [n.code for n in service.get_roots()] == ["ROOT"]

    def test_assign_waits_for_delete(self, file_service):
        service, session_scope = file_service
        root = service.create_node({"name": "Root", "code": "ROOT"})
        math = service.create_node({"name": "Math", "code": "MATH"}, parent_id=root.id)
        outcome = {}

        def assign():
            try:
                service.assign_item_to_category(10, math.id)
                outcome["ok"] = True
            except NodeNotFoundError as e:
                outcome["error"] = e
            finally:
                session_scope.remove()

        with service.locks.hold([root.path]):
            thread = threading.Thread(target=assign)
            thread.start()
            thread.join(0.2)
            # 归类需要节点所在子树的锁，删除完成前只能等待
            assert thread.is_alive()
            assert service.delete_node(math.id).success
        thread.join(10)

        assert "ok" not in outcome
        assert outcome["error"].node_id == math.id
        session_scope().expire_all()
        assert service.get_item_categories(10) == []
        assert service.validate_categorizations().is_valid

    def test_gives_up_when_paths_keep_changing(self, service, sample_tree, monkeypatch):
        counter = itertools.count(100)
        monkeypatch.setattr(service, "_path_of", lambda node_id: f"-{next(counter)}-")

        with pytest.raises(LockTimeoutError):
            service.update_node(sample_tree["math"], {"name": "Changed"})
        result = service.move_node(sample_tree["algebra"], sample_tree["physics"])

        assert result.error_code == "LOCK_TIMEOUT"
        assert service.locks.held_prefixes() == []
        assert service.nodes.get(sample_tree["math"]).name == "Math"
        assert service.nodes.get(sample_tree["algebra"]).parent_id == sample_tree["math"]
