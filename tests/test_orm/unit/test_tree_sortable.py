"""TreeMixin / SortableMixin / 软删除钩子测试

在 CategoryNode 上测试：
1. 树形查询方法
2. 同组排序号（从 1 开始连续）
3. 软删除查询过滤
4. 树形工具函数
"""

from sqlalchemy import select

from qbtree.category import CategoryNode, NodeStore
from qbtree.orm import INCLUDE_DELETED_OPTION, SoftDeleteMixin
from qbtree.orm.soft_delete import _soft_delete_entities
from qbtree.orm.tree import iter_depth_first


def _build(store):
    root = store.create({"name": "Root", "code": "ROOT"})
    a = store.create({"name": "A", "code": "A"}, parent_id=root.id)
    b = store.create({"name": "B", "code": "B"}, parent_id=root.id)
    a1 = store.create({"name": "A1", "code": "A1"}, parent_id=a.id)
    store.session.commit()
    return root, a, b, a1


class TestTreeQueries:
    """树形查询方法"""

    def test_paths_and_levels(self, db_session):
        root, a, b, a1 = _build(NodeStore())

        assert root.path == f"-{root.id}-"
        assert root.level == 0
        assert a1.path == f"-{root.id}-{a.id}-{a1.id}-"
        assert a1.level == 2
        assert a1.get_path_ids() == [root.id, a.id, a1.id]

    def test_ancestors_and_descendant_count(self, db_session):
        root, a, b, a1 = _build(NodeStore())

        assert [n.id for n in a1.get_ancestors()] == [root.id, a.id]
        assert root.get_ancestors() == []
        assert root.get_descendant_count() == 3
        assert b.get_descendant_count() == 0

    def test_descendant_count_skips_deleted(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)
        store.mark_deleted([a1])

        assert root.get_descendant_count() == 2
        assert store.count_subtree(root) == 3

    def test_is_ancestor_of(self, db_session):
        root, a, b, a1 = _build(NodeStore())

        assert root.is_ancestor_of(a1)
        assert a.is_ancestor_of(a1)
        assert not a1.is_ancestor_of(a)
        assert not b.is_ancestor_of(a1)
        assert not a.is_ancestor_of(a)

    def test_siblings(self, db_session):
        root, a, b, a1 = _build(NodeStore())

        assert [n.id for n in a.get_siblings()] == [b.id]
        assert [n.id for n in a.get_siblings(include_self=True)] == [a.id, b.id]
        assert a1.get_siblings() == []

    def test_root_siblings_are_other_roots(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)
        other = store.create({"name": "Other", "code": "OTHER"})

        assert [n.id for n in root.get_siblings()] == [other.id]


class TestSortable:
    """同组排序号"""

    def test_new_nodes_append_to_end(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)
        c = store.create({"name": "C", "code": "C"}, parent_id=root.id)

        assert (a.sort_order, b.sort_order, c.sort_order) == (1, 2, 3)
        assert a1.sort_order == 1

    def test_insert_at_shifts_others(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)
        c = store.create({"name": "C", "code": "C"}, parent_id=root.id)

        CategoryNode.insert_at(c, 1)

        assert [n.id for n in CategoryNode.get_sorted({"parent_id": root.id})] == [c.id, a.id, b.id]
        assert [n.sort_order for n in CategoryNode.get_sorted({"parent_id": root.id})] == [1, 2, 3]

    def test_insert_at_out_of_range_goes_last(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)

        CategoryNode.insert_at(a, 99)

        assert [n.id for n in CategoryNode.get_sorted({"parent_id": root.id})] == [b.id, a.id]

    def test_normalize_removes_gaps(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)
        a.sort_order = 10
        b.sort_order = 4
        store.session.flush()

        changed = CategoryNode.normalize_sort_order({"parent_id": root.id})

        assert changed == 2
        assert (b.sort_order, a.sort_order) == (1, 2)

    def test_max_sort_order_of_empty_group(self, db_session):
        assert CategoryNode.get_max_sort_order({"parent_id": 999}) == 0


class TestSoftDeleteFilter:
    """软删除查询过滤"""

    def test_deleted_nodes_hidden_by_default(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)
        store.mark_deleted([b])
        store.session.commit()

        visible = {n.id for n in CategoryNode.query.all()}
        everything = {
            n.id for n in CategoryNode.query.execution_options(**{INCLUDE_DELETED_OPTION: True}).all()
        }

        assert b.id not in visible
        assert b.id in everything
        assert b.is_deleted

    def test_plain_select_statement_is_filtered(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)
        store.mark_deleted([a1])
        store.session.commit()

        ids = set(db_session.execute(select(CategoryNode.id)).scalars())
        nodes = db_session.execute(select(CategoryNode)).scalars().all()

        assert a1.id not in ids
        assert {n.code for n in nodes} == {"ROOT", "A", "B"}

    def test_hook_targets_mapped_models(self):
        assert CategoryNode in _soft_delete_entities()
        assert all(issubclass(cls, SoftDeleteMixin) for cls in _soft_delete_entities())

    def test_batch_shares_timestamp(self, db_session):
        store = NodeStore()
        root, a, b, a1 = _build(store)

        deleted_at = store.mark_deleted([a, a1])

        assert a.deleted_at == deleted_at
        assert a1.deleted_at == deleted_at


class TestTreeUtils:
    """树形工具函数"""

    def test_iter_depth_first_is_preorder(self):
        children = {1: [2, 4], 2: [3], 3: [], 4: []}

        visited = [(n, p, d) for n, p, d in iter_depth_first([1], lambda n: children[n])]

        assert visited == [(1, None, 0), (2, 1, 1), (3, 2, 2), (4, 1, 1)]

    def test_iter_depth_first_multiple_roots(self):
        children = {1: [3], 2: [], 3: []}

        visited = [n for n, _, _ in iter_depth_first([1, 2], lambda n: children[n])]

        assert visited == [1, 3, 2]
