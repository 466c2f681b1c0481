"""树形结构 Mixin

提供通用的树形操作方法，使用物化路径（Materialized Path）模式。

物化路径模式说明：
    - 每个节点存储从根到自身的完整路径，如 "-1-2-3-"
    - 优点：查询祖先/子孙非常高效（前缀匹配）
    - 缺点：移动节点时需要更新所有子孙的路径
    - parent_id 是唯一的结构事实，path / level 只是缓存，
      统一经 set_path() 写入

使用示例:
    from qbtree.orm import CoreModel
    from qbtree.orm.tree import TreeFieldsMixin, TreeMixin

    class Category(CoreModel, TreeFieldsMixin, TreeMixin):
        parent_id = mapped_column(Integer, ForeignKey("category.id"), nullable=True)
        name = mapped_column(String(100))

    node = Category.get(3)
    node.get_ancestors()         # 所有祖先（根在前）
    node.get_siblings()          # 同级节点（按排序号）
    node.get_descendant_count()  # 子孙数
"""

from typing import List, Optional

from . import path_codec


class TreeMixin:
    """树形结构 Mixin

    字段要求（使用者需定义或使用 TreeFieldsMixin）:
        - id / parent_id / path / level / sort_order

    可配置属性（子类可覆盖）:
        - __tree_sort_field__: 排序字段名，默认 "sort_order"

    查询都会排除已软删除（deleted_at 非空）的节点。
    """

    PATH_SEPARATOR: str = path_codec.PATH_SEPARATOR

    __tree_sort_field__: str = "sort_order"

    # ==================== 内部方法 ====================

    @classmethod
    def _tree_query(cls):
        query = cls.query
        if hasattr(cls, "deleted_at"):
            query = query.filter(cls.deleted_at.is_(None))
        return query

    @classmethod
    def _tree_order(cls):
        sort_field = getattr(cls, cls.__tree_sort_field__, None)
        if sort_field is None:
            return (cls.level, cls.id)
        return (cls.level, sort_field, cls.id)

    # ==================== 路径与层级 ====================

    def set_path(self, path: str) -> None:
        """写入 path 并同步 level（路径的唯一写入口）"""
        level = path_codec.level_of(path)
        self.path = path
        self.level = level

    def build_path(self, parent: Optional["TreeMixin"] = None) -> str:
        """根据父节点计算当前节点路径（需已有 id）"""
        if parent is None:
            return path_codec.compute_path(None, self.id)
        return path_codec.compute_path(parent.path, self.id)

    def get_path_ids(self) -> List[int]:
        """路径上的所有ID（根在前，含自身）"""
        if not self.path:
            return []
        return path_codec.parse_path(self.path)

    # ==================== 查询方法 ====================

    def get_ancestors(self) -> List:
        """获取所有祖先节点（根在前）"""
        ancestor_ids = self.get_path_ids()[:-1]
        if not ancestor_ids:
            return []
        cls = self.__class__
        nodes = cls._tree_query().filter(cls.id.in_(ancestor_ids)).all()
        by_id = {n.id: n for n in nodes}
        return [by_id[i] for i in ancestor_ids if i in by_id]

    def get_siblings(self, include_self: bool = False) -> List:
        """同一父节点下的节点（按排序号），根节点的兄弟是其他根节点"""
        cls = self.__class__
        query = cls._tree_query()
        if self.parent_id is None:
            query = query.filter(cls.parent_id.is_(None))
        else:
            query = query.filter(cls.parent_id == self.parent_id)
        if not include_self:
            query = query.filter(cls.id != self.id)
        return query.order_by(*cls._tree_order()).all()

    def get_descendant_count(self) -> int:
        if not self.path:
            return 0
        cls = self.__class__
        return cls._tree_query().filter(cls.path.startswith(self.path), cls.id != self.id).count()

    # ==================== 判断方法 ====================

    def is_ancestor_of(self, other: "TreeMixin") -> bool:
        if not self.path or not other.path:
            return False
        return path_codec.is_descendant_path(other.path, self.path)


__all__ = [
    "TreeMixin",
]
