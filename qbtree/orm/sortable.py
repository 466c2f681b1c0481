"""排序字段与排序管理 Mixin

同组记录（如同一父节点下的兄弟节点）的排序号保持从 1 开始连续编号。

使用示例:
    class CategoryNode(CoreModel, SortFieldMixin, SortableMixin):
        __sort_group_by__ = "parent_id"

    CategoryNode.get_max_sort_order({"parent_id": 1})
    CategoryNode.reorder([3, 1, 2], {"parent_id": 1})
    CategoryNode.normalize_sort_order({"parent_id": None})
"""

from typing import Any, Iterable, List, Optional, Sequence, Union

from sqlalchemy import Integer, func
from sqlalchemy.orm import Mapped, mapped_column


class SortFieldMixin:
    """排序字段 Mixin

    字段说明:
        - sort_order: 排序序号，值越小越靠前
    """

    sort_order: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        index=True,
        comment="排序序号"
    )


class SortableMixin:
    """排序管理 Mixin

    可配置属性（子类可覆盖）:
        - __sort_field__: 排序字段名，默认 "sort_order"
        - __sort_group_by__: 分组字段，默认 None（不分组）
    """

    __sort_field__: str = "sort_order"
    __sort_group_by__: Union[str, List[str], None] = None

    # ==================== 内部方法 ====================

    @classmethod
    def _sort_column(cls):
        return getattr(cls, getattr(cls, '__sort_field__', 'sort_order'))

    @classmethod
    def _group_fields(cls) -> List[str]:
        group_by = getattr(cls, '__sort_group_by__', None)
        if not group_by:
            return []
        if isinstance(group_by, str):
            return [group_by]
        return list(group_by)

    @classmethod
    def _filter_group(cls, query, group_filters: Optional[dict]):
        for field, value in (group_filters or {}).items():
            column = getattr(cls, field)
            if value is None:
                query = query.filter(column.is_(None))
            else:
                query = query.filter(column == value)
        # 已软删除的记录不参与排序
        if hasattr(cls, "deleted_at"):
            query = query.filter(cls.deleted_at.is_(None))
        return query

    def get_group_filters(self) -> dict:
        """当前实例所在分组的过滤条件"""
        return {field: getattr(self, field) for field in self._group_fields()}

    # ==================== 类方法 ====================

    @classmethod
    def get_max_sort_order(cls, group_filters: dict = None) -> int:
        """获取分组内最大排序号，无记录返回 0"""
        query = cls._filter_group(cls.query, group_filters)
        result = query.with_entities(func.max(cls._sort_column())).scalar()
        return result or 0

    @classmethod
    def get_sorted(cls, group_filters: dict = None, exclude_ids: Iterable[Any] = ()) -> list:
        """获取分组内按排序号排列的记录（排序号相同时按 id）"""
        query = cls._filter_group(cls.query, group_filters)
        exclude_ids = list(exclude_ids)
        if exclude_ids:
            query = query.filter(cls.id.notin_(exclude_ids))
        return query.order_by(cls._sort_column(), cls.id).all()

    @classmethod
    def resequence(cls, items: Sequence[Any]) -> int:
        """按给定顺序重新编号为 1..n

        Returns:
            排序号发生变化的记录数
        """
        field_name = getattr(cls, '__sort_field__', 'sort_order')
        count = 0
        for i, item in enumerate(items, 1):
            if getattr(item, field_name) != i:
                setattr(item, field_name, i)
                count += 1
        return count

    @classmethod
    def reorder(cls, ids: List[Any], group_filters: dict = None) -> int:
        """批量重排序

        根据传入的 ID 顺序重新设置排序号（位置从 1 开始）。
        不在分组内的 ID 会被忽略，集合校验由调用方负责。

        Returns:
            更新的记录数
        """
        if not ids:
            return 0
        query = cls._filter_group(cls.query, group_filters)
        items = query.filter(cls.id.in_(ids)).all()
        id_to_item = {item.id: item for item in items}
        return cls.resequence([id_to_item[i] for i in ids if i in id_to_item])

    @classmethod
    def normalize_sort_order(cls, group_filters: dict = None) -> int:
        """规范化排序号

        消除序号间隙与重复，保持相对顺序，从 1 开始重新连续编号。

        Returns:
            更新的记录数
        """
        return cls.resequence(cls.get_sorted(group_filters))

    @classmethod
    def insert_at(cls, item: Any, position: Optional[int] = None, group_filters: dict = None) -> int:
        """把 item 放到分组内的指定位置（从 1 开始），其余记录顺延

        Args:
            item: 要放置的记录（其分组字段应已设置为目标分组）
            position: 目标位置，None 或超出范围时放到末尾，小于 1 时放到开头
            group_filters: 目标分组，None 时使用 item 当前的分组值

        Returns:
            排序号发生变化的记录数
        """
        if group_filters is None:
            group_filters = item.get_group_filters()
        siblings = cls.get_sorted(group_filters, exclude_ids=[item.id])
        if position is None or position > len(siblings):
            index = len(siblings)
        else:
            index = max(position, 1) - 1
        siblings.insert(index, item)
        return cls.resequence(siblings)


__all__ = [
    "SortFieldMixin",
    "SortableMixin",
]
