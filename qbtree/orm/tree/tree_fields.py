"""树形结构字段定义

使用示例:
    from qbtree.orm import CoreModel
    from qbtree.orm.tree import TreeFieldsMixin, TreeMixin

    class Category(CoreModel, TreeFieldsMixin, TreeMixin):
        # parent_id 需要自行定义（外键目标表名因模型而异）
        parent_id = mapped_column(Integer, ForeignKey("category.id"), nullable=True)
"""

from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..sortable import SortFieldMixin


class TreeFieldsMixin(SortFieldMixin):
    """树形结构字段 Mixin

    提供:
    - path: 物化路径（如 "-1-2-3-"）
    - level: 节点层级（根节点为0）
    - sort_order: 同级排序号（继承自 SortFieldMixin）

    path / level 是由 parent_id 推导出的缓存，只能通过 TreeMixin.set_path() 写入。
    """

    path: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        default=None,
        index=True,
        comment="节点路径（如 -1-2-3-）"
    )

    level: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        index=True,
        comment="节点层级（根节点为0）"
    )


__all__ = [
    "TreeFieldsMixin",
]
