"""分类树数据模型

- CategoryNode: 分类节点（物化路径树，软删除）
- Categorization: 题目与分类节点的归类关系（主/次分类）
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..orm import CoreModel, SoftDeleteMixin, SortableMixin
from ..orm.tree import TreeFieldsMixin, TreeMixin


class CategoryType(str, Enum):
    """分类节点类型"""
    SUBJECT = "subject"        # 学科
    CHAPTER = "chapter"        # 章
    TOPIC = "topic"            # 主题
    SUBTOPIC = "subtopic"      # 子主题
    SKILL = "skill"            # 技能
    OBJECTIVE = "objective"    # 学习目标


class CategoryNode(CoreModel, SoftDeleteMixin, TreeFieldsMixin, TreeMixin, SortableMixin):
    """分类节点

    parent_id 是唯一的结构事实；path / level / sort_order 只能由
    NodeStore / TreeMutator 写入，属性更新（NodePatch）不包含这些字段。
    """
    __sort_group_by__ = "parent_id"
    __table_args__ = {"sqlite_autoincrement": True}

    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("category_node.id"),
        nullable=True,
        index=True,
        comment="父节点ID（为空表示根节点）"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, comment="名称")
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, comment="编码（全树唯一）")
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True, comment="描述")
    category_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, comment="节点类型")
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, comment="显示颜色")
    icon: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, comment="显示图标")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, comment="是否启用")
    allow_items: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, comment="是否允许挂载题目")
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="扩展元数据（JSON）")
    curriculum_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, comment="课程标准编码")
    grade_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, comment="年级")
    subject: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, comment="学科")

    def __repr__(self):
        return f"<CategoryNode id={self.id} code={self.code!r} path={self.path!r}>"


# 编码不区分大小写唯一
Index("uq_category_node_code_lower", func.lower(CategoryNode.code), unique=True)


class Categorization(CoreModel):
    """题目归类

    同一题目在同一节点只有一条记录；每个题目最多一条主分类（部分唯一索引）。
    """
    __table_args__ = (
        UniqueConstraint("item_id", "node_id", name="uq_categorization_item_node"),
    )

    item_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True, comment="题目ID")
    node_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("category_node.id"),
        nullable=False,
        index=True,
        comment="分类节点ID"
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, comment="是否主分类")
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="权重（0-1）")
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="置信度（0-1）")
    assigned_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, comment="归类人")
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        default=datetime.now,
        nullable=False,
        comment="归类时间"
    )
    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True, comment="备注")

    def __repr__(self):
        flag = "primary" if self.is_primary else "secondary"
        return f"<Categorization item={self.item_id} node={self.node_id} {flag}>"


Index(
    "uq_categorization_primary_item",
    Categorization.item_id,
    unique=True,
    sqlite_where=Categorization.is_primary.is_(True),
    postgresql_where=Categorization.is_primary.is_(True),
)


__all__ = [
    "CategoryType",
    "CategoryNode",
    "Categorization",
]
