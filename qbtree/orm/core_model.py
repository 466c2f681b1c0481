"""
ORM基础模型

提供主键、时间戳、常用 CRUD 与序列化方法
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy import DateTime, Integer, func, inspect
from sqlalchemy.orm import (
    Mapped,
    Query,
    Session,
    declarative_base,
    declared_attr,
    mapped_column,
    object_session,
)

if TYPE_CHECKING:
    from typing_extensions import Self

from .utils import to_snake_case


# 声明基类
Base = declarative_base()


class CoreModel(Base):
    """ORM基础模型类

    提供功能：
    - 自增整数主键（不复用）
    - 自动表名生成（驼峰转下划线）
    - created_at / updated_at / deleted_at 时间戳
    - 常用 CRUD 操作方法
    - to_dict 序列化

    使用示例:
        from qbtree.orm import CoreModel, init_database

        init_database("sqlite:///./question_bank.db")

        class Subject(CoreModel):
            title: Mapped[str] = mapped_column(String(50))

        subject = Subject(title="数学")
        subject.save(commit=True)
    """
    __abstract__ = True

    # query 属性在 init_database 后通过 scoped_session.query_property() 设置
    if TYPE_CHECKING:
        query: ClassVar[Query[Self]]

    @declared_attr.directive
    def __tablename__(cls) -> str:
        """驼峰命名转下划线"""
        return to_snake_case(cls.__name__)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        server_default=func.now(),
        comment="创建时间"
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False),
        nullable=True,
        onupdate=func.now(),
        comment="更新时间"
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False),
        nullable=True,
        default=None,
        index=True,
        comment="删除时间（软删除标记）"
    )

    # 系统字段（构造时自动忽略）
    _system_fields: ClassVar[set] = {'id', 'created_at', 'updated_at', 'deleted_at'}

    def __init__(self, **kwargs):
        for field in self._system_fields:
            kwargs.pop(field, None)
        super().__init__(**kwargs)

    def __repr__(self):
        return f"<{self.__class__.__name__} id={self.id}>"

    @property
    def session(self) -> Session:
        """获取当前session

        已在 session 中的对象返回其所属 session，否则使用 query 绑定的 scoped session
        """
        session = object_session(self)
        if session is None:
            session = self.__class__.query.session
        return session

    # ==================== CRUD 操作方法 ====================

    def save(self, commit: bool = False) -> Self:
        """保存对象（新增或更新）

        Args:
            commit: 是否立即提交，默认False（仅 flush，以便获取自增ID）

        Returns:
            self: 返回自身，支持链式调用
        """
        session = self.session
        session.add(self)
        if commit:
            session.commit()
        else:
            session.flush()
        return self

    def update(self, commit: bool = False, **kwargs) -> Self:
        """通过 kwargs 更新对象属性

        Args:
            commit: 是否立即提交
            **kwargs: 要更新的属性键值对（未知字段忽略）
        """
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
        return self.save(commit=commit)

    def delete(self, commit: bool = False):
        """物理删除对象"""
        session = self.session
        session.delete(self)
        if commit:
            session.commit()
        else:
            session.flush()

    @classmethod
    def get(cls, id: int, include_deleted: bool = False):
        """根据ID获取对象，不存在返回None"""
        query = cls.query
        if include_deleted:
            query = query.execution_options(include_deleted=True)
        return query.filter(cls.id == id).one_or_none()

    @classmethod
    def get_all(cls):
        """获取所有记录"""
        return cls.query.all()

    # ==================== 序列化方法 ====================

    def to_dict(self, exclude: set = None) -> dict:
        """转换为字典

        Args:
            exclude: 需要排除的字段集合
        """
        exclude = exclude or set()
        return {
            c.key: getattr(self, c.key)
            for c in inspect(self).mapper.column_attrs
            if c.key not in exclude
        }
