"""软删除扩展

- SoftDeleteMixin: 提供 soft_delete() / undelete() / is_deleted
- activate_soft_delete_hook(): 注册查询钩子，SELECT 自动过滤已软删除记录

使用示例:
    class CategoryNode(CoreModel, SoftDeleteMixin):
        ...

    # 查询（自动过滤已删除）
    CategoryNode.query.all()

    # 包含已删除记录
    CategoryNode.query.execution_options(include_deleted=True).all()
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import event
from sqlalchemy.orm import Session, with_loader_criteria

from ..log import get_logger
from .core_model import Base

logger = get_logger("qbtree.orm.soft_delete")

# 禁用过滤的 execution option 名称
INCLUDE_DELETED_OPTION = "include_deleted"

_hook_active = False


class SoftDeleteMixin:
    """软删除 Mixin

    依赖模型上的 deleted_at 字段（CoreModel 已定义）。
    """

    deleted_at: Optional[datetime]

    def soft_delete(self, v: Optional[datetime] = None) -> None:
        """软删除当前对象

        Args:
            v: 可选，指定删除时间。默认使用当前时间。
               批量删除时传入同一个时间，restore 可据此识别同批记录。
        """
        self.deleted_at = v or datetime.now()

    def undelete(self) -> None:
        """恢复软删除的对象"""
        self.deleted_at = None

    @property
    def is_deleted(self) -> bool:
        """检查对象是否已被软删除"""
        return self.deleted_at is not None


def _soft_delete_entities():
    """已映射且混入 SoftDeleteMixin 的模型类"""
    return [
        mapper.class_
        for mapper in Base.registry.mappers
        if issubclass(mapper.class_, SoftDeleteMixin)
    ]


def _filter_deleted(orm_execute_state):
    if (
        not orm_execute_state.is_select
        or orm_execute_state.is_column_load
        or orm_execute_state.is_relationship_load
    ):
        return
    if orm_execute_state.execution_options.get(INCLUDE_DELETED_OPTION, False):
        return
    # 条件必须挂在映射类上，Mixin 本身没有 deleted_at 列
    statement = orm_execute_state.statement
    for entity in _soft_delete_entities():
        statement = statement.options(
            with_loader_criteria(
                entity,
                lambda cls: cls.deleted_at.is_(None),
                include_aliases=True,
            )
        )
    orm_execute_state.statement = statement


def activate_soft_delete_hook() -> None:
    """激活软删除查询钩子（幂等）"""
    global _hook_active
    if _hook_active:
        return
    event.listen(Session, "do_orm_execute", _filter_deleted)
    _hook_active = True
    logger.debug("软删除查询钩子已激活")


def is_soft_delete_active() -> bool:
    return _hook_active


activate_soft_delete_hook()
