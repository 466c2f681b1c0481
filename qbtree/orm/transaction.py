"""事务辅助

结构变更需要“全部成功或全部不生效”，atomic() 在成功时提交、异常时回滚。
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session

from ..log import get_logger

logger = get_logger("qbtree.orm.transaction")


@contextmanager
def atomic(session: Session, name: str = "tree") -> Generator[Session, None, None]:
    """原子执行一组数据库操作

    Args:
        session: 当前 session
        name: 操作名称，仅用于日志

    使用示例:
        with atomic(session, "move"):
            node.parent_id = new_parent.id
            ...
        # 成功后已提交；任意异常都会回滚并原样抛出
    """
    try:
        yield session
        session.commit()
        logger.debug(f"[{name}] 事务提交成功")
    except Exception as e:
        session.rollback()
        logger.warning(f"[{name}] 事务回滚: {e}")
        raise
