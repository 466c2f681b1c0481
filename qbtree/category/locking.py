"""子树锁

结构变更在开始前锁定受影响的子树路径前缀：
- subtree 模式：路径前缀互不重叠（互不为祖先/子孙）的变更可以并发
- global 模式：所有结构变更串行

同一线程可重入（服务层方法之间相互调用不会自锁）。
根层级变更（父节点为 None）锁定整片森林。

使用示例:
    locks = TreeLockManager(mode="subtree", timeout=30)
    with locks.hold(["-1-2-", "-1-5-"]):
        ...    # "-1-2-3-" 上的其他变更需等待；"-1-4-" 上的变更不受影响
"""

import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from ..exceptions import LockTimeoutError
from ..log import get_logger
from ..orm.tree import path_codec

logger = get_logger("qbtree.category.locking")

# 覆盖全部路径的前缀
FOREST_PREFIX = path_codec.PATH_SEPARATOR


class TreeLockManager:
    """进程内子树锁注册表"""

    def __init__(self, mode: str = "subtree", timeout: float = 30.0):
        if mode not in ("subtree", "global"):
            raise ValueError(f"未知的加锁方式: {mode}")
        self.mode = mode
        self.timeout = timeout
        self._cond = threading.Condition()
        # [(owner_thread_id, prefix)]
        self._held: List[tuple] = []

    def _normalize(self, paths: Iterable[Optional[str]]) -> List[str]:
        if self.mode == "global":
            return [FOREST_PREFIX]
        prefixes = sorted({FOREST_PREFIX if p is None else p for p in paths})
        return prefixes or [FOREST_PREFIX]

    def _conflicts(self, prefixes: List[str], owner: int) -> bool:
        for held_owner, held in self._held:
            if held_owner == owner:
                continue
            if any(path_codec.paths_overlap(held, p) for p in prefixes):
                return True
        return False

    def acquire(self, paths: Iterable[Optional[str]], timeout: Optional[float] = None) -> List[tuple]:
        """阻塞直到所有前缀都不与其他线程持有的锁重叠

        Raises:
            LockTimeoutError: 超时
        """
        prefixes = self._normalize(paths)
        owner = threading.get_ident()
        timeout = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        with self._cond:
            while self._conflicts(prefixes, owner):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(f"等待子树锁超时: {prefixes}")
                    raise LockTimeoutError(prefixes, timeout)
                self._cond.wait(remaining)
            entries = [(owner, p) for p in prefixes]
            self._held.extend(entries)
        logger.debug(f"获取子树锁: {prefixes}")
        return entries

    def release(self, entries: List[tuple]) -> None:
        with self._cond:
            for entry in entries:
                self._held.remove(entry)
            self._cond.notify_all()
        logger.debug(f"释放子树锁: {[p for _, p in entries]}")

    @contextmanager
    def hold(self, paths: Iterable[Optional[str]], timeout: Optional[float] = None) -> Iterator[None]:
        entries = self.acquire(paths, timeout)
        try:
            yield
        finally:
            self.release(entries)

    def held_prefixes(self) -> List[str]:
        with self._cond:
            return [p for _, p in self._held]


__all__ = [
    "FOREST_PREFIX",
    "TreeLockManager",
]
