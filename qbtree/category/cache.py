"""子树缓存

缓存 get_tree 等读操作构建出的嵌套树视图，基于 cachetools.LRUCache。
每个条目记录其子树根路径（None 表示整片森林），结构变更或归类变更后，
按受影响的路径前缀失效所有重叠的条目。

使用示例:
    cache = SubtreeCache(maxsize=256)
    cache.set(("tree", 1, False), "-1-", tree)
    cache.get(("tree", 1, False))
    cache.invalidate_paths(["-1-2-"])    # "-1-" 与 "-1-2-" 重叠，条目被移除
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterable, Optional

from cachetools import LRUCache

from ..log import get_logger
from ..orm.tree import path_codec

logger = get_logger("qbtree.category.cache")


@dataclass
class CacheStats:
    """缓存统计信息"""
    hits: int = 0
    misses: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "invalidations": self.invalidations,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class SubtreeCache:
    """按子树路径失效的 LRU 缓存"""

    def __init__(self, maxsize: int = 256, enabled: bool = True):
        self._cache: LRUCache = LRUCache(maxsize=maxsize)
        self._lock = threading.RLock()
        self._stats = CacheStats()
        self.enabled = enabled

    def get(self, key: Hashable) -> Optional[Any]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            self._stats.hits += 1
            return entry[1]

    def set(self, key: Hashable, root_path: Optional[str], value: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._cache[key] = (root_path, value)

    def invalidate_paths(self, paths: Iterable[Optional[str]]) -> int:
        """移除与任一路径重叠的条目

        路径为 None（根层级变更）时清空全部缓存。
        """
        paths = list(paths)
        with self._lock:
            if not self._cache:
                return 0
            if any(p is None for p in paths):
                return self.clear()
            stale = [
                key for key, (root_path, _) in self._cache.items()
                if root_path is None or any(path_codec.paths_overlap(root_path, p) for p in paths)
            ]
            for key in stale:
                del self._cache[key]
            self._stats.invalidations += len(stale)
            if stale:
                logger.debug(f"子树缓存失效: paths={paths}, count={len(stale)}")
            return len(stale)

    def clear(self) -> int:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._stats.invalidations += count
            return count

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = {"size": len(self._cache), "maxsize": self._cache.maxsize, "enabled": self.enabled}
            stats.update(self._stats.to_dict())
            return stats


__all__ = [
    "CacheStats",
    "SubtreeCache",
]
