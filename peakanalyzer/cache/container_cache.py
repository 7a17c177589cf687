"""
容器缓存 - 以来源路径为键的LRU + TTL内存缓存

读取时返回结构共享的副本，调用方对返回容器的修改不会影响缓存内容。
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from ..core.curve import Container

logger = logging.getLogger(__name__)


class ContainerCache:
    """容器内存缓存"""

    def __init__(self, max_size: int = 16, ttl_seconds: float = 3600, clock=time.monotonic):
        """
        初始化容器缓存

        参数:
        - max_size: 最大缓存容器数量
        - ttl_seconds: 缓存生存时间（秒）
        - clock: 时间源
        """
        if max_size < 1:
            raise ValueError("max_size 必须 >= 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        # 使用OrderedDict实现LRU缓存
        self._cache: 'OrderedDict[str, Dict[str, Any]]' = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _expired(self, item: Dict[str, Any], now: float) -> bool:
        return now - item['timestamp'] > self.ttl_seconds

    def put(self, key: str, container: Container) -> None:
        """
        添加容器到缓存；已存在时替换并移到最新位置

        参数:
        - key: 缓存键（通常是文件路径）
        - container: 容器对象
        """
        with self._lock:
            now = self._clock()

            if key in self._cache:
                self._cache.move_to_end(key)
            elif len(self._cache) >= self.max_size:
                evicted, _ = self._cache.popitem(last=False)
                self._evictions += 1
                logger.debug("缓存已满，移除 %s", evicted)

            self._cache[key] = {
                'container': container.copy(),
                'timestamp': now,
                'access_count': 0,
            }

    def get(self, key: str) -> Optional[Container]:
        """
        从缓存获取容器

        返回:
        - 容器副本，如果不存在或已过期则返回None
        """
        with self._lock:
            item = self._cache.get(key)
            if item is None:
                self._misses += 1
                return None

            if self._expired(item, self._clock()):
                del self._cache[key]
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            item['access_count'] += 1
            self._hits += 1
            return item['container'].copy()

    def contains(self, key: str) -> bool:
        with self._lock:
            item = self._cache.get(key)
            return item is not None and not self._expired(item, self._clock())

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self):
        """清空缓存"""
        with self._lock:
            self._cache.clear()

    def cleanup_expired(self) -> int:
        """移除所有过期项，返回移除数量"""
        with self._lock:
            now = self._clock()
            expired = [key for key, item in self._cache.items() if self._expired(item, now)]
            for key in expired:
                del self._cache[key]
            if expired:
                logger.debug("清理过期缓存 %d 项", len(expired))
            return len(expired)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._cache)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """获取缓存统计信息"""
        with self._lock:
            now = self._clock()
            total = len(self._cache)
            expired = sum(1 for item in self._cache.values() if self._expired(item, now))
            lookups = self._hits + self._misses

            return {
                'total_containers': total,
                'expired_containers': expired,
                'active_containers': total - expired,
                'max_size': self.max_size,
                'usage_percentage': (total / self.max_size) * 100,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / lookups if lookups else 0.0,
                'evictions': self._evictions,
                'ttl_seconds': self.ttl_seconds,
            }
