from __future__ import annotations

import threading
from collections import OrderedDict

from .sources.base import ChangeFeed


class AncestryResolver:
    """
    父节点解析 + 子树归属判断（带缓存）。

    缓存语义：
    - item_id -> parents 一经写入即视为不可变（远端移动文件不会使缓存失效）
    - max_entries 为 None 时不做淘汰；否则按 LRU 淘汰最久未使用的条目
    - 远端查询失败直接向上抛出，由调用方决定跳过条目还是中止 pass
    """

    def __init__(self, feed: ChangeFeed, *, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive or None")
        self._feed = feed
        self._max_entries = max_entries
        self._cache: OrderedDict[str, tuple[str, ...]] = OrderedDict()
        self._lock = threading.Lock()
        self.lookups = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def cached(self, item_id: str) -> tuple[str, ...] | None:
        with self._lock:
            return self._cache.get(item_id)

    def prime(self, item_id: str, parents: tuple[str, ...]) -> None:
        """用 change 中已携带的 parents 预填缓存；已有条目不覆盖，空 parents 不写入。"""
        if not parents:
            return
        with self._lock:
            if item_id in self._cache:
                return
            self._cache[item_id] = tuple(parents)
            self._evict_locked()

    def resolve(self, item_id: str) -> tuple[str, ...]:
        with self._lock:
            hit = self._cache.get(item_id)
            if hit is not None:
                self._cache.move_to_end(item_id)
                return hit

        # 远端调用不持锁；同一 key 并发未命中时最多多查一次，写入结果一致
        parents = tuple(self._feed.get_parents(item_id))

        with self._lock:
            self.lookups += 1
            existing = self._cache.get(item_id)
            if existing is not None:
                return existing
            self._cache[item_id] = parents
            self._evict_locked()
        return parents

    def _evict_locked(self) -> None:
        if self._max_entries is None:
            return
        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)

    def is_descendant_of(self, item_id: str, root_id: str) -> bool:
        """
        沿 parent 链向上爬，判断 item_id 是否位于 root_id 子树内。

        visited 集合保证每个节点只展开一次，因此在有环或多父节点的情况下也会终止。
        某节点没有 parent 说明已到达存储根，直接返回 False。
        """
        stack = [item_id]
        visited: set[str] = set()
        while stack:
            current = stack.pop()
            if not current or current in visited:
                continue
            visited.add(current)

            parents = self.resolve(current)
            if not parents:
                return False
            if root_id in parents:
                return True
            stack.extend(parents)
        return False
