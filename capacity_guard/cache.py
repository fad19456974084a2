from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Callable, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CACHE_ENTRIES = 1000

CacheKey = Tuple[str, str, Tuple[Hashable, ...]]


class AggregateCache:
    """Bounded memo map for aggregates computed during one validation session.

    Keys are ``(operation, fingerprint, args)`` where ``fingerprint`` is the
    content hash of the collections the operation reads. Nothing is evicted
    implicitly except the oldest entry once ``max_entries`` is reached;
    callers drop stale entries with :meth:`invalidate`.
    """

    def __init__(self, max_entries: int = MAX_CACHE_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._entries: "OrderedDict[CacheKey, object]" = OrderedDict()
        self._max_entries = max_entries
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_compute(
        self,
        operation: str,
        fingerprint: str,
        args: Tuple[Hashable, ...],
        compute: Callable[[], T],
    ) -> T:
        key: CacheKey = (operation, fingerprint, args)
        if key in self._entries:
            self.hits += 1
            logger.debug("Cache hit | operation=%s | args=%s", operation, args)
            return self._entries[key]  # type: ignore[return-value]
        self.misses += 1
        value = compute()
        self._entries[key] = value
        if len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        return value

    def invalidate(self, operation: Optional[str] = None) -> None:
        if operation is None:
            self._entries.clear()
            return
        for key in [key for key in self._entries if key[0] == operation]:
            del self._entries[key]
