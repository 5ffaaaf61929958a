"""
InventoryCache -- explicit TTL cache for stock reads.

Stock listings and the stock report are polled by several screens.  They
share one ``InventoryCache`` injected into ``InventoryService`` by the
caller; nothing is cached globally.  Entries expire after ``ttl_seconds``
on the injected clock and the least recently refreshed entry is evicted
once ``max_entries`` is reached.  ``InventoryService`` invalidates the
cache after every ledger append.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Hashable
from typing import Any

from site_config.schema import CacheSettings
from site_kernel.domain.clock import Clock, SystemClock
from site_kernel.logging_config import get_logger

logger = get_logger("services.inventory_cache")


class InventoryCache:
    def __init__(
        self,
        clock: Clock | None = None,
        ttl_seconds: float = 300.0,
        max_entries: int = 256,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._clock = clock or SystemClock()
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: CacheSettings, clock: Clock | None = None) -> InventoryCache:
        return cls(clock, settings.inventory_ttl_seconds, settings.max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry[0] > self._clock.monotonic()

    def get_or_refresh(
        self,
        key: Hashable,
        loader: Callable[[], Any],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value for ``key`` or load, store and return it."""
        now = self._clock.monotonic()
        entry = self._entries.get(key)
        if entry is not None and entry[0] > now:
            return entry[1]

        value = loader()
        expires_at = now + (self._ttl if ttl is None else ttl)
        self._entries[key] = (expires_at, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("inventory_cache_evicted", extra={"key": str(evicted)})
        logger.debug("inventory_cache_refreshed", extra={"key": str(key)})
        return value

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one key, or everything when ``key`` is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
        logger.debug("inventory_cache_invalidated", extra={"key": str(key)})
