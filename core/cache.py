"""In-memory TTL cache shared by the RPC client and the price oracle."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Tuple

LOGGER = logging.getLogger(__name__)


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()

# Seconds; methods not listed here are never cached.
DEFAULT_METHOD_TTLS: Mapping[str, float] = {
    "eth_blockNumber": 12.0,
    "eth_getBlockByNumber": 30.0,
    "eth_getTransactionReceipt": 60.0,
    "eth_getBalance": 10.0,
    "eth_call": 30.0,
    "eth_chainId": 3600.0,
}


@dataclass(frozen=True, slots=True)
class CacheOptions:
    """Per-call cache override. ``ttl`` replaces the method default."""

    ttl: Optional[float] = None
    bypass: bool = False


# Token metadata and pool addresses are immutable; balances and spot prices are not.
METADATA_CACHE = CacheOptions(ttl=3600.0)
BALANCE_CACHE = CacheOptions(ttl=10.0)
SPOT_CACHE = CacheOptions(ttl=15.0)


class TTLCache:
    """Dict-backed cache where each entry expires after its own TTL.

    Reads never block and writes are last-write-wins. The clock is injectable
    so tests can move time forward without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return MISSING
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            return MISSING
        self.hits += 1
        return value

    def set(self, key: Hashable, value: Any, ttl: float) -> None:
        if ttl <= 0:
            return
        self._entries[key] = (self._clock() + ttl, value)

    def invalidate(self, predicate: Optional[Callable[[Hashable], bool]] = None) -> int:
        """Drop matching entries (all when no predicate); returns the count."""

        if predicate is None:
            count = len(self._entries)
            self._entries.clear()
            return count
        doomed = [key for key in self._entries if predicate(key)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            LOGGER.debug("Invalidated %d cache entries", len(doomed))
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


def rpc_cache_key(chain_id: int, method: str, params: Any) -> Tuple[int, str, str]:
    """Cache key for an RPC call; params are canonicalised as sorted JSON."""

    return (chain_id, method, json.dumps(params, sort_keys=True, separators=(",", ":")))


def resolve_ttl(method: str, options: Optional[CacheOptions], table: Mapping[str, float] = DEFAULT_METHOD_TTLS) -> float:
    """Effective TTL for ``method``; 0 means do not cache."""

    if options is not None:
        if options.bypass:
            return 0.0
        if options.ttl is not None:
            return options.ttl
    return table.get(method, 0.0)


__all__ = [
    "BALANCE_CACHE",
    "CacheOptions",
    "DEFAULT_METHOD_TTLS",
    "METADATA_CACHE",
    "MISSING",
    "SPOT_CACHE",
    "TTLCache",
    "resolve_ttl",
    "rpc_cache_key",
]
