import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.cache import MISSING, CacheOptions, TTLCache, resolve_ttl, rpc_cache_key


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_their_ttl():
    clock = _Clock()
    cache = TTLCache(clock=clock)
    cache.set("a", 1, ttl=10)
    cache.set("b", 2, ttl=60)

    clock.now += 9.9
    assert cache.get("a") == 1
    clock.now += 0.1
    assert cache.get("a") is MISSING
    assert cache.get("b") == 2
    assert len(cache) == 1


def test_non_positive_ttl_is_not_stored():
    cache = TTLCache()
    cache.set("a", 1, ttl=0)
    cache.set("b", 1, ttl=-5)
    assert len(cache) == 0


def test_cached_falsy_values_are_distinguishable_from_missing():
    cache = TTLCache()
    cache.set("zero", 0, ttl=10)
    cache.set("none", None, ttl=10)
    assert cache.get("zero") == 0
    assert cache.get("none") is None
    assert cache.get("other") is MISSING


def test_invalidate_by_predicate():
    cache = TTLCache()
    cache.set((1, "eth_call", "[]"), "x", ttl=10)
    cache.set((2, "eth_call", "[]"), "y", ttl=10)
    assert cache.invalidate(lambda key: key[0] == 1) == 1
    assert cache.get((2, "eth_call", "[]")) == "y"
    assert cache.invalidate() == 1
    assert len(cache) == 0


def test_method_ttl_table_and_overrides():
    assert resolve_ttl("eth_getBalance", None) == 10.0
    assert resolve_ttl("eth_blockNumber", None) == 12.0
    assert resolve_ttl("eth_chainId", None) == 3600.0
    assert resolve_ttl("eth_sendRawTransaction", None) == 0.0
    assert resolve_ttl("eth_call", CacheOptions(ttl=5)) == 5
    assert resolve_ttl("eth_call", CacheOptions(bypass=True)) == 0.0


def test_cache_key_is_canonical():
    first = rpc_cache_key(1, "eth_call", [{"to": "0xa", "data": "0x1"}, "latest"])
    second = rpc_cache_key(1, "eth_call", [{"data": "0x1", "to": "0xa"}, "latest"])
    assert first == second
    assert rpc_cache_key(2, "eth_call", [{"to": "0xa", "data": "0x1"}, "latest"]) != first


def test_purge_expired_drops_only_stale_entries():
    clock = _Clock()
    cache = TTLCache(clock=clock)
    cache.set("short", 1, ttl=5)
    cache.set("long", 2, ttl=50)

    clock.now += 10
    assert cache.purge_expired() == 1
    assert len(cache) == 1
    assert cache.get("long") == 2
