import asyncio
import sys
from pathlib import Path

import httpx

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fake_node import ARB, OWNER, USDC, WETH, FakeNode, make_network, make_registry

from connectors.abi import balance_of_call
from connectors.backend_api import BackendClient
from connectors.rpc_client import RpcClient
from core.models import FailureReason
from core.retry import RetryPolicy
from portfolio.fetcher import BalanceFetcher, format_units

CHAIN = 1001


def _funded_node() -> FakeNode:
    node = FakeNode()
    node.set_native(OWNER, 2 * 10**18)
    node.set_balance(USDC, OWNER, 1500)
    node.set_balance(WETH, OWNER, 0)
    node.set_balance(ARB, OWNER, 5 * 10**18)
    for token in (USDC, WETH, ARB):
        node.set_metadata(token)
    return node


def _fetch(node, backend=None, **kwargs):
    registry = make_registry(make_network())
    rpc = RpcClient(registry, transport=node.transport(), environ={})
    fetcher = BalanceFetcher(registry, rpc, backend=backend, **kwargs)

    async def main():
        try:
            return await fetcher.fetch_chain_balances(CHAIN, OWNER)
        finally:
            await rpc.aclose()
            if backend is not None:
                await backend.aclose()

    return asyncio.run(main())


def test_format_units_is_exact():
    assert format_units(1500, 6) == "0.0015"
    assert format_units(2 * 10**18, 18) == "2"
    assert format_units(123456789, 0) == "123456789"
    assert format_units(1, 18) == "0.000000000000000001"
    assert format_units(0, 18) == "0"


def test_native_and_token_balances_are_read():
    result = _fetch(_funded_node())
    assert not result.failed
    assert result.failures == ()
    assert result.native.raw == 2 * 10**18
    assert result.native.formatted == "2"
    assert result.native.is_native
    assert [(b.token.symbol, b.formatted) for b in result.tokens] == [("USDC", "0.0015"), ("ARB", "5")]


def test_zero_balances_are_omitted():
    node = _funded_node()
    node.set_native(OWNER, 0)
    result = _fetch(node)
    assert result.native is None
    assert all(b.raw > 0 for b in result.balances)
    assert not result.failed


def test_onchain_metadata_overrides_registry_values():
    node = _funded_node()
    node.set_metadata(ARB, symbol="ARB2", name="Arbitrum Two")
    result = _fetch(node)
    arb = result.tokens[-1]
    assert arb.token.symbol == "ARB2"
    assert arb.token.name == "Arbitrum Two"


def test_missing_metadata_falls_back_to_registry():
    node = FakeNode()
    node.set_balance(USDC, OWNER, 1500)
    node.set_balance(WETH, OWNER, 0)
    node.set_balance(ARB, OWNER, 0)
    result = _fetch(node)
    (usdc,) = result.tokens
    assert usdc.token.symbol == "USDC"
    assert usdc.decimals == 6
    assert usdc.formatted == "0.0015"


def test_reverting_token_is_a_per_token_failure():
    node = _funded_node()
    del node.calls[(WETH.key, balance_of_call(OWNER).lower())]
    result = _fetch(node)
    assert not result.failed
    assert [f.asset for f in result.failures] == ["WETH"]
    assert result.failures[0].failure.reason is FailureReason.RPC_ERROR
    assert [b.token.symbol for b in result.tokens] == ["USDC", "ARB"]


def test_unreachable_chain_is_marked_failed():
    node = _funded_node()
    node.down = {"rpc-a.test", "rpc-b.test"}
    result = _fetch(node)
    assert result.failed
    assert result.balances == []
    assert {f.failure.reason for f in result.failures} == {FailureReason.NETWORK}


def test_native_failure_alone_does_not_fail_the_chain(monkeypatch):
    node = _funded_node()
    original = node._answer

    def reject_balance(item):
        if item["method"] == "eth_getBalance":
            return {"jsonrpc": "2.0", "id": item["id"], "error": {"code": -32000, "message": "header not found"}}
        return original(item)

    monkeypatch.setattr(node, "_answer", reject_balance)
    result = _fetch(node)
    assert not result.failed
    assert result.native is None
    assert [f.asset for f in result.failures] == ["ETH"]
    assert len(result.tokens) == 2


def test_transient_failure_is_retried():
    node = _funded_node()
    node.fail_next = 1
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    result = _fetch(node, retry=RetryPolicy(retries=1, backoff=0.3), sleep=fake_sleep)
    assert not result.failed
    assert result.failures == ()
    assert sleeps == [0.3]
    assert result.native.raw == 2 * 10**18


def test_backend_balances_take_precedence():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if request.url.path == f"/api/balances/{CHAIN}/{OWNER}":
            return httpx.Response(200, json={"balanceWei": str(3 * 10**18)})
        if request.url.path == "/api/token-balances/batch":
            return httpx.Response(
                200,
                json={
                    "results": [
                        {
                            "tokenAddress": USDC.address,
                            "data": {"balanceRaw": "2500000", "symbol": "USDC", "name": "USD Coin", "decimals": 6},
                        }
                    ]
                },
            )
        return httpx.Response(404, json={})

    backend = BackendClient("https://backend.test", transport=httpx.MockTransport(handler))
    node = _funded_node()
    result = _fetch(node, backend=backend)

    assert result.native.raw == 3 * 10**18
    assert [(b.token.symbol, b.formatted) for b in result.tokens] == [("USDC", "2.5"), ("ARB", "5")]
    assert node.method_counts["eth_getBalance"] == 0


def test_unusable_backend_entries_fall_back_to_balance_of():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if request.url.path == f"/api/balances/{CHAIN}/{OWNER}":
            return httpx.Response(200, json={"balanceWei": str(3 * 10**18)})
        if request.url.path == "/api/token-balances/batch":
            return httpx.Response(
                200,
                json={
                    "results": [
                        {
                            "tokenAddress": USDC.address,
                            "data": {"balanceRaw": "2500000", "symbol": "USDC", "decimals": "six"},
                        },
                        {
                            "tokenAddress": ARB.address,
                            "data": {"balanceRaw": str(7 * 10**18), "symbol": 42, "decimals": 18},
                        },
                    ]
                },
            )
        return httpx.Response(404, json={})

    backend = BackendClient("https://backend.test", transport=httpx.MockTransport(handler))
    result = _fetch(_funded_node(), backend=backend)

    assert not result.failed
    assert result.failures == ()
    assert result.native.raw == 3 * 10**18
    assert [(b.token.symbol, b.formatted) for b in result.tokens] == [("USDC", "0.0015"), ("ARB", "7")]


def test_failing_backend_falls_back_to_rpc():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(500, json={"error": "internal"})

    backend = BackendClient("https://backend.test", transport=httpx.MockTransport(handler))
    node = _funded_node()
    result = _fetch(node, backend=backend)

    assert "/api/token-balances/batch" in paths
    assert node.method_counts["eth_getBalance"] == 1
    assert node.method_counts["eth_call"] > 0
    assert not result.failed
    assert result.failures == ()
    assert result.native.raw == 2 * 10**18
    assert [(b.token.symbol, b.formatted) for b in result.tokens] == [("USDC", "0.0015"), ("ARB", "5")]
