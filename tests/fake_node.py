"""In-memory JSON-RPC node served through ``httpx.MockTransport``."""

import json
import math
import sys
from collections import Counter
from fractions import Fraction
from pathlib import Path

import httpx
from eth_abi import encode

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from connectors.abi import (
    DECIMALS,
    GET_POOL,
    NAME,
    SLOT0,
    SYMBOL,
    TOKEN0,
    TOKEN1,
    balance_of_call,
    encode_call,
    get_pool_call,
)
from core.networks import NativeCurrency, NetworkConfig, NetworkRegistry, TokenDescriptor

OWNER = "0x1111111111111111111111111111111111111111"
FACTORY = "0x00000000000000000000000000000000000000f0"
USDC = TokenDescriptor("0x00000000000000000000000000000000000000a1", "USDC", "USD Coin", 6)
WETH = TokenDescriptor("0x00000000000000000000000000000000000000b2", "WETH", "Wrapped Ether", 18)
ARB = TokenDescriptor("0x00000000000000000000000000000000000000c3", "ARB", "Arbitrum", 18)
POOL_WETH_USDC = "0x00000000000000000000000000000000000000d1"
POOL_ARB_WETH = "0x00000000000000000000000000000000000000d2"
Q192 = 2**192


def word_uint(value: int) -> str:
    return "0x" + encode(["uint256"], [value]).hex()


def word_address(address: str) -> str:
    return "0x" + encode(["address"], [address.lower()]).hex()


def abi_string(text: str) -> str:
    return "0x" + encode(["string"], [text]).hex()


def bytes32_string(text: str) -> str:
    return "0x" + text.encode("utf-8").ljust(32, b"\x00").hex()


def sqrt_price_x96(price_token1_per_token0, decimals0: int, decimals1: int) -> int:
    """Inverse of the pool price formula, for building fixtures."""

    raw = Fraction(price_token1_per_token0) * Fraction(10) ** (decimals1 - decimals0)
    return math.isqrt(int(raw * Q192))


def make_network(
    chain_id: int = 1001,
    name: str = "Testnet A",
    hosts=("rpc-a.test", "rpc-b.test"),
    tokens=(USDC, WETH, ARB),
    factory=FACTORY,
    native=NativeCurrency(symbol="ETH", name="Ether"),
    platform="test-platform",
    coin_id="ethereum",
) -> NetworkConfig:
    return NetworkConfig(
        chain_id=chain_id,
        name=name,
        rpc_endpoints=tuple(f"https://{host}/" for host in hosts),
        native_currency=native,
        quote_token=WETH,
        stable_quote=USDC,
        common_tokens=tuple(tokens),
        amm_factory=factory,
        price_platform=platform,
        native_coin_id=coin_id,
    )


def make_registry(*networks: NetworkConfig) -> NetworkRegistry:
    return NetworkRegistry(tuple(networks) or (make_network(),))


class FakeNode:
    """Answers JSON-RPC for a set of hosts from programmed contract state."""

    def __init__(self, *hosts: str) -> None:
        self.hosts = set(hosts or ("rpc-a.test", "rpc-b.test"))
        self.block = 0x10
        self.native = {}
        self.calls = {}
        self.down = set()
        self.timeouts = set()
        self.status = {}
        self.fail_next = 0
        self.requests = []
        self.method_counts = Counter()

    def transport(self) -> httpx.MockTransport:
        return route(self)

    # -- programming -----------------------------------------------------
    def set_native(self, owner: str, raw: int) -> None:
        self.native[owner.lower()] = raw

    def set_call(self, to: str, data: str, result: str) -> None:
        self.calls[(to.lower(), data.lower())] = result

    def set_balance(self, token: TokenDescriptor, owner: str, raw: int) -> None:
        self.set_call(token.address, balance_of_call(owner), word_uint(raw))

    def set_metadata(self, token: TokenDescriptor, symbol=None, name=None, decimals=None) -> None:
        self.set_call(token.address, encode_call(SYMBOL), abi_string(symbol or token.symbol))
        self.set_call(token.address, encode_call(NAME), abi_string(name or token.name))
        self.set_call(
            token.address, encode_call(DECIMALS), word_uint(token.decimals if decimals is None else decimals)
        )

    def add_pool(self, pool: str, token0: TokenDescriptor, token1: TokenDescriptor, sqrt_price: int, fee=3000) -> None:
        for a, b in ((token0, token1), (token1, token0)):
            self.set_call(FACTORY, get_pool_call(a.address, b.address, fee), word_address(pool))
        slot0 = encode(
            ["uint160", "int24", "uint16", "uint16", "uint16", "uint8", "bool"],
            [sqrt_price, 0, 0, 1, 1, 0, True],
        )
        self.set_call(pool, encode_call(SLOT0), "0x" + slot0.hex())
        self.set_call(pool, encode_call(TOKEN0), word_address(token0.address))
        self.set_call(pool, encode_call(TOKEN1), word_address(token1.address))

    # -- serving ---------------------------------------------------------
    def handle(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        body = json.loads(request.content)
        self.requests.append((host, body))
        if host in self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if host in self.timeouts:
            raise httpx.ReadTimeout("timed out", request=request)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise httpx.ReadTimeout("timed out", request=request)
        if host in self.status:
            return httpx.Response(self.status[host], json={"error": "unavailable"})
        if isinstance(body, list):
            return httpx.Response(200, json=[self._answer(item) for item in body])
        return httpx.Response(200, json=self._answer(body))

    def _answer(self, item: dict) -> dict:
        method, params = item["method"], item.get("params", [])
        self.method_counts[method] += 1
        reply = {"jsonrpc": "2.0", "id": item["id"]}
        if method == "eth_blockNumber":
            reply["result"] = hex(self.block)
        elif method == "eth_getBalance":
            reply["result"] = hex(self.native.get(params[0].lower(), 0))
        elif method == "eth_call":
            to, data = params[0]["to"].lower(), params[0]["data"].lower()
            if (to, data) in self.calls:
                reply["result"] = self.calls[(to, data)]
            elif data.startswith(GET_POOL):
                reply["result"] = word_address("0x" + "00" * 20)
            else:
                reply["error"] = {"code": 3, "message": "execution reverted"}
        else:
            reply["error"] = {"code": -32601, "message": "method not found"}
        return reply

    @property
    def transmissions(self) -> int:
        return len(self.requests)


def route(*nodes: FakeNode) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        for node in nodes:
            if request.url.host in node.hosts:
                return node.handle(request)
        raise httpx.ConnectError(f"unknown host {request.url.host}", request=request)

    return httpx.MockTransport(handler)


def weth_usdc_node(node: FakeNode, weth_usd: float = 3000.0) -> FakeNode:
    """USDC is token0 (lower address), so the pool price is WETH per USDC."""

    node.add_pool(POOL_WETH_USDC, USDC, WETH, sqrt_price_x96(Fraction(1) / Fraction(weth_usd), 6, 18))
    node.set_metadata(USDC)
    node.set_metadata(WETH)
    return node
