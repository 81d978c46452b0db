"""Tiered USD price discovery.

Tiers are tried in order and the first success wins:

1. stablecoin symbols are worth exactly 1.0 and need no network call;
2. the aggregation backend, when configured and healthy;
3. on-chain Uniswap V3 pools, directly against the chain's USD stablecoin or
   through the wrapped native token (one intermediate hop at most);
4. the external price API;
5. otherwise the quote is ``unavailable`` with a price of 0.

Quotes are cached per (chain, token); unavailable quotes for a shorter time
so a transient outage does not pin a token at zero.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from connectors.abi import (
    DECIMALS,
    SLOT0,
    TOKEN0,
    TOKEN1,
    ZERO_ADDRESS,
    decode_address,
    decode_sqrt_price,
    decode_uint,
    encode_call,
    eth_call_params,
    get_pool_call,
)
from connectors.backend_api import BackendClient
from connectors.price_api import ExternalPriceClient
from connectors.rpc_client import RpcClient, RpcRequest
from core.cache import METADATA_CACHE, MISSING, SPOT_CACHE, TTLCache
from core.models import FailureReason, PriceQuote, PriceSource, Result
from core.networks import NetworkConfig, NetworkRegistry, TokenDescriptor, is_stablecoin
from core.retry import RetryPolicy, Sleep, call_with_retry
from pricing.pool_math import compose, is_sane, price_from_pool

LOGGER = logging.getLogger(__name__)

DEFAULT_FEE_TIER = 3000
NATIVE_KEY = "native"


class PriceOracle:
    def __init__(
        self,
        registry: NetworkRegistry,
        rpc: RpcClient,
        cache: Optional[TTLCache] = None,
        external: Optional[ExternalPriceClient] = None,
        backend: Optional[BackendClient] = None,
        retry: RetryPolicy = RetryPolicy(),
        sleep: Sleep = asyncio.sleep,
        fee_tier: int = DEFAULT_FEE_TIER,
        quote_ttl: float = 60.0,
        unavailable_ttl: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._rpc = rpc
        self._cache = cache if cache is not None else TTLCache()
        self._external = external
        self._backend = backend
        self._retry = retry
        self._sleep = sleep
        self._fee_tier = fee_tier
        self._quote_ttl = quote_ttl
        self._unavailable_ttl = unavailable_ttl
        self._clock = clock

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def _quote(self, chain_id: int, token_address: str, price: float, source: PriceSource) -> PriceQuote:
        return PriceQuote(
            chain_id=chain_id,
            token_address=token_address,
            unit_price_usd=price,
            source=source,
            resolved_at=self._clock(),
        )

    def _store(self, key: tuple, quote: PriceQuote) -> PriceQuote:
        ttl = self._quote_ttl if quote.available else self._unavailable_ttl
        self._cache.set(key, quote, ttl)
        return quote

    async def _with_retry(self, op, label: str) -> Result:
        return await call_with_retry(op, self._retry, sleep=self._sleep, label=label)

    async def resolve_price(self, chain_id: int, token_address: str, symbol: Optional[str] = None) -> PriceQuote:
        network = self._registry.get(chain_id)
        address = token_address.lower()
        known = network.find_token(address)
        if symbol is None and known is not None:
            symbol = known.symbol
        # Checked before the cache so a stablecoin symbol always prices at 1.0.
        if is_stablecoin(symbol):
            return self._quote(chain_id, address, 1.0, PriceSource.STABLECOIN)

        key = ("price", chain_id, address)
        cached = self._cache.get(key)
        if cached is not MISSING:
            return cached

        label = f"{symbol or address}@{network.name}"
        if self._backend is not None:
            result = await self._with_retry(lambda: self._backend.price(chain_id, address), f"backend price {label}")
            if result.ok and is_sane(result.value):
                return self._store(key, self._quote(chain_id, address, result.value, PriceSource.BACKEND))
            LOGGER.debug("Backend price for %s unavailable: %s", label, result.failure)

        result = await self._amm_price(network, address)
        if result.ok:
            return self._store(key, self._quote(chain_id, address, result.value, PriceSource.ONCHAIN_POOL))
        LOGGER.debug("Pool price for %s unavailable: %s", label, result.failure)

        if self._external is not None and network.price_platform:
            result = await self._with_retry(
                lambda: self._external.token_price(network.price_platform, address), f"external price {label}"
            )
            if result.ok and is_sane(result.value):
                return self._store(key, self._quote(chain_id, address, result.value, PriceSource.EXTERNAL_API))
            LOGGER.debug("External price for %s unavailable: %s", label, result.failure)

        LOGGER.warning("No price source for %s; valuing at 0", label)
        return self._store(key, self._quote(chain_id, address, 0.0, PriceSource.UNAVAILABLE))

    async def resolve_native_price(self, chain_id: int) -> PriceQuote:
        """Price of the chain's native currency, via its wrapped token."""

        network = self._registry.get(chain_id)
        key = ("price", chain_id, NATIVE_KEY)
        cached = self._cache.get(key)
        if cached is not MISSING:
            return cached

        if is_stablecoin(network.native_currency.symbol):
            return self._store(key, self._quote(chain_id, NATIVE_KEY, 1.0, PriceSource.STABLECOIN))

        wrapped = await self.resolve_price(chain_id, network.quote_token.address, network.quote_token.symbol)
        if wrapped.available:
            return self._store(key, self._quote(chain_id, NATIVE_KEY, wrapped.unit_price_usd, wrapped.source))

        if self._external is not None and network.native_coin_id:
            result = await self._with_retry(
                lambda: self._external.coin_price(network.native_coin_id),
                f"external price {network.native_coin_id}",
            )
            if result.ok and is_sane(result.value):
                return self._store(key, self._quote(chain_id, NATIVE_KEY, result.value, PriceSource.EXTERNAL_API))
            LOGGER.debug("External native price for %s unavailable: %s", network.name, result.failure)

        LOGGER.warning("No price source for native %s on %s", network.native_currency.symbol, network.name)
        return self._store(key, self._quote(chain_id, NATIVE_KEY, 0.0, PriceSource.UNAVAILABLE))

    async def _amm_price(self, network: NetworkConfig, address: str) -> Result:
        if not network.amm_factory:
            return Result.fail(FailureReason.UNSUPPORTED, f"no AMM factory on {network.name}")

        stable = network.stable_quote
        wrapped = network.quote_token
        direct = await self._pool_price(network, address, stable)
        if direct.ok or address == wrapped.key:
            return direct

        hop1 = await self._pool_price(network, address, wrapped)
        if not hop1.ok:
            return hop1
        hop2 = await self._pool_price(network, wrapped.key, stable)
        if not hop2.ok:
            return hop2
        price = compose(hop1.value, hop2.value)
        if price is None:
            return Result.fail(FailureReason.NO_POOL, "composed price out of bounds")
        return Result.success(price)

    async def _pool_price(self, network: NetworkConfig, address: str, quote: TokenDescriptor) -> Result:
        return await self._with_retry(
            lambda: self._read_pool(network, address, quote), f"pool {address}/{quote.symbol}@{network.name}"
        )

    async def _read_pool(self, network: NetworkConfig, address: str, quote: TokenDescriptor) -> Result:
        """Price of ``address`` in units of ``quote`` from the fee-tier pool."""

        chain_id = network.chain_id
        found = await self._rpc.call(
            chain_id,
            "eth_call",
            eth_call_params(network.amm_factory, get_pool_call(address, quote.address, self._fee_tier)),
            METADATA_CACHE,
        )
        if not found.ok:
            return found
        pool = decode_address(found.value)
        if not pool.ok:
            return pool
        if pool.value == ZERO_ADDRESS:
            return Result.fail(FailureReason.NO_POOL, f"no {self._fee_tier} pool for {address}/{quote.symbol}")

        results = await self._rpc.batch_call(
            chain_id,
            [
                RpcRequest("eth_call", eth_call_params(pool.value, encode_call(SLOT0)), SPOT_CACHE),
                RpcRequest("eth_call", eth_call_params(pool.value, encode_call(TOKEN0)), METADATA_CACHE),
                RpcRequest("eth_call", eth_call_params(pool.value, encode_call(TOKEN1)), METADATA_CACHE),
                RpcRequest("eth_call", eth_call_params(address, encode_call(DECIMALS)), METADATA_CACHE),
                RpcRequest("eth_call", eth_call_params(quote.address, encode_call(DECIMALS)), METADATA_CACHE),
            ],
        )
        for result in results[:3]:
            if not result.ok:
                return result
        sqrt_price = decode_sqrt_price(results[0].value)
        token0 = decode_address(results[1].value)
        token1 = decode_address(results[2].value)
        for decoded in (sqrt_price, token0, token1):
            if not decoded.ok:
                return decoded

        known = network.find_token(address)
        priced_decimals = _decimals(results[3], known.decimals if known else None)
        quote_decimals = _decimals(results[4], quote.decimals)
        if priced_decimals is None:
            return Result.fail(FailureReason.MISSING_FIELD, f"decimals of {address}")

        if token0.value == address:
            decimals0, decimals1 = priced_decimals, quote_decimals
        else:
            decimals0, decimals1 = quote_decimals, priced_decimals
        price = price_from_pool(sqrt_price.value, token0.value, token1.value, address, decimals0, decimals1)
        if price is None:
            return Result.fail(FailureReason.NO_POOL, f"unusable pool price at {pool.value}")
        return Result.success(price)


def _decimals(result: Result, fallback: Optional[int]) -> Optional[int]:
    if result.ok:
        decoded = decode_uint(result.value)
        if decoded.ok and 0 <= decoded.value <= 255:
            return decoded.value
    return fallback


__all__ = ["DEFAULT_FEE_TIER", "NATIVE_KEY", "PriceOracle"]
