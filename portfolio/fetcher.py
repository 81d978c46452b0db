"""Per-chain balance discovery: native currency plus configured ERC-20 tokens."""

from __future__ import annotations

import asyncio
import decimal
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from connectors.abi import (
    DECIMALS,
    NAME,
    SYMBOL,
    balance_of_call,
    decode_quantity,
    decode_string,
    decode_uint,
    encode_call,
    eth_call_params,
)
from connectors.backend_api import BackendClient, BackendTokenBalance
from connectors.rpc_client import RpcClient, RpcRequest
from core.cache import BALANCE_CACHE, METADATA_CACHE
from core.models import Balance, Failure, FailureReason, Result
from core.networks import NATIVE, NetworkConfig, NetworkRegistry, TokenDescriptor
from core.retry import RetryPolicy, Sleep, call_with_retry

LOGGER = logging.getLogger(__name__)


def format_units(raw: int, decimals: int) -> str:
    """Exact decimal rendering of ``raw / 10**decimals`` without exponent notation."""

    with decimal.localcontext() as ctx:
        ctx.prec = 120
        value = Decimal(raw).scaleb(-decimals).normalize()
        return format(value, "f")


@dataclass(frozen=True, slots=True)
class FetchFailure:
    chain_id: int
    asset: str
    failure: Failure


@dataclass(frozen=True, slots=True)
class ChainBalances:
    """Non-zero balances of one chain. ``failed`` means nothing could be read."""

    chain_id: int
    native: Optional[Balance]
    tokens: Tuple[Balance, ...]
    failures: Tuple[FetchFailure, ...] = ()
    failed: bool = False

    @property
    def balances(self) -> List[Balance]:
        items = [self.native] if self.native is not None else []
        return items + list(self.tokens)


class BalanceFetcher:
    def __init__(
        self,
        registry: NetworkRegistry,
        rpc: RpcClient,
        backend: Optional[BackendClient] = None,
        retry: RetryPolicy = RetryPolicy(),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._rpc = rpc
        self._backend = backend
        self._retry = retry
        self._sleep = sleep

    async def fetch_chain_balances(self, chain_id: int, owner: str) -> ChainBalances:
        network = self._registry.get(chain_id)
        native_result, token_result = await asyncio.gather(
            self._native_balance(network, owner),
            self._token_balances(network, owner),
        )
        failures: List[FetchFailure] = []

        native: Optional[Balance] = None
        if native_result.ok:
            raw = native_result.value
            if raw > 0:
                decimals = network.native_currency.decimals
                native = Balance(
                    chain_id=chain_id, token=NATIVE, raw=raw, formatted=format_units(raw, decimals), decimals=decimals
                )
        else:
            failures.append(FetchFailure(chain_id, network.native_currency.symbol, native_result.failure))
            LOGGER.warning("Native balance on %s failed: %s", network.name, native_result.failure)

        tokens: Tuple[Balance, ...] = ()
        if token_result.ok:
            tokens, token_failures = token_result.value
            failures.extend(token_failures)
        else:
            failures.append(FetchFailure(chain_id, "erc20-batch", token_result.failure))
            LOGGER.warning("Token balance batch on %s failed: %s", network.name, token_result.failure)

        token_batch_failed = not token_result.ok or not network.common_tokens
        failed = not native_result.ok and token_batch_failed
        return ChainBalances(
            chain_id=chain_id, native=native, tokens=tokens, failures=tuple(failures), failed=failed
        )

    async def _native_balance(self, network: NetworkConfig, owner: str) -> Result:
        if self._backend is not None:
            result = await self._backend.native_balance(network.chain_id, owner)
            if result.ok:
                return result
            LOGGER.debug("Backend native balance on %s unavailable: %s", network.name, result.failure)

        async def _rpc() -> Result:
            fetched = await self._rpc.call(network.chain_id, "eth_getBalance", [owner, "latest"])
            return decode_quantity(fetched.value) if fetched.ok else fetched

        return await call_with_retry(_rpc, self._retry, sleep=self._sleep, label=f"eth_getBalance@{network.name}")

    async def _token_balances(self, network: NetworkConfig, owner: str) -> Result:
        """Result of ``(non-zero balances, per-token failures)``."""

        tokens = list(network.common_tokens)
        if not tokens:
            return Result.success(((), []))

        raws: Dict[str, int] = {}
        metadata: Dict[str, BackendTokenBalance] = {}
        failures: List[FetchFailure] = []
        remaining = tokens
        if self._backend is not None:
            backed = await self._backend.token_balances(network.chain_id, owner, [t.address for t in tokens])
            if backed.ok:
                metadata = backed.value
                raws.update({address: entry.raw for address, entry in metadata.items()})
                remaining = [t for t in tokens if t.key not in raws]
            else:
                LOGGER.debug("Backend token balances on %s unavailable: %s", network.name, backed.failure)

        if remaining:
            batch = await call_with_retry(
                lambda: self._balance_of_batch(network, owner, remaining),
                self._retry,
                sleep=self._sleep,
                label=f"balanceOf batch@{network.name}",
            )
            if not batch.ok:
                if not raws:
                    return batch
                failures.append(FetchFailure(network.chain_id, "erc20-batch", batch.failure))
            else:
                for token, result in zip(remaining, batch.value):
                    decoded = decode_uint(result.value) if result.ok else result
                    if decoded.ok:
                        raws[token.key] = decoded.value
                    else:
                        failures.append(FetchFailure(network.chain_id, token.symbol, decoded.failure))
                        LOGGER.debug("balanceOf %s on %s failed: %s", token.symbol, network.name, decoded.failure)

        held = [t for t in tokens if raws.get(t.key, 0) > 0]
        descriptors = await self._metadata(network, held, metadata)
        balances = tuple(
            Balance(
                chain_id=network.chain_id,
                token=descriptor,
                raw=raws[descriptor.key],
                formatted=format_units(raws[descriptor.key], descriptor.decimals),
                decimals=descriptor.decimals,
            )
            for descriptor in descriptors
        )
        return Result.success((balances, failures))

    async def _balance_of_batch(self, network: NetworkConfig, owner: str, tokens: Sequence[TokenDescriptor]) -> Result:
        requests = [
            RpcRequest("eth_call", eth_call_params(t.address, balance_of_call(owner)), BALANCE_CACHE) for t in tokens
        ]
        results = await self._rpc.batch_call(network.chain_id, requests)
        # A transport failure fails every member with the same value; a lone
        # reverted balanceOf is a per-token failure.
        first = results[0]
        if not first.ok and all(r is first for r in results):
            if len(results) > 1 or first.failure.reason is not FailureReason.RPC_ERROR:
                return first
        return Result.success(results)

    async def _metadata(
        self,
        network: NetworkConfig,
        tokens: Sequence[TokenDescriptor],
        backend_meta: Dict[str, BackendTokenBalance],
    ) -> List[TokenDescriptor]:
        """Best-effort on-chain symbol/name/decimals; registry values fill any gap."""

        need_rpc = [t for t in tokens if t.key not in backend_meta]
        onchain: Dict[str, Tuple[Result, Result, Result]] = {}
        if need_rpc:
            requests: List[RpcRequest] = []
            for token in need_rpc:
                for selector in (SYMBOL, NAME, DECIMALS):
                    requests.append(RpcRequest("eth_call", eth_call_params(token.address, encode_call(selector))))
            results = await self._rpc.batch_call(network.chain_id, requests, METADATA_CACHE)
            for index, token in enumerate(need_rpc):
                symbol, name, decimals = results[index * 3 : index * 3 + 3]
                onchain[token.key] = (
                    decode_string(symbol.value) if symbol.ok else symbol,
                    decode_string(name.value) if name.ok else name,
                    decode_uint(decimals.value) if decimals.ok else decimals,
                )

        resolved: List[TokenDescriptor] = []
        for token in tokens:
            symbol, name, decimals = token.symbol, token.name, token.decimals
            if token.key in backend_meta:
                entry = backend_meta[token.key]
                symbol = entry.symbol or symbol
                name = entry.name or name
                decimals = entry.decimals if entry.decimals is not None else decimals
            elif token.key in onchain:
                sym_r, name_r, dec_r = onchain[token.key]
                symbol = sym_r.unwrap_or(symbol)
                name = name_r.unwrap_or(name)
                if dec_r.ok and 0 <= dec_r.value <= 255:
                    decimals = dec_r.value
                elif dec_r.failure is not None:
                    LOGGER.debug("decimals() of %s on %s unavailable, using %s", token.symbol, network.name, decimals)
            resolved.append(
                TokenDescriptor(
                    address=token.address, symbol=symbol, name=name, decimals=decimals, logo_url=token.logo_url
                )
            )
        return resolved


__all__ = ["BalanceFetcher", "ChainBalances", "FetchFailure", "format_units"]
