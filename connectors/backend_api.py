"""Optional aggregation backend: a fast path for balances and prices.

Every lookup first checks the backend's ``/health`` (cached for a few
seconds); an unhealthy or unreachable backend makes each call fail with
``disabled`` so callers fall back to RPC silently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

import httpx

from core.models import FailureReason, Result

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BackendTokenBalance:
    address: str
    symbol: Optional[str]
    name: Optional[str]
    decimals: Optional[int]
    raw: int


class BackendClient:
    name = "backend"

    def __init__(
        self,
        base_url: str,
        timeout: float = 4.0,
        health_ttl: float = 10.0,
        health_timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self._health_ttl = health_ttl
        self._health_timeout = health_timeout
        self._clock = clock
        self._healthy: Optional[bool] = None
        self._checked_at = 0.0
        self._health_lock = asyncio.Lock()

    def invalidate_health(self) -> None:
        self._healthy = None

    async def is_healthy(self) -> bool:
        """Cached ``GET /health``; concurrent callers share one request."""

        async with self._health_lock:
            if self._healthy is not None and self._clock() - self._checked_at < self._health_ttl:
                return self._healthy
            self._healthy = await self._probe()
            self._checked_at = self._clock()
            return self._healthy

    async def _probe(self) -> bool:
        try:
            resp = await self._client.get("/health", timeout=self._health_timeout, headers={"Accept": "application/json"})
        except httpx.RequestError as exc:
            LOGGER.debug("Backend health check failed: %s", exc)
            return False
        if resp.status_code != 200 or "application/json" not in resp.headers.get("content-type", ""):
            return False
        try:
            data = resp.json()
        except ValueError:
            return False
        return isinstance(data, dict) and data.get("status") == "ok"

    async def _request(self, method: str, path: str, json: Any = None) -> Result:
        if not await self.is_healthy():
            return Result.fail(FailureReason.DISABLED, "backend unavailable")
        try:
            resp = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            return Result.fail(FailureReason.TIMEOUT, str(exc) or "backend timed out")
        except httpx.RequestError as exc:
            self.invalidate_health()
            return Result.fail(FailureReason.NETWORK, str(exc) or type(exc).__name__)
        if resp.status_code != 200:
            return Result.fail(FailureReason.HTTP_STATUS, f"status {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            return Result.fail(FailureReason.MALFORMED, f"invalid JSON: {exc}")
        if not isinstance(data, dict):
            return Result.fail(FailureReason.MALFORMED, "expected JSON object")
        return Result.success(data)

    async def native_balance(self, chain_id: int, address: str) -> Result:
        """Native balance in base units (``balanceWei``)."""

        fetched = await self._request("GET", f"/api/balances/{chain_id}/{address}")
        if not fetched.ok:
            return fetched
        raw = fetched.value.get("balanceWei")
        if raw is None:
            return Result.fail(FailureReason.MISSING_FIELD, "balanceWei")
        try:
            return Result.success(int(str(raw), 0) if str(raw).startswith("0x") else int(str(raw)))
        except ValueError:
            return Result.fail(FailureReason.MALFORMED, f"balanceWei: {raw!r}")

    async def token_balances(self, chain_id: int, owner: str, tokens: Sequence[str]) -> Result:
        """Balances keyed by lowercase token address; tokens the backend could not
        answer are left out of the mapping."""

        body = {
            "requests": [
                {"chainId": chain_id, "tokenAddress": token, "userAddress": owner} for token in tokens
            ]
        }
        fetched = await self._request("POST", "/api/token-balances/batch", json=body)
        if not fetched.ok:
            return fetched
        results = fetched.value.get("results")
        if not isinstance(results, list):
            return Result.fail(FailureReason.MISSING_FIELD, "results")
        balances: Dict[str, BackendTokenBalance] = {}
        for item in results:
            if not isinstance(item, dict) or not isinstance(item.get("data"), dict):
                continue
            data = item["data"]
            address = str(item.get("tokenAddress") or data.get("address") or "").lower()
            try:
                raw = int(str(data.get("balanceRaw")))
            except ValueError:
                LOGGER.debug("Backend returned unparseable balance for %s", address)
                continue
            decimals = data.get("decimals")
            if decimals is not None:
                try:
                    decimals = int(decimals)
                except (TypeError, ValueError):
                    decimals = -1
                if not 0 <= decimals <= 255:
                    LOGGER.debug("Backend returned unusable decimals for %s", address)
                    continue
            symbol, name = data.get("symbol"), data.get("name")
            balances[address] = BackendTokenBalance(
                address=address,
                symbol=symbol if isinstance(symbol, str) and symbol else None,
                name=name if isinstance(name, str) and name else None,
                decimals=decimals,
                raw=raw,
            )
        return Result.success(balances)

    async def price(self, chain_id: int, token_address: str) -> Result:
        fetched = await self._request("GET", f"/api/prices/{chain_id}/{token_address}")
        if not fetched.ok:
            return fetched
        value = fetched.value.get("price")
        if value is None:
            return Result.fail(FailureReason.MISSING_FIELD, "price")
        try:
            price = float(value)
        except (TypeError, ValueError):
            return Result.fail(FailureReason.MALFORMED, f"price: {value!r}")
        if price <= 0:
            return Result.fail(FailureReason.MISSING_FIELD, "non-positive price")
        return Result.success(price)

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["BackendClient", "BackendTokenBalance"]
