"""CoinGecko-compatible price API client used as the last pricing tier."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from core.models import FailureReason, Result

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"


class ExternalPriceClient:
    """Looks up USD prices by (platform, contract) or by coin id.

    HTTP 429 puts the client into a cooldown that grows with consecutive
    rate-limit hits; lookups during the cooldown fail fast as ``disabled``.
    """

    name = "external_price_api"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        api_key_header: str = "x-cg-demo-api-key",
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers[api_key_header] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers, transport=transport
        )
        self._clock = clock
        self._fail_count = 0
        self._snooze_until = 0.0

    def _in_cooldown(self) -> bool:
        remaining = self._snooze_until - self._clock()
        if remaining > 0:
            LOGGER.debug("Price API cooling down for %.1fs", remaining)
            return True
        return False

    def _record_rate_limit(self) -> None:
        self._fail_count += 1
        cooldown = min(60.0 * self._fail_count, 600.0)
        self._snooze_until = self._clock() + cooldown
        LOGGER.warning("Price API rate limited (#%s), cooling down %.0fs", self._fail_count, cooldown)

    async def _get(self, path: str, params: Dict[str, str]) -> Result:
        if self._in_cooldown():
            return Result.fail(FailureReason.DISABLED, "rate-limit cooldown")
        try:
            resp = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            return Result.fail(FailureReason.TIMEOUT, str(exc) or "price API timed out")
        except httpx.RequestError as exc:
            return Result.fail(FailureReason.NETWORK, str(exc) or type(exc).__name__)
        if resp.status_code == 429:
            self._record_rate_limit()
        if resp.status_code != 200:
            return Result.fail(FailureReason.HTTP_STATUS, f"status {resp.status_code}")
        self._fail_count = 0
        try:
            return Result.success(resp.json())
        except ValueError as exc:
            return Result.fail(FailureReason.MALFORMED, f"invalid JSON: {exc}")

    @staticmethod
    def _usd_field(data: Any, key: str) -> Result:
        entry = data.get(key) if isinstance(data, dict) else None
        value = entry.get("usd") if isinstance(entry, dict) else None
        if value is None:
            return Result.fail(FailureReason.MISSING_FIELD, f"no usd price for {key}")
        try:
            return Result.success(float(value))
        except (TypeError, ValueError):
            return Result.fail(FailureReason.MALFORMED, f"non-numeric usd price for {key}: {value!r}")

    async def token_price(self, platform: str, contract_address: str) -> Result:
        address = contract_address.lower()
        fetched = await self._get(
            f"/simple/token_price/{platform}",
            {"contract_addresses": address, "vs_currencies": "usd"},
        )
        if not fetched.ok:
            return fetched
        # The API keys the response by lowercase address.
        return self._usd_field(fetched.value, address)

    async def coin_price(self, coin_id: str) -> Result:
        fetched = await self._get("/simple/price", {"ids": coin_id, "vs_currencies": "usd"})
        if not fetched.ok:
            return fetched
        return self._usd_field(fetched.value, coin_id)

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["DEFAULT_BASE_URL", "ExternalPriceClient"]
