"""RPC endpoint probes for the CLI and automated checks."""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

import httpx

from core.event_bus import EventBus
from core.events import EventType, HealthStatus, Severity
from core.health import EndpointPool, HealthCheckResult

LOGGER = logging.getLogger(__name__)


async def probe_endpoints(
    chain_id: int,
    pool: EndpointPool,
    timeout: float = 5.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    event_bus: Optional[EventBus] = None,
) -> list[HealthCheckResult]:
    """Send ``eth_blockNumber`` to every endpoint in the pool.

    Results update the pool's health state, so a probe run also steers the
    failover choice of subsequent requests.
    """

    payload = {"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber", "params": []}
    results: list[HealthCheckResult] = []
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        for endpoint in pool.endpoints:
            started = time.perf_counter()
            try:
                resp = await client.post(endpoint.url, json=payload)
            except httpx.RequestError as exc:
                pool.mark_failure(endpoint, str(exc) or type(exc).__name__)
                results.append(HealthCheckResult(chain_id=chain_id, endpoint=endpoint, ok=False, reason=str(exc)))
                continue
            latency_ms = (time.perf_counter() - started) * 1000
            block_number = None
            reason = f"status {resp.status_code}"
            if resp.status_code == 200:
                try:
                    body = resp.json()
                    block_number = int(body["result"], 16)
                    reason = "ok"
                except (ValueError, KeyError, TypeError):
                    reason = "malformed eth_blockNumber response"
            ok = block_number is not None
            if ok:
                pool.mark_success(endpoint, latency_ms)
            else:
                pool.mark_failure(endpoint, reason)
            results.append(
                HealthCheckResult(
                    chain_id=chain_id,
                    endpoint=endpoint,
                    ok=ok,
                    reason=reason,
                    latency_ms=latency_ms if ok else None,
                    block_number=block_number,
                )
            )

    if event_bus is not None:
        for result in results:
            event_bus.emit(
                HealthStatus(
                    event_type=EventType.HEALTH_UPDATE,
                    severity=Severity.INFO if result.ok else Severity.WARNING,
                    source="health_checker",
                    message=f"{result.endpoint.url}: {result.reason}",
                    chain_id=chain_id,
                    endpoint=result.endpoint.url,
                    healthy=result.ok,
                    latency_ms=result.latency_ms,
                )
            )
    return results


async def probe_chains(
    pools: Iterable[tuple[int, EndpointPool]],
    timeout: float = 5.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    event_bus: Optional[EventBus] = None,
) -> list[HealthCheckResult]:
    results: list[HealthCheckResult] = []
    for chain_id, pool in pools:
        chain_results = await probe_endpoints(chain_id, pool, timeout=timeout, transport=transport, event_bus=event_bus)
        healthy = sum(1 for r in chain_results if r.ok)
        LOGGER.info("Chain %s: %d/%d endpoints healthy", chain_id, healthy, len(chain_results))
        results.extend(chain_results)
    return results


__all__ = ["probe_chains", "probe_endpoints"]
