"""RPC endpoint pool: health bookkeeping and failover selection."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

# Cooldown grows with consecutive failures, capped.
COOLDOWN_STEP = 15.0
COOLDOWN_MAX = 300.0


@dataclass(slots=True)
class RpcEndpoint:
    """Runtime state of one RPC URL."""

    name: str
    url: str
    priority: int = 0
    last_checked: float = 0.0
    consecutive_failures: int = 0
    latency_ms: float = 0.0
    healthy: bool = True
    failure_reason: str = ""
    cooldown_until: float = 0.0


@dataclass(slots=True)
class HealthCheckResult:
    """Outcome of one probe, for logs and the CLI."""

    chain_id: int
    endpoint: RpcEndpoint
    ok: bool
    reason: str = ""
    latency_ms: Optional[float] = None
    block_number: Optional[int] = None


class EndpointPool:
    """Priority-ordered endpoints of one chain with failure cooldowns."""

    def __init__(self, endpoints: Iterable[RpcEndpoint], clock: Callable[[], float] = time.monotonic) -> None:
        self._endpoints: List[RpcEndpoint] = sorted(list(endpoints), key=lambda e: e.priority)
        self._cursor = 0
        self._clock = clock

    @classmethod
    def from_urls(cls, urls: Iterable[str], clock: Callable[[], float] = time.monotonic) -> "EndpointPool":
        return cls(
            (RpcEndpoint(name=f"rpc{idx}", url=url, priority=idx) for idx, url in enumerate(urls)),
            clock=clock,
        )

    @property
    def endpoints(self) -> List[RpcEndpoint]:
        return list(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    def _round_robin(self) -> RpcEndpoint:
        endpoint = self._endpoints[self._cursor % len(self._endpoints)]
        self._cursor = (self._cursor + 1) % len(self._endpoints)
        return endpoint

    def choose_healthy(self) -> Optional[RpcEndpoint]:
        """First endpoint that is healthy or whose cooldown has elapsed."""

        now = self._clock()
        for endpoint in self._endpoints:
            if endpoint.healthy or now >= endpoint.cooldown_until:
                return endpoint
        return None

    def choose(self) -> RpcEndpoint:
        """Endpoint for the next request; round-robin when none is healthy."""

        if not self._endpoints:
            raise LookupError("endpoint pool is empty")
        return self.choose_healthy() or self._round_robin()

    def mark_success(self, endpoint: RpcEndpoint, latency_ms: float) -> None:
        endpoint.latency_ms = latency_ms
        endpoint.last_checked = self._clock()
        endpoint.consecutive_failures = 0
        endpoint.healthy = True
        endpoint.failure_reason = ""
        endpoint.cooldown_until = 0.0

    def mark_failure(self, endpoint: RpcEndpoint, reason: str) -> None:
        endpoint.consecutive_failures += 1
        endpoint.last_checked = self._clock()
        endpoint.healthy = False
        endpoint.latency_ms = 0.0
        endpoint.failure_reason = reason
        cooldown = min(COOLDOWN_STEP * endpoint.consecutive_failures, COOLDOWN_MAX)
        endpoint.cooldown_until = endpoint.last_checked + cooldown

    def snapshot(self) -> List[Dict[str, object]]:
        return [
            {
                "name": ep.name,
                "url": ep.url,
                "healthy": ep.healthy,
                "latency_ms": ep.latency_ms,
                "failures": ep.consecutive_failures,
                "last_checked": ep.last_checked,
                "reason": ep.failure_reason,
            }
            for ep in self._endpoints
        ]


__all__ = ["COOLDOWN_MAX", "COOLDOWN_STEP", "EndpointPool", "HealthCheckResult", "RpcEndpoint"]
