"""JSON-RPC 2.0 client with per-chain sessions, batching and a TTL cache.

Each chain gets one long-lived ``httpx.AsyncClient`` and an endpoint pool
built from the chain's ordered RPC URLs. A call is transmitted exactly once
to the best endpoint; failures are returned as :class:`Result` values and, when
an event bus is attached, published as ``SystemFaultEvent``.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from core.cache import MISSING, DEFAULT_METHOD_TTLS, CacheOptions, TTLCache, resolve_ttl, rpc_cache_key
from core.event_bus import EventBus
from core.events import EventType, Severity, SystemFaultEvent
from core.health import EndpointPool, RpcEndpoint
from core.models import FailureReason, Result
from core.networks import NetworkConfig, NetworkRegistry

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RpcRequest:
    method: str
    params: Sequence[Any] = ()
    # Overrides the batch-level cache options for this member.
    cache: Optional[CacheOptions] = None


@dataclass(slots=True)
class _ChainSession:
    network: NetworkConfig
    client: httpx.AsyncClient
    pool: EndpointPool
    calls: int = 0
    transmissions: int = 0
    errors: Dict[str, int] = field(default_factory=dict)


class RpcClient:
    """Async JSON-RPC client shared by the balance fetcher and the price oracle."""

    name = "rpc"

    def __init__(
        self,
        registry: NetworkRegistry,
        cache: Optional[TTLCache] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        event_bus: Optional[EventBus] = None,
        method_ttls: Mapping[str, float] = DEFAULT_METHOD_TTLS,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._registry = registry
        self._cache = cache if cache is not None else TTLCache()
        self._timeout = timeout
        self._transport = transport
        self._event_bus = event_bus
        self._method_ttls = dict(method_ttls)
        self._environ = environ
        self._sessions: Dict[int, _ChainSession] = {}
        self._ids = itertools.count(1)

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def _session(self, chain_id: int) -> _ChainSession:
        session = self._sessions.get(chain_id)
        if session is None:
            network = self._registry.get(chain_id)
            pool = EndpointPool.from_urls(network.resolved_endpoints(self._environ))
            client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
            session = _ChainSession(network=network, client=client, pool=pool)
            self._sessions[chain_id] = session
            LOGGER.debug("Opened RPC session for %s with %d endpoints", network.name, len(pool))
        return session

    def _payload(self, method: str, params: Sequence[Any]) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}

    async def call(
        self,
        chain_id: int,
        method: str,
        params: Sequence[Any] = (),
        cache_opts: Optional[CacheOptions] = None,
    ) -> Result:
        session = self._session(chain_id)
        session.calls += 1
        key = rpc_cache_key(chain_id, method, list(params))
        ttl = resolve_ttl(method, cache_opts, self._method_ttls)
        if ttl > 0:
            cached = self._cache.get(key)
            if cached is not MISSING:
                return Result.success(cached)

        payload = self._payload(method, params)
        sent = await self._transmit(session, payload)
        if not sent.ok:
            return sent
        body = sent.value
        if not isinstance(body, dict):
            return self._count(session, Result.fail(FailureReason.MALFORMED, f"{method}: unexpected body type"))
        result = self._member_result(session, method, body)
        if result.ok and ttl > 0:
            self._cache.set(key, result.value, ttl)
        return result

    async def batch_call(
        self,
        chain_id: int,
        requests: Sequence[RpcRequest],
        cache_opts: Optional[CacheOptions] = None,
    ) -> List[Result]:
        """Send ``requests`` as one JSON array; results come back in request order.

        Cached members are answered locally and left out of the transmitted batch.
        """

        session = self._session(chain_id)
        session.calls += len(requests)
        results: List[Optional[Result]] = [None] * len(requests)
        pending: List[tuple] = []
        for index, request in enumerate(requests):
            key = rpc_cache_key(chain_id, request.method, list(request.params))
            ttl = resolve_ttl(request.method, request.cache or cache_opts, self._method_ttls)
            if ttl > 0:
                cached = self._cache.get(key)
                if cached is not MISSING:
                    results[index] = Result.success(cached)
                    continue
            pending.append((index, key, ttl, request, self._payload(request.method, request.params)))

        if pending:
            sent = await self._transmit(session, [entry[4] for entry in pending])
            by_id: Dict[Any, Any] = {}
            batch_failure: Optional[Result] = None
            if not sent.ok:
                batch_failure = sent
            elif isinstance(sent.value, list):
                by_id = {item.get("id"): item for item in sent.value if isinstance(item, dict)}
            elif isinstance(sent.value, dict) and "error" in sent.value:
                batch_failure = self._count(
                    session, Result.fail(FailureReason.RPC_ERROR, _error_text(sent.value["error"]))
                )
            else:
                batch_failure = self._count(
                    session, Result.fail(FailureReason.MALFORMED, "batch response is not an array")
                )

            for index, key, ttl, request, payload in pending:
                if batch_failure is not None:
                    results[index] = batch_failure
                    continue
                item = by_id.get(payload["id"])
                if item is None:
                    results[index] = self._count(
                        session, Result.fail(FailureReason.MALFORMED, f"{request.method}: no response for id {payload['id']}")
                    )
                    continue
                member = self._member_result(session, request.method, item)
                if member.ok and ttl > 0:
                    self._cache.set(key, member.value, ttl)
                results[index] = member

        return results  # type: ignore[return-value]

    def _member_result(self, session: _ChainSession, method: str, item: Mapping[str, Any]) -> Result:
        if "error" in item and item["error"] is not None:
            return self._count(session, Result.fail(FailureReason.RPC_ERROR, f"{method}: {_error_text(item['error'])}"))
        if "result" not in item:
            return self._count(session, Result.fail(FailureReason.MALFORMED, f"{method}: missing result"))
        return Result.success(item["result"])

    async def _transmit(self, session: _ChainSession, payload: Any) -> Result:
        if not len(session.pool):
            return self._count(session, Result.fail(FailureReason.UNSUPPORTED, f"no RPC endpoints for {session.network.name}"))
        endpoint = session.pool.choose()
        session.transmissions += 1
        started = time.perf_counter()
        try:
            resp = await session.client.post(endpoint.url, json=payload)
        except httpx.TimeoutException as exc:
            return self._endpoint_failure(session, endpoint, FailureReason.TIMEOUT, str(exc) or "request timed out")
        except httpx.RequestError as exc:
            return self._endpoint_failure(session, endpoint, FailureReason.NETWORK, str(exc) or type(exc).__name__)

        if resp.status_code != 200:
            return self._endpoint_failure(session, endpoint, FailureReason.HTTP_STATUS, f"status {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            return self._endpoint_failure(session, endpoint, FailureReason.MALFORMED, f"invalid JSON: {exc}")
        session.pool.mark_success(endpoint, (time.perf_counter() - started) * 1000)
        return Result.success(body)

    def _endpoint_failure(
        self, session: _ChainSession, endpoint: RpcEndpoint, reason: FailureReason, detail: str
    ) -> Result:
        session.pool.mark_failure(endpoint, detail)
        LOGGER.warning("RPC %s on %s (%s): %s", reason.value, session.network.name, endpoint.url, detail)
        self._emit_fault(session, endpoint, reason, detail)
        return self._count(session, Result.fail(reason, detail))

    @staticmethod
    def _count(session: _ChainSession, result: Result) -> Result:
        if result.failure is not None:
            reason = result.failure.reason.value
            session.errors[reason] = session.errors.get(reason, 0) + 1
        return result

    def _emit_fault(self, session: _ChainSession, endpoint: RpcEndpoint, reason: FailureReason, detail: str) -> None:
        if not self._event_bus:
            return
        self._event_bus.emit(
            SystemFaultEvent(
                event_type=EventType.SYSTEM_FAULT,
                severity=Severity.WARNING,
                source=self.name,
                message=f"Endpoint failure on {session.network.name}: {detail}",
                component="rpc",
                chain_id=session.network.chain_id,
                endpoint=endpoint.url,
                category=reason.value,
            )
        )

    def endpoint_pool(self, chain_id: int) -> EndpointPool:
        return self._session(chain_id).pool

    def stats(self) -> Dict[int, Dict[str, Any]]:
        """Per-chain counters: logical calls, HTTP transmissions, failures by reason."""

        return {
            chain_id: {
                "calls": session.calls,
                "transmissions": session.transmissions,
                "errors": dict(session.errors),
                "endpoints": session.pool.snapshot(),
            }
            for chain_id, session in self._sessions.items()
        }

    async def aclose(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.client.aclose()


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message") or "unknown error"
        return f"{message} (code {code})" if code is not None else str(message)
    return str(error)


__all__ = ["RpcClient", "RpcRequest"]
