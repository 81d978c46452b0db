"""Portfolio engine: owns the caches and components and produces snapshots."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx

from aggregator.holdings import CashBalance, aggregate
from connectors.backend_api import BackendClient
from connectors.price_api import ExternalPriceClient
from connectors.rpc_client import RpcClient
from core.cache import TTLCache
from core.config_loader import Settings
from core.event_bus import EventBus
from core.events import EventType, PortfolioRefreshedEvent, Severity
from core.health import HealthCheckResult
from core.health_checker import probe_chains
from core.models import Balance, NFTValuation, PriceQuote, PricedBalance, UnifiedHolding
from core.networks import NetworkConfig, NetworkRegistry
from core.retry import Sleep
from portfolio.fetcher import BalanceFetcher, ChainBalances
from portfolio.scheduler import ChainOutcome, ChainScheduler, ConcurrencyProfile, OutcomeStatus
from pricing.oracle import PriceOracle

LOGGER = logging.getLogger(__name__)

ALL_CHAINS_FAILED = "all chains failed"


class PortfolioUnavailableError(RuntimeError):
    """Raised in strict mode when no chain could be read."""


@dataclass(frozen=True, slots=True)
class ChainStatus:
    chain_id: int
    chain_name: str
    ok: bool
    status: str
    error: str = ""
    failures: int = 0

    def to_dict(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "chain_name": self.chain_name,
            "ok": self.ok,
            "status": self.status,
            "error": self.error,
            "failures": self.failures,
        }


@dataclass(frozen=True, slots=True)
class PortfolioSnapshot:
    owner: str
    holdings: Tuple[UnifiedHolding, ...] = ()
    total_value_usd: float = 0.0
    cash: CashBalance = field(default_factory=CashBalance)
    chains: Tuple[ChainStatus, ...] = ()
    error: Optional[str] = None
    refreshed_at: float = 0.0

    @property
    def failed_chains(self) -> Tuple[int, ...]:
        return tuple(status.chain_id for status in self.chains if not status.ok)

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "total_value_usd": self.total_value_usd,
            "cash": self.cash.to_dict(),
            "holdings": [holding.to_dict() for holding in self.holdings],
            "chains": [status.to_dict() for status in self.chains],
            "error": self.error,
            "refreshed_at": self.refreshed_at,
        }


class PortfolioEngine:
    """Refreshes a wallet's holdings across every configured chain.

    The engine is an async context manager; leaving the context closes every
    HTTP session it opened.
    """

    def __init__(
        self,
        registry: Optional[NetworkRegistry] = None,
        settings: Optional[Settings] = None,
        *,
        profile: Optional[ConcurrencyProfile] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        event_bus: Optional[EventBus] = None,
        external: Optional[ExternalPriceClient] = None,
        backend: Optional[BackendClient] = None,
        sleep: Sleep = asyncio.sleep,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = registry or self.settings.build_registry()
        self.profile = profile or ConcurrencyProfile.from_settings(self.settings.profile)
        self.event_bus = event_bus or EventBus()
        self._transport = transport

        if external is None and self.settings.pricing.external_enabled:
            pricing = self.settings.pricing
            external = ExternalPriceClient(
                base_url=pricing.base_url,
                api_key=pricing.api_key,
                api_key_header=pricing.api_key_header,
                timeout=pricing.timeout,
                transport=transport,
            )
        if backend is None and self.settings.backend.active:
            cfg = self.settings.backend
            backend = BackendClient(
                cfg.url,
                timeout=cfg.timeout,
                health_ttl=cfg.health_ttl,
                health_timeout=cfg.health_timeout,
                transport=transport,
            )
        self.external = external
        self.backend = backend

        self.rpc_cache = TTLCache()
        self.price_cache = TTLCache()
        retry = self.profile.retry_policy
        self.rpc = RpcClient(
            self.registry,
            self.rpc_cache,
            timeout=self.settings.rpc.timeout,
            transport=transport,
            event_bus=self.event_bus,
            environ=environ,
        )
        self.oracle = PriceOracle(
            self.registry,
            self.rpc,
            self.price_cache,
            external=external,
            backend=backend,
            retry=retry,
            sleep=sleep,
            fee_tier=self.settings.pricing.fee_tier,
            quote_ttl=self.settings.pricing.quote_ttl,
            unavailable_ttl=self.settings.pricing.unavailable_ttl,
        )
        self.fetcher = BalanceFetcher(self.registry, self.rpc, backend=backend, retry=retry, sleep=sleep)
        self.scheduler = ChainScheduler(self.profile, sleep=sleep)

        self._snapshot: Optional[PortfolioSnapshot] = None
        self._owner: Optional[str] = None
        self._priced: Dict[int, List[PricedBalance]] = {}
        self._statuses: Dict[int, ChainStatus] = {}
        self._nfts: Tuple[NFTValuation, ...] = ()
        self._refreshing = 0

    async def __aenter__(self) -> "PortfolioEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.rpc.aclose()
        if self.external is not None:
            await self.external.aclose()
        if self.backend is not None:
            await self.backend.aclose()

    @property
    def snapshot(self) -> Optional[PortfolioSnapshot]:
        return self._snapshot

    @property
    def is_loading(self) -> bool:
        return self._refreshing > 0 or self.scheduler.is_loading

    async def _price(self, chain_id: int, balance: Balance) -> PriceQuote:
        if balance.is_native:
            return await self.oracle.resolve_native_price(chain_id)
        return await self.oracle.resolve_price(chain_id, balance.token.address, balance.token.symbol)

    async def _run(self, owner: str, chains: Sequence[NetworkConfig]) -> Dict[int, ChainStatus]:
        fetched: Dict[int, ChainBalances] = {}

        async def _fetch(network: NetworkConfig) -> List[PricedBalance]:
            balances = await self.fetcher.fetch_chain_balances(network.chain_id, owner)
            fetched[network.chain_id] = balances
            held = balances.balances
            quotes = await asyncio.gather(*(self._price(network.chain_id, balance) for balance in held))
            return [PricedBalance(balance=balance, quote=quote) for balance, quote in zip(held, quotes)]

        result = await self.scheduler.run_across_chains(chains, _fetch)
        by_chain: Dict[int, List[PricedBalance]] = {network.chain_id: [] for network in chains}
        for priced in result.items:
            by_chain[priced.balance.chain_id].append(priced)

        statuses: Dict[int, ChainStatus] = {}
        for outcome in result.outcomes:
            balances = fetched.get(outcome.chain_id)
            status = _chain_status(outcome, balances)
            statuses[outcome.chain_id] = status
            self._priced[outcome.chain_id] = by_chain[outcome.chain_id]
        return statuses

    async def refresh(self, owner: str, nft_valuations: Iterable[NFTValuation] = ()) -> PortfolioSnapshot:
        """Re-read every chain and publish a new snapshot."""

        self._refreshing += 1
        try:
            purged = self.rpc_cache.purge_expired() + self.price_cache.purge_expired()
            if purged:
                LOGGER.debug("Purged %d expired cache entries", purged)
            self._owner = owner
            self._nfts = tuple(nft_valuations)
            self._priced = {}
            self._statuses = await self._run(owner, list(self.registry))
            return self._publish(owner)
        finally:
            self._refreshing -= 1

    async def refresh_chain(self, owner: str, chain_id: int) -> PortfolioSnapshot:
        """Re-read one chain and merge it into the current snapshot.

        Falls back to a full refresh when there is no snapshot for ``owner`` yet.
        """

        network = self.registry.get(chain_id)
        if self._snapshot is None or owner.lower() != (self._owner or "").lower():
            return await self.refresh(owner)
        self._refreshing += 1
        try:
            self._statuses.update(await self._run(owner, [network]))
            return self._publish(owner)
        finally:
            self._refreshing -= 1

    def _publish(self, owner: str) -> PortfolioSnapshot:
        natives: List[PricedBalance] = []
        tokens: List[PricedBalance] = []
        for network in self.registry:
            for priced in self._priced.get(network.chain_id, []):
                (natives if priced.balance.is_native else tokens).append(priced)
        aggregated = aggregate(natives, tokens, self._nfts, registry=self.registry)

        statuses = tuple(self._statuses[n.chain_id] for n in self.registry if n.chain_id in self._statuses)
        error = None
        if statuses and all(not status.ok for status in statuses):
            error = ALL_CHAINS_FAILED
            if self.settings.strict:
                raise PortfolioUnavailableError(f"{ALL_CHAINS_FAILED} for {owner}")
            LOGGER.warning("Every chain failed for %s", owner)

        snapshot = PortfolioSnapshot(
            owner=owner,
            holdings=aggregated.holdings,
            total_value_usd=aggregated.total_value_usd,
            cash=aggregated.cash,
            chains=statuses,
            error=error,
            refreshed_at=time.time(),
        )
        self._snapshot = snapshot
        self.event_bus.emit(
            PortfolioRefreshedEvent(
                event_type=EventType.PORTFOLIO_REFRESHED,
                severity=Severity.WARNING if error else Severity.INFO,
                source="engine",
                message=f"{len(snapshot.holdings)} holdings worth ${snapshot.total_value_usd:,.2f}",
                owner=owner,
                total_value_usd=snapshot.total_value_usd,
                holdings=len(snapshot.holdings),
                failed_chains=snapshot.failed_chains,
            )
        )
        return snapshot

    async def probe(self, timeout: float = 5.0) -> List[HealthCheckResult]:
        pools = [(network.chain_id, self.rpc.endpoint_pool(network.chain_id)) for network in self.registry]
        return await probe_chains(pools, timeout=timeout, transport=self._transport, event_bus=self.event_bus)


def _chain_status(outcome: ChainOutcome, balances: Optional[ChainBalances]) -> ChainStatus:
    if not outcome.ok:
        return ChainStatus(outcome.chain_id, outcome.chain_name, False, outcome.status.value, outcome.error)
    failures = len(balances.failures) if balances is not None else 0
    if balances is not None and balances.failed:
        detail = "; ".join(str(f.failure) for f in balances.failures)
        return ChainStatus(outcome.chain_id, outcome.chain_name, False, "unavailable", detail, failures)
    return ChainStatus(outcome.chain_id, outcome.chain_name, True, OutcomeStatus.OK.value, "", failures)


__all__ = [
    "ALL_CHAINS_FAILED",
    "ChainStatus",
    "PortfolioEngine",
    "PortfolioSnapshot",
    "PortfolioUnavailableError",
]
