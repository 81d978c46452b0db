"""Device-aware fan-out of per-chain work.

Constrained clients (mobile-class devices, shared connections) fetch one chain
at a time with a pause between chains and retry transient failures; capable
clients run fixed-size batches of chains in parallel. Either way every chain
is time-boxed and a failing chain only loses its own contribution.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from core.config_loader import ProfileSettings
from core.networks import NetworkConfig
from core.retry import RetryPolicy, Sleep

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class Strategy(str, Enum):
    SEQUENTIAL = "sequential"
    BOUNDED_PARALLEL = "bounded_parallel"


@dataclass(frozen=True, slots=True)
class ConcurrencyProfile:
    strategy: Strategy = Strategy.BOUNDED_PARALLEL
    concurrency: int = 3
    delay_seconds: float = 0.25
    chain_timeout: float = 15.0
    retries: int = 0
    backoff_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.chain_timeout <= 0:
            raise ValueError("chain_timeout must be positive")

    @classmethod
    def constrained(cls) -> "ConcurrencyProfile":
        return cls(strategy=Strategy.SEQUENTIAL, concurrency=1, delay_seconds=0.3, retries=2)

    @classmethod
    def capable(cls) -> "ConcurrencyProfile":
        return cls(strategy=Strategy.BOUNDED_PARALLEL, concurrency=3, delay_seconds=0.0, retries=0)

    @classmethod
    def from_settings(cls, settings: ProfileSettings) -> "ConcurrencyProfile":
        base = cls.constrained() if settings.name == "constrained" else cls.capable()
        overrides = {
            key: value
            for key, value in (
                ("concurrency", settings.concurrency),
                ("delay_seconds", settings.delay_seconds),
                ("chain_timeout", settings.chain_timeout),
                ("retries", settings.retries),
                ("backoff_seconds", settings.backoff_seconds),
            )
            if value is not None
        }
        return replace(base, **overrides) if overrides else base

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(retries=self.retries, backoff=self.backoff_seconds)


class OutcomeStatus(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ChainOutcome:
    chain_id: int
    chain_name: str
    status: OutcomeStatus
    items: int = 0
    elapsed: float = 0.0
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.OK


@dataclass(frozen=True, slots=True)
class ScheduleResult(Generic[T]):
    items: Tuple[T, ...]
    outcomes: Tuple[ChainOutcome, ...]

    def outcome(self, chain_id: int) -> Optional[ChainOutcome]:
        for outcome in self.outcomes:
            if outcome.chain_id == chain_id:
                return outcome
        return None


FetchFn = Callable[[NetworkConfig], Awaitable[Sequence[T]]]


class ChainScheduler:
    def __init__(
        self,
        profile: ConcurrencyProfile,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.profile = profile
        self._sleep = sleep
        self._clock = clock
        self._in_flight = 0

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    async def run_across_chains(self, chains: Sequence[NetworkConfig], fetch_fn: FetchFn) -> ScheduleResult:
        """Run ``fetch_fn`` for every chain and flatten the items.

        Outcomes and items follow the order of ``chains`` regardless of strategy.
        """

        self._in_flight += 1
        try:
            if self.profile.strategy is Strategy.SEQUENTIAL:
                settled = await self._sequential(chains, fetch_fn)
            else:
                settled = await self._bounded_parallel(chains, fetch_fn)
        finally:
            self._in_flight -= 1

        items: List[T] = []
        outcomes: List[ChainOutcome] = []
        for chain_items, outcome in settled:
            items.extend(chain_items)
            outcomes.append(outcome)
        return ScheduleResult(items=tuple(items), outcomes=tuple(outcomes))

    async def _sequential(self, chains: Sequence[NetworkConfig], fetch_fn: FetchFn) -> List[tuple]:
        settled = []
        for index, chain in enumerate(chains):
            settled.append(await self._run_one(chain, fetch_fn))
            if self.profile.delay_seconds > 0 and index < len(chains) - 1:
                await self._sleep(self.profile.delay_seconds)
        return settled

    async def _bounded_parallel(self, chains: Sequence[NetworkConfig], fetch_fn: FetchFn) -> List[tuple]:
        settled = []
        size = self.profile.concurrency
        for start in range(0, len(chains), size):
            batch = chains[start : start + size]
            settled.extend(await asyncio.gather(*(self._run_one(chain, fetch_fn) for chain in batch)))
            if self.profile.delay_seconds > 0 and start + size < len(chains):
                await self._sleep(self.profile.delay_seconds)
        return settled

    async def _run_one(self, chain: NetworkConfig, fetch_fn: FetchFn) -> tuple:
        started = self._clock()
        try:
            items = list(await asyncio.wait_for(fetch_fn(chain), timeout=self.profile.chain_timeout))
        except asyncio.TimeoutError:
            LOGGER.warning("Chain %s timed out after %.1fs", chain.name, self.profile.chain_timeout)
            return [], ChainOutcome(
                chain.chain_id,
                chain.name,
                OutcomeStatus.TIMEOUT,
                elapsed=self._clock() - started,
                error=f"timed out after {self.profile.chain_timeout}s",
            )
        except Exception as exc:
            LOGGER.exception("Chain %s failed", chain.name)
            return [], ChainOutcome(
                chain.chain_id, chain.name, OutcomeStatus.ERROR, elapsed=self._clock() - started, error=str(exc)
            )
        return items, ChainOutcome(
            chain.chain_id, chain.name, OutcomeStatus.OK, items=len(items), elapsed=self._clock() - started
        )


__all__ = [
    "ChainOutcome",
    "ChainScheduler",
    "ConcurrencyProfile",
    "OutcomeStatus",
    "ScheduleResult",
    "Strategy",
]
