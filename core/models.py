"""Shared value types for balances, prices and holdings.

Remote work never raises into the engine. Instead every RPC, API or pool
lookup returns a :class:`Result` carrying either a value or a typed
:class:`Failure`, so callers can tell "no pool" apart from "network error"
without inspecting log output.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from core.networks import NATIVE, NativeMarker, TokenDescriptor


class FailureReason(str, Enum):
    """Why a unit of remote work produced no value."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    RPC_ERROR = "rpc_error"
    MALFORMED = "malformed"
    NO_POOL = "no_pool"
    MISSING_FIELD = "missing_field"
    UNSUPPORTED = "unsupported"
    DISABLED = "disabled"

    @property
    def transient(self) -> bool:
        return self in (FailureReason.NETWORK, FailureReason.TIMEOUT)


@dataclass(frozen=True, slots=True)
class Failure:
    reason: FailureReason
    detail: str = ""

    def __str__(self) -> str:
        if self.detail:
            return f"{self.reason.value}: {self.detail}"
        return self.reason.value


@dataclass(frozen=True, slots=True)
class Result:
    """Either ``value`` (success) or ``failure``."""

    value: Any = None
    failure: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: Any) -> "Result":
        return cls(value=value)

    @classmethod
    def fail(cls, reason: FailureReason, detail: str = "") -> "Result":
        return cls(failure=Failure(reason=reason, detail=detail))

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.failure is None else default


class PriceSource(str, Enum):
    STABLECOIN = "stablecoin"
    BACKEND = "backend"
    ONCHAIN_POOL = "onchain_pool"
    EXTERNAL_API = "external_api"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True, slots=True)
class Balance:
    """Raw on-chain balance for one asset on one chain."""

    chain_id: int
    token: Union[NativeMarker, TokenDescriptor]
    raw: int
    formatted: str
    decimals: int

    @property
    def is_native(self) -> bool:
        return self.token is NATIVE

    @property
    def is_zero(self) -> bool:
        return self.raw == 0


@dataclass(frozen=True, slots=True)
class PriceQuote:
    chain_id: int
    token_address: str
    unit_price_usd: float
    source: PriceSource
    resolved_at: float

    @property
    def available(self) -> bool:
        return self.source is not PriceSource.UNAVAILABLE


@dataclass(frozen=True, slots=True)
class PricedBalance:
    """A balance paired with the quote used to value it."""

    balance: Balance
    quote: PriceQuote


class HoldingKind(str, Enum):
    NATIVE = "native"
    ERC20 = "erc20"
    NFT = "nft"


class HoldingCategory(str, Enum):
    """Display category; also the tie-break order when values are equal."""

    TOKEN = "token"
    RWA = "rwa"
    NFT = "nft"


@dataclass(frozen=True, slots=True)
class NFTValuation:
    """An NFT position that was priced outside the engine."""

    chain_id: int
    chain_name: str
    contract_address: str
    token_id: str
    name: str
    symbol: str
    category: HoldingCategory = HoldingCategory.NFT
    amount: int = 1
    unit_price_usd: float = 0.0
    price_source: PriceSource = PriceSource.UNAVAILABLE


@dataclass(frozen=True, slots=True)
class UnifiedHolding:
    id: str
    kind: HoldingKind
    category: HoldingCategory
    chain_id: int
    chain_name: str
    asset_symbol: str
    asset_name: str
    quantity: float
    unit_price_usd: float
    value_usd: float
    price_source: PriceSource
    balance: str = ""
    address: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "category": self.category.value,
            "chain_id": self.chain_id,
            "chain_name": self.chain_name,
            "asset_symbol": self.asset_symbol,
            "asset_name": self.asset_name,
            "quantity": self.quantity,
            "balance": self.balance,
            "unit_price_usd": self.unit_price_usd,
            "value_usd": self.value_usd,
            "price_source": self.price_source.value,
            "address": self.address,
        }


__all__ = [
    "Balance",
    "Failure",
    "FailureReason",
    "HoldingCategory",
    "HoldingKind",
    "NFTValuation",
    "PriceQuote",
    "PriceSource",
    "PricedBalance",
    "Result",
    "UnifiedHolding",
]
