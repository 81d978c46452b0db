"""Merge priced balances and NFT valuations into one sorted holdings view."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Dict, Iterable, List, Optional, Tuple

from core.models import (
    HoldingCategory,
    HoldingKind,
    NFTValuation,
    PricedBalance,
    PriceSource,
    UnifiedHolding,
)
from core.networks import NetworkRegistry, TokenDescriptor, is_stablecoin, is_usdc

LOGGER = logging.getLogger(__name__)

CATEGORY_RANK = {HoldingCategory.TOKEN: 0, HoldingCategory.RWA: 1, HoldingCategory.NFT: 2}


@dataclass(frozen=True, slots=True)
class CashBalance:
    usdc_usd: float = 0.0
    other_stablecoins_usd: float = 0.0
    total_cash_usd: float = 0.0
    crypto_usd: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "usdc_usd": self.usdc_usd,
            "other_stablecoins_usd": self.other_stablecoins_usd,
            "total_cash_usd": self.total_cash_usd,
            "crypto_usd": self.crypto_usd,
        }


@dataclass(frozen=True, slots=True)
class AggregateResult:
    holdings: Tuple[UnifiedHolding, ...]
    total_value_usd: float
    cash: CashBalance


def holding_id(chain_id: int, kind: HoldingKind, key: str, token_id: Optional[str] = None) -> str:
    """Stable id: ``1-native-ETH``, ``1-token-0xabc..``, ``1-nft-0xdef..-7``."""

    if kind is HoldingKind.NATIVE:
        return f"{chain_id}-native-{key}"
    if kind is HoldingKind.ERC20:
        return f"{chain_id}-token-{key.lower()}"
    return f"{chain_id}-nft-{key.lower()}-{token_id}"


def to_quantity(raw: int, decimals: int) -> float:
    with localcontext() as ctx:
        ctx.prec = 120
        return float(Decimal(raw).scaleb(-decimals))


def sort_key(holding: UnifiedHolding) -> tuple:
    return (-holding.value_usd, CATEGORY_RANK[holding.category], holding.asset_symbol.lower(), holding.id)


def _chain_name(registry: Optional[NetworkRegistry], chain_id: int) -> str:
    if registry is not None and chain_id in registry:
        return registry.get(chain_id).name
    return f"Chain {chain_id}"


def _from_priced(priced: PricedBalance, registry: Optional[NetworkRegistry]) -> Optional[UnifiedHolding]:
    balance, quote = priced.balance, priced.quote
    if balance.raw == 0:
        return None
    quantity = to_quantity(balance.raw, balance.decimals)
    unit_price = quote.unit_price_usd if quote.available else 0.0
    if balance.is_native:
        network = registry.get(balance.chain_id) if registry is not None and balance.chain_id in registry else None
        symbol = network.native_currency.symbol if network else "ETH"
        name = network.native_currency.name if network else symbol
        kind, address, key = HoldingKind.NATIVE, None, symbol
    else:
        token: TokenDescriptor = balance.token  # type: ignore[assignment]
        symbol, name = token.symbol, token.name
        kind, address, key = HoldingKind.ERC20, token.address, token.address
    return UnifiedHolding(
        id=holding_id(balance.chain_id, kind, key),
        kind=kind,
        category=HoldingCategory.TOKEN,
        chain_id=balance.chain_id,
        chain_name=_chain_name(registry, balance.chain_id),
        asset_symbol=symbol,
        asset_name=name,
        quantity=quantity,
        unit_price_usd=unit_price,
        value_usd=quantity * unit_price,
        price_source=quote.source,
        balance=balance.formatted,
        address=address,
    )


def _from_nft(nft: NFTValuation) -> UnifiedHolding:
    quantity = float(nft.amount)
    return UnifiedHolding(
        id=holding_id(nft.chain_id, HoldingKind.NFT, nft.contract_address, nft.token_id),
        kind=HoldingKind.NFT,
        category=nft.category,
        chain_id=nft.chain_id,
        chain_name=nft.chain_name,
        asset_symbol=nft.symbol,
        asset_name=nft.name,
        quantity=quantity,
        unit_price_usd=nft.unit_price_usd,
        value_usd=quantity * nft.unit_price_usd,
        price_source=nft.price_source if nft.unit_price_usd > 0 else PriceSource.UNAVAILABLE,
        balance=str(nft.amount),
        address=nft.contract_address,
    )


def cash_breakdown(holdings: Iterable[UnifiedHolding]) -> CashBalance:
    """Split fungible value into USDC, other stablecoins and everything else."""

    usdc = other = crypto = 0.0
    for holding in holdings:
        if holding.category is not HoldingCategory.TOKEN or holding.value_usd <= 0:
            continue
        if is_usdc(holding.asset_symbol):
            usdc += holding.value_usd
        elif is_stablecoin(holding.asset_symbol):
            other += holding.value_usd
        else:
            crypto += holding.value_usd
    return CashBalance(
        usdc_usd=usdc, other_stablecoins_usd=other, total_cash_usd=usdc + other, crypto_usd=crypto
    )


def aggregate(
    native_balances: Iterable[PricedBalance],
    token_balances: Iterable[PricedBalance],
    nft_valuations: Iterable[NFTValuation] = (),
    registry: Optional[NetworkRegistry] = None,
) -> AggregateResult:
    """Build the holdings view.

    Zero balances are dropped, ids are unique (later duplicates are discarded
    with a warning) and the total is the plain sum of the kept holdings.
    """

    candidates: List[UnifiedHolding] = []
    for priced in list(native_balances) + list(token_balances):
        holding = _from_priced(priced, registry)
        if holding is not None:
            candidates.append(holding)
    candidates.extend(_from_nft(nft) for nft in nft_valuations if nft.amount > 0)

    seen: Dict[str, UnifiedHolding] = {}
    for holding in candidates:
        if holding.id in seen:
            LOGGER.warning("Dropping duplicate holding %s", holding.id)
            continue
        seen[holding.id] = holding

    holdings = tuple(sorted(seen.values(), key=sort_key))
    total = sum((holding.value_usd for holding in holdings), 0.0)
    return AggregateResult(holdings=holdings, total_value_usd=total, cash=cash_breakdown(holdings))


__all__ = [
    "AggregateResult",
    "CATEGORY_RANK",
    "CashBalance",
    "aggregate",
    "cash_breakdown",
    "holding_id",
    "sort_key",
    "to_quantity",
]
