"""Network registry: the static table of supported chains.

Each :class:`NetworkConfig` carries what the engine needs to read balances and
derive prices on that chain: ordered RPC endpoints, the native currency, the
ERC-20 tokens to scan, and the AMM factory plus the two quote tokens used for
on-chain pricing. The table is immutable and keyed by chain id.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple


class NativeMarker:
    """Sentinel standing in for a chain's native currency."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "NATIVE"


NATIVE = NativeMarker()

# USD-pegged symbols priced at exactly 1.0 without any lookup.
STABLECOIN_SYMBOLS = frozenset(
    {
        "USDC",
        "USDT",
        "DAI",
        "XDAI",
        "WXDAI",
        "BUSD",
        "TUSD",
        "USDP",
        "USDD",
        "FRAX",
        "LUSD",
        "SUSD",
        "GUSD",
        "HUSD",
        "USDX",
        "OUSD",
        "USDN",
        "USDS",
    }
)


def is_stablecoin(symbol: Optional[str]) -> bool:
    if not symbol:
        return False
    return symbol.strip().upper() in STABLECOIN_SYMBOLS


def is_usdc(symbol: Optional[str]) -> bool:
    return bool(symbol) and symbol.strip().upper() == "USDC"


class UnknownChainError(KeyError):
    """Raised when a chain id is not present in the registry."""


@dataclass(frozen=True, slots=True)
class TokenDescriptor:
    """ERC-20 metadata used both for scanning and as a metadata fallback."""

    address: str
    symbol: str
    name: str
    decimals: int
    logo_url: Optional[str] = None

    @property
    def key(self) -> str:
        return self.address.lower()


@dataclass(frozen=True, slots=True)
class NativeCurrency:
    symbol: str
    name: str
    decimals: int = 18


@dataclass(frozen=True, slots=True)
class NetworkConfig:
    chain_id: int
    name: str
    rpc_endpoints: Tuple[str, ...]
    native_currency: NativeCurrency
    quote_token: TokenDescriptor
    stable_quote: TokenDescriptor
    common_tokens: Tuple[TokenDescriptor, ...] = ()
    amm_factory: Optional[str] = None
    block_explorer: str = ""
    price_platform: Optional[str] = None
    native_coin_id: Optional[str] = None
    testnet: bool = False
    # Env vars checked before the public endpoints, highest priority first.
    rpc_env: Tuple[str, ...] = ()
    infura_slug: Optional[str] = None

    def resolved_endpoints(self, environ: Optional[Mapping[str, str]] = None) -> Tuple[str, ...]:
        """Return the RPC URLs in priority order: Alchemy, Infura, then public."""

        env = os.environ if environ is None else environ
        urls: List[str] = []
        for name in self.rpc_env:
            value = (env.get(name) or "").strip()
            if value:
                urls.append(value)
        project_id = (env.get("INFURA_PROJECT_ID") or "").strip()
        if project_id and self.infura_slug:
            urls.append(f"https://{self.infura_slug}.infura.io/v3/{project_id}")
        urls.extend(self.rpc_endpoints)
        seen: set[str] = set()
        ordered: List[str] = []
        for url in urls:
            if url in seen:
                continue
            seen.add(url)
            ordered.append(url)
        return tuple(ordered)

    def find_token(self, address: str) -> Optional[TokenDescriptor]:
        key = address.lower()
        for token in (*self.common_tokens, self.quote_token, self.stable_quote):
            if token.key == key:
                return token
        return None


def _token(address: str, symbol: str, name: str, decimals: int) -> TokenDescriptor:
    return TokenDescriptor(address=address, symbol=symbol, name=name, decimals=decimals)


_ETH = NativeCurrency(symbol="ETH", name="Ether")
_WETH_OP_STACK = "0x4200000000000000000000000000000000000006"
_UNISWAP_V3_FACTORY = "0x1F98431c8aD98523631AE4a59f267346ea31F984"

_ETH_USDC = _token("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "USDC", "USD Coin", 6)
_ETH_WETH = _token("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", "WETH", "Wrapped Ether", 18)
_BASE_USDC = _token("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "USDC", "USD Coin", 6)
_BASE_WETH = _token(_WETH_OP_STACK, "WETH", "Wrapped Ether", 18)
_SEPOLIA_USDC = _token("0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238", "USDC", "USD Coin", 6)
_SEPOLIA_WETH = _token("0xfFf9976782d46CC05630D1f6eBAb18b2324d6B14", "WETH", "Wrapped Ether", 18)
_BASE_SEPOLIA_USDC = _token("0x036CbD53842c5426634e7929541eC2318f3dCF7e", "USDC", "USD Coin", 6)
_ARB_USDC = _token("0xaf88d065e77c8cC2239327C5EDb3A432268e5831", "USDC", "USD Coin", 6)
_ARB_WETH = _token("0x82aF49447D8a07e3bd95BD0d56f35241523fBab1", "WETH", "Wrapped Ether", 18)
_POLYGON_USDC = _token("0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", "USDC", "USD Coin", 6)
_POLYGON_WPOL = _token("0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270", "WPOL", "Wrapped POL", 18)
_GNOSIS_USDC = _token("0xDDAfbb505ad214D7b80b1f830fcCc89B60fb7A83", "USDC", "USD Coin", 6)
_GNOSIS_WXDAI = _token("0xe91D153E0b41518A2Ce8Dd3D7944Fa863463a97d", "WXDAI", "Wrapped xDAI", 18)


DEFAULT_NETWORKS: Tuple[NetworkConfig, ...] = (
    NetworkConfig(
        chain_id=1,
        name="Ethereum Mainnet",
        rpc_endpoints=("https://eth.llamarpc.com", "https://ethereum-rpc.publicnode.com"),
        native_currency=_ETH,
        quote_token=_ETH_WETH,
        stable_quote=_ETH_USDC,
        common_tokens=(
            _ETH_USDC,
            _token("0xdAC17F958D2ee523a2206206994597C13D831ec7", "USDT", "Tether USD", 6),
            _token("0x6B175474E89094C44Da98b954EedeAC495271d0F", "DAI", "Dai Stablecoin", 18),
            _ETH_WETH,
        ),
        amm_factory=_UNISWAP_V3_FACTORY,
        block_explorer="https://etherscan.io",
        price_platform="ethereum",
        native_coin_id="ethereum",
        rpc_env=("ALCHEMY_ETH_MAINNET", "INFURA_ETH_MAINNET"),
        infura_slug="mainnet",
    ),
    NetworkConfig(
        chain_id=8453,
        name="Base",
        rpc_endpoints=("https://mainnet.base.org", "https://base-rpc.publicnode.com"),
        native_currency=_ETH,
        quote_token=_BASE_WETH,
        stable_quote=_BASE_USDC,
        common_tokens=(_BASE_USDC, _BASE_WETH),
        amm_factory="0x33128a8fC17869897dcE68Ed026d694621f6FDfD",
        block_explorer="https://basescan.org",
        price_platform="base",
        native_coin_id="ethereum",
        rpc_env=("ALCHEMY_BASE_MAINNET",),
    ),
    NetworkConfig(
        chain_id=11155111,
        name="Sepolia",
        rpc_endpoints=("https://ethereum-sepolia-rpc.publicnode.com",),
        native_currency=NativeCurrency(symbol="ETH", name="Sepolia Ether"),
        quote_token=_SEPOLIA_WETH,
        stable_quote=_SEPOLIA_USDC,
        common_tokens=(_SEPOLIA_USDC,),
        amm_factory="0x0227628f3F023bb0B980b67D528571c95c6DaC1c",
        block_explorer="https://sepolia.etherscan.io",
        native_coin_id="ethereum",
        testnet=True,
        rpc_env=("ALCHEMY_ETH_SEPOLIA", "INFURA_ETH_SEPOLIA"),
        infura_slug="sepolia",
    ),
    NetworkConfig(
        chain_id=84532,
        name="Base Sepolia",
        rpc_endpoints=("https://sepolia.base.org",),
        native_currency=NativeCurrency(symbol="ETH", name="Sepolia Ether"),
        quote_token=_BASE_WETH,
        stable_quote=_BASE_SEPOLIA_USDC,
        common_tokens=(_BASE_SEPOLIA_USDC, _BASE_WETH),
        amm_factory="0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24",
        block_explorer="https://sepolia.basescan.org",
        native_coin_id="ethereum",
        testnet=True,
        rpc_env=("ALCHEMY_BASE_SEPOLIA",),
    ),
    NetworkConfig(
        chain_id=42161,
        name="Arbitrum One",
        rpc_endpoints=("https://arb1.arbitrum.io/rpc", "https://arbitrum-one-rpc.publicnode.com"),
        native_currency=_ETH,
        quote_token=_ARB_WETH,
        stable_quote=_ARB_USDC,
        common_tokens=(_ARB_USDC, _ARB_WETH),
        amm_factory=_UNISWAP_V3_FACTORY,
        block_explorer="https://arbiscan.io",
        price_platform="arbitrum-one",
        native_coin_id="ethereum",
        rpc_env=("ALCHEMY_ARBITRUM_MAINNET", "INFURA_ARBITRUM_MAINNET"),
        infura_slug="arbitrum-mainnet",
    ),
    NetworkConfig(
        chain_id=137,
        name="Polygon",
        rpc_endpoints=("https://polygon-rpc.com", "https://polygon-bor-rpc.publicnode.com"),
        native_currency=NativeCurrency(symbol="POL", name="POL"),
        quote_token=_POLYGON_WPOL,
        stable_quote=_POLYGON_USDC,
        common_tokens=(_POLYGON_USDC,),
        amm_factory=_UNISWAP_V3_FACTORY,
        block_explorer="https://polygonscan.com",
        price_platform="polygon-pos",
        native_coin_id="polygon-ecosystem-token",
        rpc_env=("ALCHEMY_POLYGON_MAINNET", "INFURA_POLYGON_MAINNET"),
        infura_slug="polygon-mainnet",
    ),
    NetworkConfig(
        chain_id=100,
        name="Gnosis",
        rpc_endpoints=("https://rpc.gnosischain.com",),
        native_currency=NativeCurrency(symbol="xDAI", name="xDAI"),
        quote_token=_GNOSIS_WXDAI,
        stable_quote=_GNOSIS_USDC,
        common_tokens=(_GNOSIS_USDC,),
        block_explorer="https://gnosisscan.io",
        price_platform="xdai",
        native_coin_id="xdai",
        rpc_env=("ALCHEMY_GNOSIS_MAINNET",),
    ),
)


@dataclass(frozen=True)
class NetworkRegistry:
    """Immutable chain-id keyed view over a set of networks."""

    networks: Tuple[NetworkConfig, ...]
    _by_id: Dict[int, NetworkConfig] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_id: Dict[int, NetworkConfig] = {}
        for network in self.networks:
            if network.chain_id in by_id:
                raise ValueError(f"duplicate chain id {network.chain_id} in network registry")
            by_id[network.chain_id] = network
        object.__setattr__(self, "_by_id", by_id)

    @classmethod
    def default(cls) -> "NetworkRegistry":
        return cls(DEFAULT_NETWORKS)

    def get(self, chain_id: int) -> NetworkConfig:
        try:
            return self._by_id[chain_id]
        except KeyError:
            raise UnknownChainError(chain_id) from None

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._by_id

    def __iter__(self) -> Iterator[NetworkConfig]:
        return iter(self.networks)

    def __len__(self) -> int:
        return len(self.networks)

    def chain_ids(self) -> List[int]:
        return [network.chain_id for network in self.networks]

    def find_token(self, chain_id: int, address: str) -> Optional[TokenDescriptor]:
        return self.get(chain_id).find_token(address)

    def subset(self, chain_ids: Iterable[int]) -> "NetworkRegistry":
        """Registry restricted to ``chain_ids`` in the given order."""

        return NetworkRegistry(tuple(self.get(chain_id) for chain_id in chain_ids))

    def with_rpc_overrides(self, overrides: Mapping[int, Iterable[str]]) -> "NetworkRegistry":
        """Prepend configured RPC URLs for specific chains."""

        updated = []
        for network in self.networks:
            extra = tuple(overrides.get(network.chain_id, ()))
            if extra:
                network = replace(network, rpc_endpoints=extra + network.rpc_endpoints)
            updated.append(network)
        return NetworkRegistry(tuple(updated))


__all__ = [
    "DEFAULT_NETWORKS",
    "NATIVE",
    "NativeCurrency",
    "NativeMarker",
    "NetworkConfig",
    "NetworkRegistry",
    "STABLECOIN_SYMBOLS",
    "TokenDescriptor",
    "UnknownChainError",
    "is_stablecoin",
    "is_usdc",
]
