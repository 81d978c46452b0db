"""Configuration loader for the portfolio engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from core.networks import NetworkRegistry

LOGGER = logging.getLogger(__name__)

PROFILE_NAMES = ("constrained", "capable")


@dataclass
class ProfileSettings:
    """Client capability profile; unset fields keep the named preset's value."""

    name: str = "capable"
    concurrency: Optional[int] = None
    delay_seconds: Optional[float] = None
    chain_timeout: Optional[float] = None
    retries: Optional[int] = None
    backoff_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.name not in PROFILE_NAMES:
            raise ValueError(f"Unknown profile {self.name!r}; expected one of {', '.join(PROFILE_NAMES)}")
        if self.concurrency is not None and self.concurrency < 1:
            raise ValueError("profile.concurrency must be >= 1")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "ProfileSettings":
        if isinstance(data, str):
            return cls(name=data)
        data = data or {}

        def _opt(key: str, cast):
            value = data.get(key)
            return cast(value) if value is not None else None

        return cls(
            name=str(data.get("name", "capable")),
            concurrency=_opt("concurrency", int),
            delay_seconds=_opt("delay_seconds", float),
            chain_timeout=_opt("chain_timeout", float),
            retries=_opt("retries", int),
            backoff_seconds=_opt("backoff_seconds", float),
        )


@dataclass
class RpcSettings:
    timeout: float = 10.0
    # chain id -> extra URLs tried before the registry defaults
    overrides: Dict[int, List[str]] = field(default_factory=dict)
    # chain id -> env var holding a priority URL
    url_env: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "RpcSettings":
        data = data or {}
        overrides: Dict[int, List[str]] = {}
        for chain_id, urls in (data.get("overrides") or {}).items():
            if isinstance(urls, str):
                urls = [urls]
            overrides[int(chain_id)] = [str(url) for url in urls or []]
        url_env = {int(chain_id): str(name) for chain_id, name in (data.get("url_env") or {}).items()}
        return cls(timeout=float(data.get("timeout", 10.0)), overrides=overrides, url_env=url_env)

    def resolved_overrides(self) -> Dict[int, List[str]]:
        """Overrides with env-provided URLs placed first."""

        merged: Dict[int, List[str]] = {chain_id: list(urls) for chain_id, urls in self.overrides.items()}
        for chain_id, env_name in self.url_env.items():
            value = (os.getenv(env_name) or "").strip()
            if value:
                merged.setdefault(chain_id, []).insert(0, value)
        return merged


@dataclass
class PricingSettings:
    """External price API plus oracle cache lifetimes."""

    external_enabled: bool = True
    base_url: str = "https://api.coingecko.com/api/v3"
    api_key_env: Optional[str] = "COINGECKO_API_KEY"
    api_key_header: str = "x-cg-demo-api-key"
    timeout: float = 8.0
    fee_tier: int = 3000
    quote_ttl: float = 60.0
    unavailable_ttl: float = 10.0

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_env) if self.api_key_env else None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "PricingSettings":
        data = data or {}
        defaults = cls()
        return cls(
            external_enabled=bool(data.get("external_enabled", defaults.external_enabled)),
            base_url=str(data.get("base_url", defaults.base_url)),
            api_key_env=data.get("api_key_env", defaults.api_key_env),
            api_key_header=str(data.get("api_key_header", defaults.api_key_header)),
            timeout=float(data.get("timeout", defaults.timeout)),
            fee_tier=int(data.get("fee_tier", defaults.fee_tier)),
            quote_ttl=float(data.get("quote_ttl", defaults.quote_ttl)),
            unavailable_ttl=float(data.get("unavailable_ttl", defaults.unavailable_ttl)),
        )


@dataclass
class BackendSettings:
    """Optional aggregation backend with environment indirection for its URL."""

    enabled: bool = False
    base_url: Optional[str] = None
    base_url_env: Optional[str] = "PORTFOLIO_BACKEND_URL"
    timeout: float = 4.0
    health_ttl: float = 10.0
    health_timeout: float = 3.0

    @property
    def url(self) -> Optional[str]:
        if self.base_url:
            return self.base_url
        return os.getenv(self.base_url_env) if self.base_url_env else None

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.url)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "BackendSettings":
        data = data or {}
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", False)),
            base_url=data.get("base_url"),
            base_url_env=data.get("base_url_env", defaults.base_url_env),
            timeout=float(data.get("timeout", defaults.timeout)),
            health_ttl=float(data.get("health_ttl", defaults.health_ttl)),
            health_timeout=float(data.get("health_timeout", defaults.health_timeout)),
        )


@dataclass
class Settings:
    chains: Tuple[int, ...] = ()
    profile: ProfileSettings = field(default_factory=ProfileSettings)
    rpc: RpcSettings = field(default_factory=RpcSettings)
    pricing: PricingSettings = field(default_factory=PricingSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)
    strict: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "Settings":
        data = data or {}
        chains = tuple(int(chain_id) for chain_id in data.get("chains") or ())
        if len(set(chains)) != len(chains):
            raise ValueError("chains contains duplicate chain ids")
        return cls(
            chains=chains,
            profile=ProfileSettings.from_dict(data.get("profile")),
            rpc=RpcSettings.from_dict(data.get("rpc")),
            pricing=PricingSettings.from_dict(data.get("pricing")),
            backend=BackendSettings.from_dict(data.get("backend")),
            strict=bool(data.get("strict", False)),
        )

    def build_registry(self, base: Optional[NetworkRegistry] = None) -> NetworkRegistry:
        """Registry limited to the enabled chains with RPC overrides applied."""

        registry = base or NetworkRegistry.default()
        if self.chains:
            registry = registry.subset(self.chains)
        overrides = self.rpc.resolved_overrides()
        if overrides:
            registry = registry.with_rpc_overrides(overrides)
        return registry


def load_settings(
    config_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> Settings:
    """Load settings from YAML and the environment.

    A missing ``config.yaml`` is not an error; defaults cover every section.
    """

    base_path = Path(__file__).resolve().parents[1]
    if config_path is None:
        config_path = base_path / "config.yaml"
    if env_path is None:
        default_env = base_path / ".env"
        if default_env.exists():
            env_path = default_env

    if env_path is not None:
        load_dotenv(dotenv_path=env_path, override=False)

    config_path = Path(config_path)
    if not config_path.exists():
        LOGGER.info("No config file at %s, using defaults", config_path)
        return Settings()

    with open(config_path, "r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    return Settings.from_dict(data)


__all__ = [
    "BackendSettings",
    "PROFILE_NAMES",
    "PricingSettings",
    "ProfileSettings",
    "RpcSettings",
    "Settings",
    "load_settings",
]
