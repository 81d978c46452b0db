import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config_loader import ProfileSettings, Settings, load_settings
from core.networks import NetworkRegistry
from portfolio.scheduler import ConcurrencyProfile, Strategy

ENV_KEYS = ("PORTFOLIO_BACKEND_URL", "COINGECKO_API_KEY", "TEST_ETH_RPC_URL")


@pytest.fixture()
def temp_files(tmp_path: Path):
    for key in ENV_KEYS:
        os.environ.pop(key, None)

    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "PORTFOLIO_BACKEND_URL=https://backend.example.com",
                "COINGECKO_API_KEY=cg-demo-key",
                "TEST_ETH_RPC_URL=https://eth.example.com/rpc",
            ]
        ),
        encoding="utf-8",
    )

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
chains: [8453, 1]
profile:
  name: constrained
  chain_timeout: 20
rpc:
  timeout: 6
  url_env:
    1: TEST_ETH_RPC_URL
  overrides:
    8453: https://base.example.com/rpc
pricing:
  fee_tier: 500
  quote_ttl: 30
backend:
  enabled: true
strict: true
""",
        encoding="utf-8",
    )

    yield config_path, env_path

    for key in ENV_KEYS:
        os.environ.pop(key, None)


def test_load_settings_with_env(temp_files):
    config_path, env_path = temp_files
    settings = load_settings(config_path=config_path, env_path=env_path)

    assert settings.chains == (8453, 1)
    assert settings.strict is True
    assert settings.rpc.timeout == 6.0
    assert settings.pricing.fee_tier == 500
    assert settings.pricing.quote_ttl == 30.0
    assert settings.pricing.unavailable_ttl == 10.0
    assert settings.pricing.api_key == "cg-demo-key"
    assert settings.backend.active is True
    assert settings.backend.url == "https://backend.example.com"

    profile = ConcurrencyProfile.from_settings(settings.profile)
    assert profile.strategy is Strategy.SEQUENTIAL
    assert profile.chain_timeout == 20.0
    assert profile.retries == 2

    registry = settings.build_registry()
    assert registry.chain_ids() == [8453, 1]
    assert registry.get(1).rpc_endpoints[0] == "https://eth.example.com/rpc"
    assert registry.get(8453).rpc_endpoints[0] == "https://base.example.com/rpc"


def test_defaults_when_file_missing(tmp_path: Path):
    settings = load_settings(config_path=tmp_path / "missing.yaml")

    assert settings.chains == ()
    assert settings.profile.name == "capable"
    assert settings.pricing.external_enabled is True
    assert settings.backend.enabled is False
    assert settings.strict is False
    assert len(settings.build_registry()) == len(NetworkRegistry.default())


def test_defaults_when_sections_missing(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("chains: [137]\n", encoding="utf-8")

    settings = load_settings(config_path=cfg_path)

    assert settings.chains == (137,)
    assert settings.rpc.timeout == 10.0
    assert settings.pricing.fee_tier == 3000
    assert settings.backend.health_ttl == 10.0


def test_profile_may_be_given_by_name():
    settings = Settings.from_dict({"profile": "constrained"})
    assert settings.profile.name == "constrained"
    assert settings.profile.retries is None


def test_invalid_values_are_rejected():
    with pytest.raises(ValueError):
        Settings.from_dict({"chains": [1, 1]})
    with pytest.raises(ValueError):
        ProfileSettings(name="turbo")
    with pytest.raises(ValueError):
        ProfileSettings(concurrency=0)
