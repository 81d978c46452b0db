import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import run


def test_parse_args_defaults():
    args = run.parse_args(["--address", "0xabc"])
    assert args.address == "0xabc"
    assert args.once is False
    assert args.loop is False
    assert args.interval == 60.0
    assert args.profile is None


def test_parse_args_rejects_unknown_profile():
    with pytest.raises(SystemExit):
        run.parse_args(["--profile", "turbo"])


def test_main_requires_an_address(tmp_path: Path):
    with pytest.raises(SystemExit):
        run.main(["--once", "--config", str(tmp_path / "none.yaml")])


def test_once_and_loop_are_exclusive(tmp_path: Path):
    with pytest.raises(SystemExit):
        run.main(["--address", "0xabc", "--once", "--loop", "--config", str(tmp_path / "none.yaml")])
