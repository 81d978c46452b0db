"""Command line entry point for the multichain portfolio engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

from core.config_loader import PROFILE_NAMES, ProfileSettings, Settings, load_settings
from core.events import EventEnvelope, EventType
from portfolio.engine import PortfolioEngine, PortfolioUnavailableError

LOGGER = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Multichain wallet portfolio engine")
    parser.add_argument("--address", help="Wallet address to value")
    parser.add_argument("--once", action="store_true", help="Refresh once and print the snapshot")
    parser.add_argument("--loop", action="store_true", help="Refresh periodically")
    parser.add_argument("--interval", type=float, default=60.0, help="Seconds between refreshes in --loop mode")
    parser.add_argument("--profile", choices=PROFILE_NAMES, help="Override the configured client profile")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--probe", action="store_true", help="Probe every RPC endpoint and exit")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def _log_fault(envelope: EventEnvelope) -> None:
    LOGGER.debug("Fault: %s", envelope.event.message)


def print_snapshot(snapshot) -> None:
    json.dump(snapshot.to_dict(), sys.stdout, indent=2)
    sys.stdout.write("\n")
    sys.stdout.flush()


async def run_once(settings: Settings, address: str) -> int:
    async with PortfolioEngine(settings=settings) as engine:
        engine.event_bus.subscribe(EventType.SYSTEM_FAULT, _log_fault)
        try:
            snapshot = await engine.refresh(address)
        except PortfolioUnavailableError as exc:
            LOGGER.error("%s", exc)
            return 1
        print_snapshot(snapshot)
        return 1 if snapshot.error else 0


async def loop_forever(settings: Settings, address: str, interval: float) -> int:
    async with PortfolioEngine(settings=settings) as engine:
        engine.event_bus.subscribe(EventType.SYSTEM_FAULT, _log_fault)
        while True:
            try:
                snapshot = await engine.refresh(address)
                print_snapshot(snapshot)
            except PortfolioUnavailableError as exc:
                LOGGER.error("%s", exc)
            except Exception as exc:  # pragma: no cover
                LOGGER.exception("Refresh failed: %s", exc)
            await asyncio.sleep(interval)


async def probe(settings: Settings) -> int:
    async with PortfolioEngine(settings=settings) as engine:
        results = await engine.probe()
    for result in results:
        status = "ok" if result.ok else "FAIL"
        latency = f"{result.latency_ms:.0f}ms" if result.latency_ms is not None else "-"
        print(f"{result.chain_id:>9} {status:<4} {latency:>7} {result.endpoint.url} {result.reason}")
    return 0 if any(result.ok for result in results) else 1


def run_async(entry: Callable[[], Awaitable[int]]) -> int:
    try:
        return asyncio.run(entry())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 130


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    settings = load_settings(config_path=args.config)
    if args.profile:
        settings.profile = ProfileSettings(
            name=args.profile,
            chain_timeout=settings.profile.chain_timeout,
        )

    if args.probe:
        return run_async(lambda: probe(settings))
    if args.once and args.loop:
        raise SystemExit("--once and --loop cannot be combined")
    if not args.address:
        raise SystemExit("--address is required")
    if args.loop:
        return run_async(lambda: loop_forever(settings, args.address, args.interval))
    return run_async(lambda: run_once(settings, args.address))


if __name__ == "__main__":
    sys.exit(main())
