"""Balance fetching, chain scheduling and the portfolio engine."""

from .engine import PortfolioEngine, PortfolioSnapshot, PortfolioUnavailableError
from .scheduler import ChainScheduler, ConcurrencyProfile

__all__ = [
    "ChainScheduler",
    "ConcurrencyProfile",
    "PortfolioEngine",
    "PortfolioSnapshot",
    "PortfolioUnavailableError",
]
