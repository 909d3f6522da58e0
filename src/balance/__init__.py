"""Cash balance projection, automatic coverage and month-end transfers."""

from src.balance.coverage import CoverageService
from src.balance.projection import BalanceProjector, balance_through
from src.balance.transfer import BalanceTransferService

__all__ = [
    "BalanceProjector",
    "BalanceTransferService",
    "CoverageService",
    "balance_through",
]
