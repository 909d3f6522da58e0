"""Investments: daily yield accrual and reserve management."""

from src.investments.accrual import YieldAccrualEngine, daily_yield, net_yield
from src.investments.service import InvestmentService

__all__ = [
    "InvestmentService",
    "YieldAccrualEngine",
    "daily_yield",
    "net_yield",
]
