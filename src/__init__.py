"""
Finance Ledger - Source Package

A personal-finance ledger engine: cash transactions, credit cards with
invoices and limits, installments and recurrences, and interest-bearing
reserves that cover negative balances and absorb month-end surpluses.

DESIGN PRINCIPLES:
1. Derived state is recomputed, never edited by hand
2. Fail early, fail visibly
3. No silent corrections
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Ledger Team"
