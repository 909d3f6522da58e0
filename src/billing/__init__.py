"""Billing engine: calendar math, invoices, card limits and settlements."""

from src.billing.dates import (
    Clock,
    add_days,
    add_months,
    add_weeks,
    add_years,
    billing_period,
    first_day_of_month,
    format_month,
    is_date_in_month,
    last_day_of_month,
    local_today,
    month_range,
    next_month,
    previous_month,
)
from src.billing.invoices import (
    InvoiceService,
    build_consolidated_invoices,
    build_statement,
    due_date_of,
    invoice_month_of,
    is_invoice_paid,
    statement_totals,
)
from src.billing.limits import CardLimitReconciler
from src.billing.auto_payment import AutoPaymentGenerator
from src.billing.payments import InvoicePaymentService

__all__ = [
    # Calendar
    "Clock",
    "add_days",
    "add_months",
    "add_weeks",
    "add_years",
    "billing_period",
    "first_day_of_month",
    "format_month",
    "is_date_in_month",
    "last_day_of_month",
    "local_today",
    "month_range",
    "next_month",
    "previous_month",
    # Invoices
    "InvoiceService",
    "build_consolidated_invoices",
    "build_statement",
    "due_date_of",
    "invoice_month_of",
    "is_invoice_paid",
    "statement_totals",
    # Limits and settlements
    "AutoPaymentGenerator",
    "CardLimitReconciler",
    "InvoicePaymentService",
]
