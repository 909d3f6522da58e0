"""Transaction storage, family operations and installment/recurrence expansion."""

from src.transactions.expander import (
    TransactionDraft,
    TransactionExpander,
    TransactionUpdate,
    cadence_anchor,
    installment_description,
    recurrence_date,
    split_installments,
    strip_installment_suffix,
)
from src.transactions.store import (
    TransactionStore,
    family_of,
    newest_first,
    select_scope,
)

__all__ = [
    "TransactionDraft",
    "TransactionExpander",
    "TransactionStore",
    "TransactionUpdate",
    "cadence_anchor",
    "family_of",
    "installment_description",
    "newest_first",
    "recurrence_date",
    "select_scope",
    "split_installments",
    "strip_installment_suffix",
]
