"""Tests for installment/recurrence expansion and the transaction store."""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from src.models.ledger import EditScope, RecurrenceType, TransactionKind, TransactionType
from src.services.storage import DuplicateError, NotFoundError
from src.transactions import (
    TransactionDraft,
    TransactionExpander,
    TransactionStore,
    TransactionUpdate,
    cadence_anchor,
    family_of,
    split_installments,
    strip_installment_suffix,
)

from conftest import make_card, store_card


def draft(**overrides) -> TransactionDraft:
    values = {
        "amount": Decimal("300"),
        "date": date(2024, 1, 31),
        "type": TransactionType.EXPENSE,
        "category": "housing",
        "description": "Phone",
    }
    values.update(overrides)
    return TransactionDraft(**values)


class TestDraft:
    """Tests for TransactionDraft validation."""

    def test_zero_amount_rejected(self):
        """Test that a zero amount is rejected."""
        with pytest.raises(ValueError):
            draft(amount=Decimal("0"))

    def test_installments_and_recurrence_are_exclusive(self):
        """Test that a draft has a single role."""
        with pytest.raises(ValueError):
            draft(installments=3, recurrence_type=RecurrenceType.MONTHLY)

    def test_end_date_before_start_rejected(self):
        """Test the recurrence end date bound."""
        with pytest.raises(ValueError):
            draft(recurrence_type=RecurrenceType.MONTHLY, recurrence_end_date=date(2024, 1, 1))

    def test_update_is_empty(self):
        """Test the empty update detection."""
        assert TransactionUpdate().is_empty is True
        assert TransactionUpdate(category="food").is_empty is False

    def test_update_carries_a_date(self):
        """Test that a date-only update keeps its date."""
        update = TransactionUpdate(date=date(2024, 6, 5))
        assert update.date == date(2024, 6, 5)
        assert update.is_empty is False


class TestInstallments:
    """Tests for installment expansion."""

    def test_three_installments_of_a_total(self, clock):
        """Test N=3, total 300 gives three 100 expenses one month apart in one family."""
        instances = TransactionExpander(clock=clock).expand(draft(installments=3))

        assert [tx.amount for tx in instances] == [Decimal("-100")] * 3
        assert [tx.date for tx in instances] == [
            date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31),
        ]
        root = instances[0]
        assert root.parent_id is None
        assert [tx.parent_id for tx in instances[1:]] == [root.id, root.id]
        assert [tx.current_installment for tx in instances] == [1, 2, 3]
        assert all(tx.kind == TransactionKind.INSTALLMENT_MEMBER for tx in instances)
        assert [tx.description for tx in instances] == ["Phone (1/3)", "Phone (2/3)", "Phone (3/3)"]
        assert all(tx.requires_scope_choice for tx in instances)

    def test_remainder_lands_on_last_installment(self):
        """Test cent splitting."""
        assert split_installments(Decimal("100"), 3) == [
            Decimal("33.33"), Decimal("33.33"), Decimal("33.34"),
        ]

    def test_per_installment_amount(self, clock):
        """Test that the amount is repeated when it is not a total."""
        instances = TransactionExpander(clock=clock).expand(
            draft(installments=4, amount=Decimal("50"), amount_is_total=False)
        )
        assert [tx.amount for tx in instances] == [Decimal("-50")] * 4

    def test_card_installments_get_invoice_months(self, clock):
        """Test that each member is billed by its own date."""
        card = make_card(closing_day=25)
        instances = TransactionExpander(clock=clock).expand(
            draft(installments=2, date=date(2024, 1, 26), card_id=card.id), card,
        )
        assert [tx.invoice_month for tx in instances] == ["2024-02", "2024-03"]
        assert all(tx.is_card_payment for tx in instances)

    def test_strip_installment_suffix(self):
        """Test suffix removal."""
        assert strip_installment_suffix("Phone (2/3)") == "Phone"
        assert strip_installment_suffix("Gift (for mom)") == "Gift (for mom)"
        assert strip_installment_suffix(None) == ""


class TestRecurrences:
    """Tests for recurrence expansion."""

    def test_monthly_through_end_date(self, clock):
        """Test that dates are computed from the base date and the end is inclusive."""
        instances = TransactionExpander(clock=clock).expand(draft(
            amount=Decimal("80"),
            recurrence_type=RecurrenceType.MONTHLY,
            recurrence_end_date=date(2024, 4, 30),
        ))
        assert [tx.date for tx in instances] == [
            date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30),
        ]
        assert len({tx.recurrence_id for tx in instances}) == 1
        assert all(tx.is_recurring for tx in instances)
        assert all(tx.description == "Phone" for tx in instances)

    def test_yearly(self, clock):
        """Test yearly cadence from Feb 29."""
        instances = TransactionExpander(clock=clock).expand(draft(
            date=date(2024, 2, 29),
            recurrence_type=RecurrenceType.YEARLY,
            recurrence_end_date=date(2026, 12, 31),
        ))
        assert [tx.date for tx in instances] == [
            date(2024, 2, 29), date(2025, 2, 28), date(2026, 2, 28),
        ]

    def test_open_ended_materializes_a_horizon(self, clock):
        """Test that an open recurrence stops at the horizon."""
        expander = TransactionExpander(clock=clock, horizon_months=1)
        instances = expander.expand(draft(
            date=date(2024, 3, 1),
            type=TransactionType.INCOME,
            category="income",
            recurrence_type=RecurrenceType.WEEKLY,
        ))
        assert instances[-1].date == date(2024, 4, 12)
        assert len(instances) == 7
        assert all(tx.recurrence_end_date is None for tx in instances)

    def test_max_instances_cap(self, clock):
        """Test that runaway recurrences are truncated."""
        expander = TransactionExpander(clock=clock, max_instances=5)
        instances = expander.expand(draft(
            recurrence_type=RecurrenceType.WEEKLY,
            recurrence_end_date=date(2030, 1, 1),
        ))
        assert len(instances) == 5

    def test_extend_open_recurrences(self, clock):
        """Test that moving time forward tops the family up without duplicates."""
        expander = TransactionExpander(clock=clock, horizon_months=1)
        instances = expander.expand(draft(
            date=date(2024, 3, 10),
            recurrence_type=RecurrenceType.MONTHLY,
        ))
        transactions = {tx.id: tx for tx in instances}
        assert [tx.date for tx in instances] == [date(2024, 3, 10), date(2024, 4, 10)]

        assert expander.extend_open_recurrences(transactions, []) == []

        clock.today = date(2024, 5, 20)
        created = expander.extend_open_recurrences(transactions, [])
        assert [tx.date for tx in created] == [date(2024, 5, 10), date(2024, 6, 10)]
        assert len({tx.recurrence_id for tx in transactions.values()}) == 1
        assert len(transactions) == 4

    def _open_monthly(self, expander, day: date) -> dict:
        instances = expander.expand(draft(date=day, recurrence_type=RecurrenceType.MONTHLY))
        return {tx.id: tx for tx in instances}

    def test_deleted_last_instance_is_not_refilled(self, clock):
        """Test that the watermark keeps a deleted instance deleted."""
        expander = TransactionExpander(clock=clock, horizon_months=1)
        transactions = self._open_monthly(expander, date(2024, 3, 10))
        watermarks = {}

        assert expander.extend_open_recurrences(transactions, [], watermarks) == []
        (recurrence_id, watermark), = watermarks.items()
        assert watermark == date(2024, 4, 10)

        last = max(transactions.values(), key=lambda tx: tx.date)
        del transactions[last.id]
        assert expander.extend_open_recurrences(transactions, [], watermarks) == []
        assert [tx.date for tx in transactions.values()] == [date(2024, 3, 10)]

        clock.today = date(2024, 5, 20)
        created = expander.extend_open_recurrences(transactions, [], watermarks)
        assert [tx.date for tx in created] == [date(2024, 5, 10), date(2024, 6, 10)]
        assert watermarks == {recurrence_id: date(2024, 6, 10)}

    def test_shifted_family_follows_its_new_cadence(self, clock):
        """Test that members moved earlier are not duplicated in their month."""
        expander = TransactionExpander(clock=clock, horizon_months=1)
        transactions = self._open_monthly(expander, date(2024, 3, 10))
        watermarks = {}
        expander.extend_open_recurrences(transactions, [], watermarks)

        last = max(transactions.values(), key=lambda tx: tx.date)
        transactions[last.id] = last.model_copy(update={"date": date(2024, 4, 5)})

        clock.today = date(2024, 5, 20)
        created = expander.extend_open_recurrences(transactions, [], watermarks)

        assert [tx.date for tx in created] == [date(2024, 5, 5), date(2024, 6, 5)]
        months = [tx.month for tx in transactions.values()]
        assert sorted(months) == ["2024-03", "2024-04", "2024-05", "2024-06"]

    def test_watermarks_of_closed_families_are_dropped(self, clock):
        """Test that only open families keep a watermark."""
        expander = TransactionExpander(clock=clock, horizon_months=1)
        watermarks = {"gone": date(2024, 1, 1)}

        expander.extend_open_recurrences({}, [], watermarks)

        assert watermarks == {}

    def test_cadence_anchor(self):
        """Test the start of the latest run of evenly spaced members."""
        month_ends = [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]
        assert cadence_anchor(month_ends, RecurrenceType.MONTHLY) == date(2024, 1, 31)

        shifted = [date(2024, 1, 10), date(2024, 2, 5), date(2024, 3, 5)]
        assert cadence_anchor(shifted, RecurrenceType.MONTHLY) == date(2024, 2, 5)

        assert cadence_anchor([date(2024, 3, 1)], RecurrenceType.WEEKLY) == date(2024, 3, 1)


class TestTransactionStore:
    """Tests for the store queries and family-scoped operations."""

    async def _add(self, repository, clock, **overrides):
        instances = TransactionExpander(clock=clock).expand(draft(**overrides))
        await TransactionStore(repository).add_many(instances)
        return instances

    async def test_add_many_rejects_duplicates(self, repository, clock):
        """Test that an existing id cannot be inserted twice."""
        instances = await self._add(repository, clock)
        with pytest.raises(DuplicateError):
            await TransactionStore(repository).add_many(instances)

    async def test_update_missing_raises(self, repository, clock):
        """Test that updating an unknown id raises."""
        tx = TransactionExpander(clock=clock).expand(draft())[0]
        with pytest.raises(NotFoundError):
            await TransactionStore(repository).update(tx)

    async def test_get_by_month_uses_invoice_month(self, repository, clock):
        """Test month scoping of card purchases."""
        card = await store_card(repository, make_card(closing_day=25))
        store = TransactionStore(repository)
        expander = TransactionExpander(clock=clock)
        on_card = expander.expand(draft(date=date(2024, 2, 27), card_id=card.id, amount=Decimal("40")), card)
        in_cash = expander.expand(draft(date=date(2024, 2, 27), amount=Decimal("60"), category="food"))
        await store.add_many(on_card + in_cash)

        assert [tx.id for tx in await store.get_by_month("2024-03")] == [on_card[0].id]
        assert [tx.id for tx in await store.get_by_month("2024-02")] == [in_cash[0].id]
        assert await store.get_card_monthly_total(card.id, "2024-03") == Decimal("40")
        assert await store.get_months_with_transactions() == ["2024-03", "2024-02"]
        assert await store.get_category_totals("2024-02") == {"food": Decimal("60")}

        totals = await store.get_monthly_totals("2024-02")
        assert totals.expense == Decimal("60")
        assert totals.income == Decimal("0")

    async def test_update_all_installments(self, repository, clock):
        """Test that an ALL edit reaches every member and keeps the suffixes."""
        instances = await self._add(repository, clock, installments=3)
        store = TransactionStore(repository)

        updated = await store.update_with_scope(
            instances[1].id,
            TransactionUpdate(amount=Decimal("120"), description="Mobile"),
            EditScope.ALL,
            [],
        )

        assert len(updated) == 3
        stored = sorted((await store.get_all()).values(), key=lambda tx: tx.current_installment)
        assert [tx.amount for tx in stored] == [Decimal("-120")] * 3
        assert [tx.description for tx in stored] == ["Mobile (1/3)", "Mobile (2/3)", "Mobile (3/3)"]

    async def test_update_from_date_shifts_dates(self, repository, clock):
        """Test that a FROM_DATE edit moves later members by the same delta."""
        instances = await self._add(
            repository, clock,
            date=date(2024, 1, 10),
            recurrence_type=RecurrenceType.MONTHLY,
            recurrence_end_date=date(2024, 4, 10),
        )
        store = TransactionStore(repository)

        updated = await store.update_with_scope(
            instances[2].id,
            TransactionUpdate(date=date(2024, 3, 12)),
            EditScope.FROM_DATE,
            [],
        )

        assert sorted(tx.date for tx in updated) == [date(2024, 3, 12), date(2024, 4, 12)]
        unchanged = await store.get(instances[0].id)
        assert unchanged.date == date(2024, 1, 10)

    async def test_single_date_edit_moves_invoice_month(self, repository, clock):
        """Test that a card purchase follows its new date to the right invoice."""
        card = await store_card(repository, make_card(closing_day=25))
        instances = await self._add(repository, clock, date=date(2024, 2, 20), card_id=card.id)
        store = TransactionStore(repository)

        updated = await store.update_with_scope(
            instances[0].id, TransactionUpdate(date=date(2024, 2, 26)), EditScope.SINGLE, [card],
        )
        assert updated[0].invoice_month == "2024-03"

        updated = await store.update_with_scope(
            instances[0].id, TransactionUpdate(invoice_month="2024-05"), EditScope.SINGLE, [card],
        )
        assert updated[0].invoice_month == "2024-05"

    async def test_delete_from_date_ends_recurrence(self, repository, clock):
        """Test that cutting a recurrence leaves an end date on the survivors."""
        instances = await self._add(
            repository, clock,
            date=date(2024, 1, 10),
            recurrence_type=RecurrenceType.MONTHLY,
        )
        store = TransactionStore(repository)
        cut = instances[2]

        removed = await store.delete_with_scope(cut.id, EditScope.FROM_DATE)

        remaining = (await store.get_all()).values()
        assert len(removed) == len(instances) - 2
        assert sorted(tx.date for tx in remaining) == [date(2024, 1, 10), date(2024, 2, 10)]
        assert all(tx.recurrence_end_date == cut.date - timedelta(days=1) for tx in remaining)

    async def test_delete_all_and_single(self, repository, clock):
        """Test ALL removes the family and SINGLE only the target."""
        instances = await self._add(repository, clock, installments=3)
        store = TransactionStore(repository)

        assert len(await store.delete_with_scope(instances[2].id, EditScope.SINGLE)) == 1
        assert len(family_of(instances[0], (await store.get_all()).values())) == 2

        assert len(await store.delete_with_scope(instances[1].id, EditScope.ALL)) == 2
        assert await store.get_all() == {}
        assert await store.delete_with_scope("missing", EditScope.ALL) == []
