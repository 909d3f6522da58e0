"""Tests for balance projection, automatic coverage and month-end transfers."""

from datetime import date
from decimal import Decimal

import pytest

from src.balance import BalanceProjector, BalanceTransferService, CoverageService
from src.billing.invoices import InvoiceService, invoice_month_of
from src.investments import InvestmentService, daily_yield, net_yield
from src.models.investment import TransferStatus
from src.models.ledger import Transaction, TransactionOrigin, TransactionType

from conftest import make_card, store_card


def income(day: date, amount: str, origin: TransactionOrigin = TransactionOrigin.USER) -> Transaction:
    return Transaction(
        amount=Decimal(amount),
        date=day,
        type=TransactionType.INCOME,
        category="income",
        origin=origin,
    )


def expense(day: date, amount: str, description: str = None) -> Transaction:
    return Transaction(
        amount=Decimal(amount),
        date=day,
        type=TransactionType.EXPENSE,
        category="housing",
        description=description,
    )


async def save_all(repository, *transactions: Transaction) -> None:
    stored = await repository.get_transactions()
    for tx in transactions:
        stored[tx.id] = tx
    await repository.save_transactions(stored)


@pytest.fixture
def investments(repository, clock) -> InvestmentService:
    return InvestmentService(repository, clock)


@pytest.fixture
def invoices(repository) -> InvoiceService:
    return InvoiceService(repository)


class TestProjection:
    """Tests for current and projected balances."""

    async def test_projected_balance(self, repository, clock, invoices, investments):
        """Test balances over cash items and an invoice due this month."""
        card = await store_card(repository, make_card(closing_day=25, due_day=5))
        await save_all(
            repository,
            income(date(2024, 3, 1), "1000"),
            expense(date(2024, 3, 10), "200"),
            expense(date(2024, 3, 20), "300"),
            Transaction(
                amount=Decimal("150"),
                date=date(2024, 2, 3),
                type=TransactionType.EXPENSE,
                category="food",
                is_card_payment=True,
                card_id=card.id,
                invoice_month=invoice_month_of(date(2024, 2, 3), card.closing_day),
            ),
        )
        reserve = await investments.create_investment(
            "Reserve", Decimal("1000"), yield_rate=Decimal("6.5"), can_cover_negative_balance=True,
        )
        projector = BalanceProjector(invoices, investments, clock)

        projection = await projector.calculate_projected_balance("2024-03")

        assert projection.current_balance == Decimal("650")
        assert projection.paid_expenses == Decimal("350")
        assert projection.remaining_expenses == Decimal("300")
        assert projection.projected_balance == Decimal("350")
        assert projection.daily_yield == net_yield(daily_yield(Decimal("650"), reserve.yield_rate))[1]

        assert await projector.get_current_balance() == Decimal("650")
        assert await projector.get_projected_expenses("2024-03") == Decimal("300")
        assert await projector.get_balance_at_date("2024-03", date(2024, 3, 4)) == Decimal("1000")

    async def test_no_yield_without_reserve(self, repository, clock, invoices, investments):
        """Test that the daily yield needs a coverage reserve."""
        await save_all(repository, income(date(2024, 3, 1), "1000"))
        projection = await BalanceProjector(invoices, investments, clock).calculate_projected_balance("2024-03")
        assert projection.daily_yield == Decimal("0")

    async def test_accumulated_yield(self, repository, clock, invoices, investments):
        """Test that future months earn nothing and a positive balance earns daily."""
        await save_all(repository, income(date(2024, 3, 1), "1000"))
        await investments.create_investment("Reserve", Decimal("1"), can_cover_negative_balance=True)
        projector = BalanceProjector(invoices, investments, clock)

        assert await projector.calculate_accumulated_yield("2024-04") == Decimal("0")
        accumulated = await projector.calculate_accumulated_yield("2024-03")
        assert accumulated > 0


class TestCoverage:
    """Tests for the once-a-day automatic coverage."""

    async def test_covers_todays_deficit(self, repository, clock, invoices, investments):
        """Test a draw, its income and record, and the once-a-day gate."""
        reserve = await investments.create_investment(
            "Reserve", Decimal("1000"), can_cover_negative_balance=True,
        )
        await save_all(
            repository,
            income(date(2024, 3, 1), "100"),
            expense(clock(), "400", description="Rent"),
            expense(date(2024, 3, 28), "999"),
        )
        coverage = CoverageService(repository, invoices, investments, clock)

        need = await coverage.calculate_todays_coverage_need()
        assert need.needs_coverage is True
        assert need.amount_needed == Decimal("300")
        assert [item.description for item in need.due_items] == ["Rent"]

        records = await coverage.apply_todays_coverage()

        assert len(records) == 1
        record = records[0]
        assert record.id == f"2024-03-15-{reserve.id}"
        assert record.amount_covered == Decimal("300")
        covering = (await repository.get_transactions())[record.transaction_id]
        assert covering.origin == TransactionOrigin.COVERAGE
        assert covering.amount == Decimal("300")
        assert covering.description == "Coverage: Rent"
        assert (await investments.get_investment(reserve.id)).current_amount == Decimal("700")

        assert await coverage.was_coverage_applied_today() is True
        assert await coverage.apply_todays_coverage() == []
        assert await coverage.get_coverage_records("2024-03") == records
        assert await coverage.get_coverage_records("2024-02") == []

    async def test_insufficient_reserve_draws_everything(self, repository, clock, invoices, investments):
        """Test that a small reserve is drained and deactivated."""
        reserve = await investments.create_investment(
            "Reserve", Decimal("100"), can_cover_negative_balance=True,
        )
        await save_all(repository, expense(date(2024, 3, 10), "300"))
        coverage = CoverageService(repository, invoices, investments, clock)

        records = await coverage.apply_todays_coverage()

        assert [record.amount_covered for record in records] == [Decimal("100")]
        drained = await investments.get_investment(reserve.id)
        assert drained.is_active is False
        assert drained.current_amount == Decimal("0")

    async def test_nothing_without_deficit_or_reserve(self, repository, clock, invoices, investments):
        """Test the no-op paths."""
        coverage = CoverageService(repository, invoices, investments, clock)
        await save_all(repository, expense(date(2024, 3, 10), "300"))
        assert (await coverage.calculate_todays_coverage_need()).needs_coverage is False

        await investments.create_investment("Reserve", Decimal("1000"), can_cover_negative_balance=True)
        await save_all(repository, income(date(2024, 3, 2), "500"))
        assert await coverage.apply_todays_coverage() == []

    async def test_future_coverable_expenses(self, repository, clock, invoices, investments):
        """Test the simulation of deficits later in the month."""
        await investments.create_investment("Reserve", Decimal("1000"), can_cover_negative_balance=True)
        await save_all(
            repository,
            income(date(2024, 3, 1), "100"),
            expense(date(2024, 3, 20), "50"),
            expense(date(2024, 3, 25), "200", description="Insurance"),
        )
        coverage = CoverageService(repository, invoices, investments, clock)

        future = await coverage.calculate_future_coverable_expenses()

        assert future.total_coverable == Decimal("150")
        assert [(item.description, item.amount) for item in future.items] == [("Insurance", Decimal("150"))]


class TestMonthEndTransfer:
    """Tests for recording and sweeping month-end surpluses."""

    async def _service(self, repository, clock, invoices, investments, reserve=True):
        if reserve:
            await investments.create_investment("Reserve", Decimal("1000"), can_cover_negative_balance=True)
        return BalanceTransferService(repository, invoices, investments, clock)

    async def test_surplus_swept_once(self, repository, clock, invoices, investments):
        """Test +500 in February is swept by the first March income and only once."""
        transfers = await self._service(repository, clock, invoices, investments)
        await save_all(repository, income(date(2024, 2, 1), "800"), expense(date(2024, 2, 10), "300"))

        pending = await transfers.initialize_month_end_check()
        assert pending.month == "2024-02"
        assert pending.amount == Decimal("500")
        assert pending.status == TransferStatus.PENDING
        assert await transfers.get_pending_carry_over_balance("2024-03") == Decimal("500")

        salary = income(date(2024, 3, 5), "3000")
        await save_all(repository, salary)
        entry = await transfers.process_income_transfer(salary)

        assert entry is not None
        assert entry.amount == Decimal("500")
        assert entry.from_month == "2024-02"
        assert entry.triggered_by_transaction_id == salary.id
        assert await transfers.get_pending_transfer() is None
        reserve = (await investments.get_investments_for_coverage())[0]
        assert reserve.current_amount == Decimal("1500")
        sweep = (await repository.get_transactions())[entry.transaction_id]
        assert sweep.origin == TransactionOrigin.BALANCE_TRANSFER
        assert sweep.amount == Decimal("-500")
        assert sweep.date == clock()

        bonus = income(date(2024, 3, 6), "100")
        await save_all(repository, bonus)
        assert await transfers.process_income_transfer(bonus) is None
        assert await transfers.check_and_record_month_end_balance("2024-02") is None
        assert len(await transfers.get_transfer_history()) == 1

    async def test_only_past_positive_months_recorded(self, repository, clock, invoices, investments):
        """Test the recording preconditions."""
        transfers = await self._service(repository, clock, invoices, investments)
        await save_all(repository, income(date(2024, 3, 1), "800"), expense(date(2024, 1, 3), "10"))

        assert await transfers.check_and_record_month_end_balance("2024-03") is None
        assert await transfers.check_and_record_month_end_balance("2024-01") is None

    async def test_no_reserve_no_record(self, repository, clock, invoices, investments):
        """Test that nothing is recorded without a coverage reserve."""
        transfers = await self._service(repository, clock, invoices, investments, reserve=False)
        await save_all(repository, income(date(2024, 2, 1), "800"))
        assert await transfers.check_and_record_month_end_balance("2024-02") is None

    async def test_skipped_months_are_merged(self, repository, clock, invoices, investments):
        """Test that an older pending surplus is kept when a newer month closes positive."""
        transfers = await self._service(repository, clock, invoices, investments)
        await save_all(repository, income(date(2024, 1, 1), "200"), income(date(2024, 2, 1), "500"))

        await transfers.check_and_record_month_end_balance("2024-01")
        merged = await transfers.check_and_record_month_end_balance("2024-02")

        assert merged.amount == Decimal("700")
        assert merged.source_months == ["2024-01", "2024-02"]
        assert await transfers.check_and_record_month_end_balance("2024-01") is None

    async def test_synthetic_income_does_not_sweep(self, repository, clock, invoices, investments):
        """Test that coverage income never triggers the sweep."""
        transfers = await self._service(repository, clock, invoices, investments)
        await save_all(repository, income(date(2024, 2, 1), "500"))
        await transfers.initialize_month_end_check()

        covering = income(date(2024, 3, 5), "100", origin=TransactionOrigin.COVERAGE)
        await save_all(repository, covering)

        assert await transfers.process_income_transfer(covering) is None
        assert (await transfers.get_pending_transfer()).amount == Decimal("500")

    async def test_income_of_the_pending_month_does_not_sweep(self, repository, clock, invoices, investments):
        """Test that only an income of a later month sweeps."""
        transfers = await self._service(repository, clock, invoices, investments)
        await save_all(repository, income(date(2024, 2, 1), "500"))
        await transfers.initialize_month_end_check()

        late = income(date(2024, 2, 20), "50")
        assert await transfers.process_income_transfer(late) is None
