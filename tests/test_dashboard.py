import asyncio
import time
from datetime import date, datetime

import pytest
import sqlalchemy as sa

from conftest import FIXED_NOW, fixed_clock
from database import create_db_engine, make_session_factory
from gateway import AggregationGateway, AmountSign, DataUnavailable
from models import TransactionType
from periods import PeriodSelector, PeriodWindow
from schemas import BudgetStatus, InsightType, Trend
from services import BudgetComparisonService, DashboardService, SummaryService


def make_service(session_factory, **kwargs) -> DashboardService:
    gateway = AggregationGateway(session_factory, timeout=5)
    return DashboardService(gateway, clock=fixed_clock, **kwargs)


def test_summary_income_expenses_savings(session_factory, seed) -> None:
    salary = seed.category("Salary")
    rent = seed.category("Rent")
    seed.txn(date(2026, 3, 1), "3500.00", salary)
    seed.txn(date(2026, 3, 3), "-1000.00", rent)
    seed.txn(date(2026, 3, 20), "-200.00")
    # outside the window
    seed.txn(date(2026, 2, 27), "-999.00", rent)
    seed.txn(date(2026, 3, 5), "-50.00", rent, user_id=2)

    snapshot = asyncio.run(
        make_service(session_factory).get_dashboard_data(1, PeriodSelector.current_month)
    )

    summary = snapshot.summary
    assert summary.income == pytest.approx(3500)
    assert summary.expenses == pytest.approx(1200)
    assert summary.savings == pytest.approx(2300)
    assert summary.savings == pytest.approx(summary.income - summary.expenses, abs=1e-6)
    assert summary.period == PeriodSelector.current_month


def test_empty_dataset_yields_zero_snapshot(session_factory) -> None:
    snapshot = asyncio.run(make_service(session_factory).get_dashboard_data(1))

    assert snapshot.summary.income == 0
    assert snapshot.summary.expenses == 0
    assert snapshot.summary.savings == 0
    assert snapshot.summary.budget == 0
    assert snapshot.spending_by_category == ()
    assert snapshot.recent_transactions == ()
    assert snapshot.budget_comparisons == ()
    assert snapshot.financial_goals == ()
    assert snapshot.insights == ()
    assert snapshot.last_updated == FIXED_NOW


def test_category_spend_trend_against_previous_window(session_factory, seed) -> None:
    groceries = seed.category("Groceries", icon="cart")
    dining = seed.category("Dining")
    # previous window for March is Jan 29 - Feb 28
    seed.txn(date(2026, 2, 10), "-100.00", groceries)
    seed.txn(date(2026, 1, 28), "-500.00", groceries)
    seed.txn(date(2026, 3, 2), "-80.00", groceries)
    seed.txn(date(2026, 3, 9), "-50.00", groceries)
    seed.txn(date(2026, 3, 10), "-30.00", dining)
    seed.txn(date(2026, 3, 11), "-20.00")
    seed.txn(date(2026, 3, 12), "400.00", dining)

    snapshot = asyncio.run(make_service(session_factory).get_dashboard_data(1))
    spending = snapshot.spending_by_category

    assert [s.category_name for s in spending] == ["Groceries", "Dining", "Uncategorized"]
    top = spending[0]
    assert top.amount == pytest.approx(130)
    assert top.transaction_count == 2
    assert top.trend == Trend.up
    assert top.trend_percentage == 30
    assert top.category_icon == "cart"
    assert spending[1].trend == Trend.up
    assert spending[1].trend_percentage == 100
    assert spending[2].category_id is None
    assert sum(s.percentage for s in spending) == pytest.approx(100)
    assert InsightType.spending_alert in [i.type for i in snapshot.insights]


def test_budget_over_scenario(session_factory, seed) -> None:
    groceries = seed.category("Groceries")
    fuel = seed.category("Fuel")
    dining = seed.category("Dining")
    seed.budget(groceries, date(2026, 3, 1), "500.00")
    seed.budget(fuel, date(2026, 3, 1), "100.00")
    seed.budget(dining, date(2026, 3, 1), "0")
    seed.budget(groceries, date(2026, 2, 1), "9999.00")
    seed.txn(date(2026, 3, 4), "-300.00", groceries)
    seed.txn(date(2026, 3, 18), "-250.00", groceries)
    seed.txn(date(2026, 3, 6), "-90.00", fuel)
    seed.txn(date(2026, 3, 7), "-15.00", dining)

    snapshot = asyncio.run(make_service(session_factory).get_dashboard_data(1))
    comparisons = snapshot.budget_comparisons

    assert [c.category_name for c in comparisons] == ["Groceries", "Fuel", "Dining"]
    groceries_cmp = comparisons[0]
    assert groceries_cmp.percentage == 110
    assert groceries_cmp.status == BudgetStatus.over
    assert groceries_cmp.remaining_amount == pytest.approx(-50)
    assert comparisons[1].status == BudgetStatus.on_track
    assert comparisons[2].percentage == 0
    assert comparisons[2].status == BudgetStatus.under
    assert snapshot.summary.budget == pytest.approx(600)

    budget_insight = snapshot.insights[0]
    assert budget_insight.type == InsightType.budget_warning
    assert budget_insight.metadata == {"categories": ("Groceries",)}


def test_batched_budget_actuals_match_fan_out(session_factory, seed) -> None:
    groceries = seed.category("Groceries")
    fuel = seed.category("Fuel")
    seed.budget(groceries, date(2026, 3, 1), "200.00")
    seed.budget(fuel, date(2026, 3, 1), "80.00")
    seed.txn(date(2026, 3, 4), "-170.00", groceries)
    seed.txn(date(2026, 3, 5), "25.00", groceries)

    gateway = AggregationGateway(session_factory, timeout=5)
    window = PeriodWindow(date(2026, 3, 1), date(2026, 3, 31))
    fan_out = asyncio.run(
        BudgetComparisonService(gateway).compute_budget_comparisons(1, window)
    )
    batched = asyncio.run(
        BudgetComparisonService(gateway, batched=True).compute_budget_comparisons(
            1, window
        )
    )

    assert fan_out == batched
    assert fan_out[0].category_name == "Groceries"
    assert fan_out[0].percentage == 85
    assert fan_out[1].actual_amount == 0


def test_last_30_days_budget_pinned_to_start_month(session_factory, seed) -> None:
    groceries = seed.category("Groceries")
    seed.budget(groceries, date(2026, 2, 1), "400.00")
    seed.budget(groceries, date(2026, 3, 1), "700.00")

    gateway = AggregationGateway(session_factory, timeout=5)
    window = PeriodWindow(date(2026, 2, 13), date(2026, 3, 15))
    summary = asyncio.run(
        SummaryService(gateway).compute_summary(1, window, PeriodSelector.last_30_days)
    )

    assert summary.budget == pytest.approx(400)


def test_goals_and_goal_insight(session_factory, seed) -> None:
    seed.goal("Vacation", "50", "100", datetime(2026, 1, 5))
    seed.goal("Emergency fund", "85", "100", datetime(2026, 2, 5))
    seed.goal("Car", "0", "0", datetime(2026, 3, 1))

    snapshot = asyncio.run(make_service(session_factory).get_dashboard_data(1))

    assert [g.name for g in snapshot.financial_goals] == [
        "Car",
        "Emergency fund",
        "Vacation",
    ]
    assert [g.percentage for g in snapshot.financial_goals] == [0, 85, 50]
    goal_insights = [
        i for i in snapshot.insights if i.type == InsightType.goal_progress
    ]
    assert len(goal_insights) == 1
    assert goal_insights[0].metadata["goal_name"] == "Emergency fund"


def test_recent_transactions_are_capped_and_newest_first(session_factory, seed) -> None:
    shop = seed.category("Shopping")
    store = seed.merchant("Corner Store")
    for day in range(1, 13):
        seed.txn(date(2025, 12, day), f"-{day}.00", shop, merchant=store)

    snapshot = asyncio.run(make_service(session_factory).get_dashboard_data(1))
    recent = snapshot.recent_transactions

    assert len(recent) == 10
    assert recent[0].date == date(2025, 12, 12)
    assert [r.date for r in recent] == sorted((r.date for r in recent), reverse=True)
    assert recent[0].merchant_name == "Corner Store"
    assert recent[0].category_name == "Shopping"
    assert recent[0].type.value == "expense"


def test_dashboard_is_idempotent_for_unchanged_data(session_factory, seed) -> None:
    groceries = seed.category("Groceries")
    seed.budget(groceries, date(2026, 3, 1), "300.00")
    seed.txn(date(2026, 3, 1), "2000.00")
    seed.txn(date(2026, 3, 2), "-120.00", groceries)
    service = make_service(session_factory)

    first = asyncio.run(service.get_dashboard_data(1))
    second = asyncio.run(service.get_dashboard_data(1))

    assert first.summary == second.summary
    assert first.spending_by_category == second.spending_by_category
    assert first.budget_comparisons == second.budget_comparisons


def test_transactions_by_category_in_window(session_factory, seed) -> None:
    groceries = seed.category("Groceries")
    seed.txn(date(2026, 3, 2), "-10.00", groceries, description="Bread")
    seed.txn(date(2026, 3, 9), "-20.00", groceries, description="Milk")
    seed.txn(date(2026, 2, 9), "-30.00", groceries, description="Old")
    seed.txn(date(2026, 3, 9), "-5.00", description="Unknown")

    service = make_service(session_factory)
    items = asyncio.run(service.get_transactions_by_category(1, groceries.id))
    uncategorized = asyncio.run(service.get_transactions_by_category(1, None))

    assert [i.description for i in items] == ["Milk", "Bread"]
    assert [i.description for i in uncategorized] == ["Unknown"]


def test_spending_trends_oldest_to_newest(session_factory, seed) -> None:
    groceries = seed.category("Groceries")
    seed.txn(date(2026, 1, 10), "-100.00", groceries)
    seed.txn(date(2026, 3, 10), "-40.00", groceries)
    seed.txn(date(2026, 3, 11), "-10.00")

    trends = asyncio.run(make_service(session_factory).get_spending_trends(1, 3))

    assert [t.month for t in trends] == ["2026-01", "2026-02", "2026-03"]
    assert [t.total_spending for t in trends] == pytest.approx([100, 0, 50])
    assert trends[1].category_breakdown == ()
    assert asyncio.run(make_service(session_factory).get_spending_trends(1, 0)) == ()


def test_storage_failure_surfaces_as_data_unavailable(tmp_path) -> None:
    # no tables created
    engine = create_db_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    service = make_service(make_session_factory(engine))

    with pytest.raises(DataUnavailable):
        asyncio.run(service.get_dashboard_data(1))


def test_gateway_timeout_surfaces_as_data_unavailable(session_factory) -> None:
    def slow_factory():
        time.sleep(0.3)
        return session_factory()

    gateway = AggregationGateway(slow_factory, timeout=0.01)
    window = PeriodWindow(date(2026, 3, 1), date(2026, 3, 31))

    with pytest.raises(DataUnavailable):
        asyncio.run(gateway.sum_amount(1, window, AmountSign.positive))


def test_null_aggregates_are_zero(session_factory) -> None:
    gateway = AggregationGateway(session_factory, timeout=5)
    window = PeriodWindow(date(2026, 3, 1), date(2026, 3, 31))

    assert asyncio.run(gateway.sum_amount(1, window, AmountSign.negative)) == 0.0
    assert asyncio.run(gateway.sum_budget(1, date(2026, 3, 1))) == 0.0

    with session_factory() as session:
        assert session.scalar(sa.text("SELECT count(*) FROM transactions")) == 0


def test_snapshot_insight_metadata_cannot_be_changed(session_factory, seed) -> None:
    groceries = seed.category("Groceries")
    seed.budget(groceries, date(2026, 3, 1), "100.00")
    seed.txn(date(2026, 3, 4), "-150.00", groceries)

    snapshot = asyncio.run(make_service(session_factory).get_dashboard_data(1))
    metadata = snapshot.insights[0].metadata

    with pytest.raises(AttributeError):
        metadata["categories"].append("Injected")
    with pytest.raises(TypeError):
        metadata["extra"] = 1
    assert metadata == {"categories": ("Groceries",)}


def test_last_30_days_budget_comparisons_use_start_month(session_factory, seed) -> None:
    groceries = seed.category("Groceries")
    fuel = seed.category("Fuel")
    seed.budget(groceries, date(2026, 2, 1), "400.00")
    seed.budget(groceries, date(2026, 3, 1), "700.00")
    seed.budget(fuel, date(2026, 3, 1), "90.00")
    seed.txn(date(2026, 2, 14), "-120.00", groceries)
    seed.txn(date(2026, 3, 10), "-200.00", groceries)
    # before the window
    seed.txn(date(2026, 2, 12), "-999.00", groceries)

    gateway = AggregationGateway(session_factory, timeout=5)
    window = PeriodWindow(date(2026, 2, 13), date(2026, 3, 15))
    comparisons = asyncio.run(
        BudgetComparisonService(gateway).compute_budget_comparisons(1, window)
    )

    assert [c.category_name for c in comparisons] == ["Groceries"]
    assert comparisons[0].budget_amount == pytest.approx(400)
    assert comparisons[0].actual_amount == pytest.approx(320)
    assert comparisons[0].percentage == 80


class GoalsDownGateway(AggregationGateway):
    async def goals(self, user_id: int):
        raise DataUnavailable("goals: storage offline")


def test_single_failed_fetch_fails_whole_dashboard(session_factory, seed) -> None:
    seed.txn(date(2026, 3, 1), "3500.00")
    service = DashboardService(
        GoalsDownGateway(session_factory, timeout=5), clock=fixed_clock
    )

    with pytest.raises(DataUnavailable, match="goals"):
        asyncio.run(service.get_dashboard_data(1))


def test_zero_amount_transaction_has_no_type(session_factory, seed) -> None:
    seed.txn(date(2026, 3, 2), "-5.00", description="Coffee")
    seed.txn(date(2026, 3, 3), "0.00", description="Card check")
    seed.txn(date(2026, 3, 4), "20.00", description="Refund")

    snapshot = asyncio.run(make_service(session_factory).get_dashboard_data(1))

    assert [(t.description, t.type) for t in snapshot.recent_transactions] == [
        ("Refund", TransactionType.income),
        ("Card check", None),
        ("Coffee", TransactionType.expense),
    ]
