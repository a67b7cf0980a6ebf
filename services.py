from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence

from config import get_settings
from gateway import (
    AggregationGateway,
    AmountSign,
    BudgetLine,
    CategorySpendRow,
    DataUnavailable,
    GoalRow,
    TransactionRow,
    round_half_up,
)
from insights import generate_insights
from models import GoalStatus, TransactionType
from periods import (
    PeriodSelector,
    PeriodWindow,
    add_months,
    local_now,
    month_window,
    previous_window,
    resolve_period,
)
from schemas import (
    BudgetComparison,
    BudgetStatus,
    DashboardSnapshot,
    FinancialGoalOut,
    FinancialSummary,
    RecentTransaction,
    SpendingByCategory,
    SpendingTrendPoint,
    Trend,
)

logger = logging.getLogger(__name__)

TREND_THRESHOLD_PCT = 5
ON_TRACK_THRESHOLD_PCT = 80


def get_current_user_id() -> int:
    return 1


async def gather_all(*aws: Awaitable[Any]) -> list[Any]:
    """Await all awaitables; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def classify_trend(amount: float, previous_amount: float) -> tuple[Trend, int]:
    if previous_amount > 0:
        change = (amount - previous_amount) / previous_amount * 100
        if change > TREND_THRESHOLD_PCT:
            trend = Trend.up
        elif change < -TREND_THRESHOLD_PCT:
            trend = Trend.down
        else:
            trend = Trend.stable
        return trend, round_half_up(abs(change))
    if amount > 0:
        return Trend.up, 100
    return Trend.stable, 0


def classify_budget_status(percentage: float) -> BudgetStatus:
    if percentage > 100:
        return BudgetStatus.over
    if percentage > ON_TRACK_THRESHOLD_PCT:
        return BudgetStatus.on_track
    return BudgetStatus.under


def budget_percentage(actual: float, budget: float) -> int:
    if budget <= 0:
        return 0
    return round_half_up(actual / budget * 100)


def build_category_spend(
    current: Sequence[CategorySpendRow], previous: Sequence[CategorySpendRow]
) -> tuple[SpendingByCategory, ...]:
    total = sum(row.amount for row in current)
    previous_by_category = {row.category_id: row.amount for row in previous}

    items = []
    for row in current:
        trend, trend_pct = classify_trend(
            row.amount, previous_by_category.get(row.category_id, 0.0)
        )
        items.append(
            SpendingByCategory(
                category_id=row.category_id,
                category_name=row.name,
                category_icon=row.icon_name,
                category_color=row.color_hex,
                amount=row.amount,
                percentage=(row.amount / total * 100) if total else 0,
                transaction_count=row.transaction_count,
                trend=trend,
                trend_percentage=trend_pct,
            )
        )
    # uncategorized sorts after named categories of equal spend
    items.sort(
        key=lambda i: (
            -i.amount,
            i.category_id is None,
            i.category_name,
            i.category_id or 0,
        )
    )
    return tuple(items)


def compare_budget(line: BudgetLine, actual: float) -> BudgetComparison:
    percentage = budget_percentage(actual, line.amount)
    return BudgetComparison(
        category_id=line.category_id,
        category_name=line.category_name,
        budget_amount=line.amount,
        actual_amount=actual,
        percentage=percentage,
        status=classify_budget_status(percentage),
        remaining_amount=line.amount - actual,
    )


def transaction_type(amount: float) -> Optional[TransactionType]:
    # same sign rule as the income and expense sums; zero counts as neither
    if amount > 0:
        return TransactionType.income
    if amount < 0:
        return TransactionType.expense
    return None


def recent_transaction(row: TransactionRow) -> RecentTransaction:
    return RecentTransaction(
        id=row.id,
        date=row.date,
        description=row.description,
        amount=row.amount,
        type=transaction_type(row.amount),
        category_name=row.category_name,
        category_icon=row.category_icon,
        category_color=row.category_color,
        merchant_name=row.merchant_name,
    )


def goal_out(row: GoalRow) -> FinancialGoalOut:
    percentage = (
        round_half_up(row.current_amount / row.target_amount * 100)
        if row.target_amount > 0
        else 0
    )
    return FinancialGoalOut(
        id=row.id,
        name=row.name,
        target_amount=row.target_amount,
        current_amount=row.current_amount,
        percentage=percentage,
        target_date=row.target_date,
        status=GoalStatus(row.status),
        description=row.description,
        icon_name=row.icon_name,
    )


class SummaryService:
    def __init__(self, gateway: AggregationGateway) -> None:
        self.gateway = gateway

    async def compute_summary(
        self, user_id: int, window: PeriodWindow, period: PeriodSelector
    ) -> FinancialSummary:
        # last_30_days uses the budget of the month containing window.start
        income, expense_sum, budget = await gather_all(
            self.gateway.sum_amount(user_id, window, AmountSign.positive),
            self.gateway.sum_amount(user_id, window, AmountSign.negative),
            self.gateway.sum_budget(user_id, window.anchor_month),
        )
        expenses = abs(expense_sum)
        return FinancialSummary(
            income=income,
            expenses=expenses,
            savings=income - expenses,
            budget=budget,
            period=period,
        )


class CategorySpendService:
    def __init__(self, gateway: AggregationGateway) -> None:
        self.gateway = gateway

    async def compute_category_spend(
        self, user_id: int, window: PeriodWindow
    ) -> tuple[SpendingByCategory, ...]:
        current, previous = await gather_all(
            self.gateway.group_spend_by_category(user_id, window),
            self.gateway.group_spend_by_category(user_id, previous_window(window)),
        )
        return build_category_spend(current, previous)


class BudgetComparisonService:
    def __init__(self, gateway: AggregationGateway, *, batched: bool = False) -> None:
        self.gateway = gateway
        self.batched = batched

    async def _actuals(
        self, user_id: int, window: PeriodWindow, lines: Sequence[BudgetLine]
    ) -> list[float]:
        if self.batched:
            spent = await self.gateway.spend_for_categories(
                user_id, window, [line.category_id for line in lines]
            )
            return [spent.get(line.category_id, 0.0) for line in lines]
        sums = await gather_all(
            *(
                self.gateway.sum_amount(
                    user_id, window, AmountSign.negative, category_id=line.category_id
                )
                for line in lines
            )
        )
        return [abs(total) for total in sums]

    async def compute_budget_comparisons(
        self, user_id: int, window: PeriodWindow
    ) -> tuple[BudgetComparison, ...]:
        lines = await self.gateway.budget_lines(user_id, window.anchor_month)
        actuals = await self._actuals(user_id, window, lines)
        comparisons = [
            compare_budget(line, actual) for line, actual in zip(lines, actuals)
        ]
        comparisons.sort(key=lambda c: (-c.percentage, c.category_name, c.category_id))
        return tuple(comparisons)


class GoalService:
    def __init__(self, gateway: AggregationGateway) -> None:
        self.gateway = gateway

    async def list_goals(self, user_id: int) -> tuple[FinancialGoalOut, ...]:
        rows = await self.gateway.goals(user_id)
        return tuple(goal_out(row) for row in rows)


class DashboardService:
    def __init__(
        self,
        gateway: Optional[AggregationGateway] = None,
        *,
        recent_limit: Optional[int] = None,
        trends_months: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        batched_budgets: bool = False,
    ) -> None:
        settings = get_settings()
        self.gateway = gateway or AggregationGateway()
        self.recent_limit = recent_limit or settings.recent_limit
        self.trends_months = trends_months or settings.trends_months
        self.clock = clock or local_now
        self.summaries = SummaryService(self.gateway)
        self.categories = CategorySpendService(self.gateway)
        self.budgets = BudgetComparisonService(
            self.gateway, batched=batched_budgets
        )
        self.goals = GoalService(self.gateway)

    async def recent_transactions(self, user_id: int) -> tuple[RecentTransaction, ...]:
        rows = await self.gateway.recent_transactions(user_id, self.recent_limit)
        return tuple(recent_transaction(row) for row in rows)

    async def get_dashboard_data(
        self, user_id: int, period: PeriodSelector = PeriodSelector.current_month
    ) -> DashboardSnapshot:
        started = time.perf_counter()
        window = resolve_period(period, today=self.clock().date())
        try:
            summary, spending, recent, budgets, goals = await gather_all(
                self.summaries.compute_summary(user_id, window, period),
                self.categories.compute_category_spend(user_id, window),
                self.recent_transactions(user_id),
                self.budgets.compute_budget_comparisons(user_id, window),
                self.goals.list_goals(user_id),
            )
        except DataUnavailable as exc:
            logger.warning(
                f"dashboard_failed: user_id={user_id} period={period.value} error={exc}"
            )
            raise

        insights = generate_insights(summary, spending, budgets, goals)
        snapshot = DashboardSnapshot(
            summary=summary,
            spending_by_category=spending,
            recent_transactions=recent,
            budget_comparisons=budgets,
            financial_goals=goals,
            insights=insights,
            last_updated=self.clock(),
        )
        duration = time.perf_counter() - started
        logger.info(
            f"dashboard_built: user_id={user_id} period={period.value} "
            f"window={window.start}..{window.end} categories={len(spending)} "
            f"budgets={len(budgets)} insights={len(insights)} "
            f"duration={duration:.3f}s"
        )
        return snapshot

    async def get_transactions_by_category(
        self,
        user_id: int,
        category_id: Optional[int],
        period: PeriodSelector = PeriodSelector.current_month,
    ) -> tuple[RecentTransaction, ...]:
        window = resolve_period(period, today=self.clock().date())
        rows = await self.gateway.transactions_in_window(
            user_id, window, category_id=category_id
        )
        return tuple(recent_transaction(row) for row in rows)

    async def get_spending_trends(
        self, user_id: int, months: Optional[int] = None
    ) -> tuple[SpendingTrendPoint, ...]:
        months = self.trends_months if months is None else months
        if months <= 0:
            return ()
        current = self.clock().date().replace(day=1)
        anchors = [add_months(current, -offset) for offset in range(months - 1, -1, -1)]
        breakdowns = await gather_all(
            *(
                self.categories.compute_category_spend(user_id, month_window(anchor))
                for anchor in anchors
            )
        )
        logger.info(f"spending_trends: user_id={user_id} months={months}")
        return tuple(
            SpendingTrendPoint(
                month=anchor.strftime("%Y-%m"),
                total_spending=sum(item.amount for item in breakdown),
                category_breakdown=breakdown,
            )
            for anchor, breakdown in zip(anchors, breakdowns)
        )
