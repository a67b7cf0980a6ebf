from typing import Optional, Sequence

from gateway import round_half_up
from schemas import (
    BudgetComparison,
    BudgetStatus,
    FinancialGoalOut,
    FinancialSummary,
    Insight,
    InsightSeverity,
    InsightType,
    SpendingByCategory,
    Trend,
)

SPIKE_THRESHOLD_PCT = 20
GOAL_NEAR_PCT = 80
HIGH_SAVINGS_RATE_PCT = 20


def _budget_exceeded(budgets: Sequence[BudgetComparison]) -> Optional[Insight]:
    over = [b for b in budgets if b.status == BudgetStatus.over]
    if not over:
        return None
    names = tuple(b.category_name for b in over)
    noun = "category" if len(over) == 1 else "categories"
    return Insight(
        id="budget_exceeded",
        type=InsightType.budget_warning,
        title="Budget Exceeded",
        description=(
            f"You've exceeded your budget in {len(over)} {noun}: {', '.join(names)}"
        ),
        severity=InsightSeverity.warning,
        actionable=True,
        metadata={"categories": names},
    )


def _spending_spike(spending: Sequence[SpendingByCategory]) -> Optional[Insight]:
    if not spending:
        return None
    top = spending[0]
    if top.trend != Trend.up or top.trend_percentage <= SPIKE_THRESHOLD_PCT:
        return None
    return Insight(
        id="spending_increase",
        type=InsightType.spending_alert,
        title="Spending Increase",
        description=(
            f"Your {top.category_name} spending increased by {top.trend_percentage}%"
        ),
        severity=InsightSeverity.info,
        actionable=True,
        metadata={"category": top.category_name, "increase": top.trend_percentage},
    )


def _goal_near_completion(goals: Sequence[FinancialGoalOut]) -> Optional[Insight]:
    goal = next(
        (g for g in goals if GOAL_NEAR_PCT <= g.percentage < 100),
        None,
    )
    if goal is None:
        return None
    return Insight(
        id="goal_progress",
        type=InsightType.goal_progress,
        title="Goal Almost Reached",
        description=f"You're {goal.percentage}% of the way to your {goal.name} goal!",
        severity=InsightSeverity.success,
        actionable=False,
        metadata={"goal_name": goal.name, "percentage": goal.percentage},
    )


def _high_savings_rate(summary: FinancialSummary) -> Optional[Insight]:
    if summary.savings <= 0 or summary.income <= 0:
        return None
    rate = summary.savings / summary.income * 100
    if rate <= HIGH_SAVINGS_RATE_PCT:
        return None
    rounded = round_half_up(rate)
    return Insight(
        id="savings_opportunity",
        type=InsightType.savings_opportunity,
        title="Great Savings Rate",
        description=f"You're saving {rounded}% of your income this period!",
        severity=InsightSeverity.success,
        actionable=False,
        metadata={"savings_rate": rounded},
    )


def generate_insights(
    summary: FinancialSummary,
    spending: Sequence[SpendingByCategory],
    budgets: Sequence[BudgetComparison],
    goals: Sequence[FinancialGoalOut],
) -> tuple[Insight, ...]:
    """Evaluate every rule in order; each contributes at most one insight."""
    candidates = (
        _budget_exceeded(budgets),
        _spending_spike(spending),
        _goal_near_completion(goals),
        _high_savings_rate(summary),
    )
    return tuple(insight for insight in candidates if insight is not None)
