from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from models import GoalStatus, TransactionType
from periods import PeriodSelector


class Trend(str, Enum):
    up = "up"
    down = "down"
    stable = "stable"


class BudgetStatus(str, Enum):
    under = "under"
    on_track = "on_track"
    over = "over"


class InsightType(str, Enum):
    spending_alert = "spending_alert"
    budget_warning = "budget_warning"
    goal_progress = "goal_progress"
    savings_opportunity = "savings_opportunity"


class InsightSeverity(str, Enum):
    info = "info"
    warning = "warning"
    success = "success"
    error = "error"


class DashboardModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class FinancialSummary(DashboardModel):
    income: float
    expenses: float = Field(..., ge=0)
    savings: float
    budget: float
    period: PeriodSelector


class SpendingByCategory(DashboardModel):
    # None is the uncategorized bucket
    category_id: Optional[int]
    category_name: str
    category_icon: Optional[str] = None
    category_color: Optional[str] = None
    amount: float
    percentage: float
    transaction_count: int
    trend: Trend
    trend_percentage: int


class RecentTransaction(DashboardModel):
    id: int
    date: date
    description: str
    amount: float
    type: Optional[TransactionType] = None
    category_name: Optional[str] = None
    category_icon: Optional[str] = None
    category_color: Optional[str] = None
    merchant_name: Optional[str] = None


class BudgetComparison(DashboardModel):
    category_id: int
    category_name: str
    budget_amount: float
    actual_amount: float
    percentage: int
    status: BudgetStatus
    remaining_amount: float


class FinancialGoalOut(DashboardModel):
    id: int
    name: str
    target_amount: float
    current_amount: float
    percentage: int
    target_date: Optional[date] = None
    status: GoalStatus
    description: Optional[str] = None
    icon_name: Optional[str] = None


class Insight(DashboardModel):
    id: str
    type: InsightType
    title: str
    description: str
    severity: InsightSeverity
    actionable: bool
    metadata: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("metadata")
    @classmethod
    def _freeze_metadata(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        # read-only view; list values become tuples
        return MappingProxyType(
            {k: tuple(v) if isinstance(v, list) else v for k, v in value.items()}
        )

    @field_serializer("metadata")
    def _dump_metadata(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return dict(value)


class DashboardSnapshot(DashboardModel):
    summary: FinancialSummary
    spending_by_category: tuple[SpendingByCategory, ...]
    recent_transactions: tuple[RecentTransaction, ...]
    budget_comparisons: tuple[BudgetComparison, ...]
    financial_goals: tuple[FinancialGoalOut, ...]
    insights: tuple[Insight, ...]
    last_updated: datetime


class SpendingTrendPoint(DashboardModel):
    month: str
    total_spending: float
    category_breakdown: tuple[SpendingByCategory, ...]
