"""Read-only aggregate queries against the transaction store.

Every query runs in a worker thread with its own session, so the dashboard
can fan calls out with ``asyncio.gather`` without sharing ORM state. Storage
failures and timeouts surface as :class:`DataUnavailable`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Callable, Iterable, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from database import SessionFactory, SessionLocal, read_session
from models import Budget, Category, FinancialGoal, Transaction
from periods import PeriodWindow, month_window

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNCATEGORIZED_NAME = "Uncategorized"


class DataUnavailable(RuntimeError):
    pass


class AmountSign(str, Enum):
    positive = "positive"
    negative = "negative"


class _Unset:
    pass


UNSET: Any = _Unset()


def to_amount(raw: object) -> float:
    if raw is None:
        return 0.0
    if isinstance(raw, Decimal):
        return float(raw)
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        return float(Decimal(raw.strip())) if raw.strip() else 0.0
    raise TypeError(f"Unsupported aggregate value: {raw!r}")


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CategorySpendRow:
    category_id: Optional[int]
    name: str
    icon_name: Optional[str]
    color_hex: Optional[str]
    amount: float
    transaction_count: int


@dataclass(frozen=True)
class TransactionRow:
    id: int
    date: date
    description: str
    amount: float
    category_name: Optional[str]
    category_icon: Optional[str]
    category_color: Optional[str]
    merchant_name: Optional[str]


@dataclass(frozen=True)
class BudgetLine:
    category_id: int
    category_name: str
    amount: float
    budget_month: date


@dataclass(frozen=True)
class GoalRow:
    id: int
    name: str
    target_amount: float
    current_amount: float
    target_date: Optional[date]
    status: str
    description: Optional[str]
    icon_name: Optional[str]


def _transaction_row(txn: Transaction) -> TransactionRow:
    category = txn.category
    return TransactionRow(
        id=txn.id,
        date=txn.date,
        description=txn.description,
        amount=to_amount(txn.amount),
        category_name=category.name if category else None,
        category_icon=category.icon_name if category else None,
        category_color=category.color_hex if category else None,
        merchant_name=txn.merchant.display_name if txn.merchant else None,
    )


class AggregationGateway:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self.session_factory = session_factory
        self.timeout = (
            timeout if timeout is not None else get_settings().query_timeout_secs
        )

    async def _call(self, name: str, fn: Callable[[Session], T]) -> T:
        def run() -> T:
            with read_session(self.session_factory) as session:
                return fn(session)

        try:
            return await asyncio.wait_for(asyncio.to_thread(run), self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(f"gateway_timeout: op={name} timeout={self.timeout}s")
            raise DataUnavailable(f"{name} timed out after {self.timeout}s") from exc
        except SQLAlchemyError as exc:
            logger.exception(f"gateway_failure: op={name}")
            raise DataUnavailable(f"{name} failed: storage unavailable") from exc

    @staticmethod
    def _scope(user_id: int, window: PeriodWindow) -> list[Any]:
        return [
            Transaction.user_id == user_id,
            Transaction.date.between(window.start, window.end),
        ]

    async def sum_amount(
        self,
        user_id: int,
        window: PeriodWindow,
        sign: AmountSign,
        *,
        category_id: Optional[int] = UNSET,
    ) -> float:
        def query(session: Session) -> float:
            stmt = select(func.sum(Transaction.amount)).where(
                *self._scope(user_id, window),
                Transaction.amount > 0
                if sign == AmountSign.positive
                else Transaction.amount < 0,
            )
            if category_id is None:
                stmt = stmt.where(Transaction.category_id.is_(None))
            elif category_id is not UNSET:
                stmt = stmt.where(Transaction.category_id == category_id)
            return to_amount(session.execute(stmt).scalar_one())

        return await self._call("sum_amount", query)

    async def group_spend_by_category(
        self, user_id: int, window: PeriodWindow
    ) -> list[CategorySpendRow]:
        def query(session: Session) -> list[CategorySpendRow]:
            stmt = (
                select(
                    Transaction.category_id,
                    Category.name,
                    Category.icon_name,
                    Category.color_hex,
                    func.sum(Transaction.amount).label("total"),
                    func.count(Transaction.id).label("txn_count"),
                )
                .outerjoin(Category, Category.id == Transaction.category_id)
                .where(*self._scope(user_id, window), Transaction.amount < 0)
                .group_by(
                    Transaction.category_id,
                    Category.name,
                    Category.icon_name,
                    Category.color_hex,
                )
            )
            return [
                CategorySpendRow(
                    category_id=row.category_id,
                    name=row.name or UNCATEGORIZED_NAME,
                    icon_name=row.icon_name,
                    color_hex=row.color_hex,
                    amount=abs(to_amount(row.total)),
                    transaction_count=int(row.txn_count or 0),
                )
                for row in session.execute(stmt)
            ]

        return await self._call("group_spend_by_category", query)

    async def spend_for_categories(
        self, user_id: int, window: PeriodWindow, category_ids: Iterable[int]
    ) -> dict[int, float]:
        ids = sorted(set(category_ids))

        def query(session: Session) -> dict[int, float]:
            if not ids:
                return {}
            stmt = (
                select(Transaction.category_id, func.sum(Transaction.amount))
                .where(
                    *self._scope(user_id, window),
                    Transaction.amount < 0,
                    Transaction.category_id.in_(ids),
                )
                .group_by(Transaction.category_id)
            )
            spent = {cid: 0.0 for cid in ids}
            for category_id, total in session.execute(stmt):
                spent[int(category_id)] = abs(to_amount(total))
            return spent

        return await self._call("spend_for_categories", query)

    async def recent_transactions(
        self, user_id: int, limit: int = 10
    ) -> list[TransactionRow]:
        def query(session: Session) -> list[TransactionRow]:
            stmt = (
                select(Transaction)
                .options(
                    joinedload(Transaction.category), joinedload(Transaction.merchant)
                )
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.date.desc(), Transaction.id.desc())
                .limit(limit)
            )
            return [_transaction_row(txn) for txn in session.scalars(stmt)]

        return await self._call("recent_transactions", query)

    async def transactions_in_window(
        self,
        user_id: int,
        window: PeriodWindow,
        *,
        category_id: Optional[int] = UNSET,
    ) -> list[TransactionRow]:
        def query(session: Session) -> list[TransactionRow]:
            stmt = (
                select(Transaction)
                .options(
                    joinedload(Transaction.category), joinedload(Transaction.merchant)
                )
                .where(*self._scope(user_id, window))
                .order_by(Transaction.date.desc(), Transaction.id.desc())
            )
            if category_id is None:
                stmt = stmt.where(Transaction.category_id.is_(None))
            elif category_id is not UNSET:
                stmt = stmt.where(Transaction.category_id == category_id)
            return [_transaction_row(txn) for txn in session.scalars(stmt)]

        return await self._call("transactions_in_window", query)

    async def budget_lines(self, user_id: int, month_anchor: date) -> list[BudgetLine]:
        month = month_window(month_anchor)

        def query(session: Session) -> list[BudgetLine]:
            stmt = (
                select(Budget)
                .options(joinedload(Budget.category))
                .where(
                    Budget.user_id == user_id,
                    Budget.budget_month.between(month.start, month.end),
                )
                .order_by(Budget.category_id.asc())
            )
            return [
                BudgetLine(
                    category_id=budget.category_id,
                    category_name=budget.category.name,
                    amount=to_amount(budget.amount),
                    budget_month=budget.budget_month,
                )
                for budget in session.scalars(stmt)
            ]

        return await self._call("budget_lines", query)

    async def sum_budget(self, user_id: int, month_anchor: date) -> float:
        month = month_window(month_anchor)

        def query(session: Session) -> float:
            stmt = select(func.sum(Budget.amount)).where(
                Budget.user_id == user_id,
                Budget.budget_month.between(month.start, month.end),
            )
            return to_amount(session.execute(stmt).scalar_one())

        return await self._call("sum_budget", query)

    async def goals(self, user_id: int) -> list[GoalRow]:
        def query(session: Session) -> list[GoalRow]:
            stmt = (
                select(FinancialGoal)
                .where(FinancialGoal.user_id == user_id)
                .order_by(FinancialGoal.created_at.desc(), FinancialGoal.id.desc())
            )
            return [
                GoalRow(
                    id=goal.id,
                    name=goal.name,
                    target_amount=to_amount(goal.target_amount),
                    current_amount=to_amount(goal.current_amount),
                    target_date=goal.target_date,
                    status=goal.status.value,
                    description=goal.description,
                    icon_name=goal.icon_name,
                )
                for goal in session.scalars(stmt)
            ]

        return await self._call("goals", query)
