from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.orm import Session, sessionmaker

from database import Base, create_db_engine, make_session_factory
from models import Budget, Category, FinancialGoal, Merchant, Transaction

# 2026-03-15 12:00 in the configured zone
FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=ZoneInfo("Europe/Berlin"))


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker[Session]:
    # file-backed so gateway worker threads see the same data
    engine = create_db_engine(f"sqlite:///{tmp_path / 'dashboard.db'}")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


class Seeder:
    def __init__(self, session: Session, user_id: int = 1) -> None:
        self.session = session
        self.user_id = user_id

    def category(self, name: str, icon: Optional[str] = None) -> Category:
        category = Category(name=name, icon_name=icon, color_hex="#336699")
        self.session.add(category)
        self.session.commit()
        return category

    def merchant(self, name: str) -> Merchant:
        merchant = Merchant(display_name=name)
        self.session.add(merchant)
        self.session.commit()
        return merchant

    def txn(
        self,
        on: date,
        amount: str,
        category: Optional[Category] = None,
        *,
        description: str = "Card payment",
        merchant: Optional[Merchant] = None,
        user_id: Optional[int] = None,
    ) -> Transaction:
        txn = Transaction(
            user_id=user_id or self.user_id,
            date=on,
            amount=Decimal(amount),
            description=description,
            category_id=category.id if category else None,
            merchant_id=merchant.id if merchant else None,
        )
        self.session.add(txn)
        self.session.commit()
        return txn

    def budget(self, category: Category, month: date, amount: str) -> Budget:
        budget = Budget(
            user_id=self.user_id,
            category_id=category.id,
            budget_month=month,
            amount=Decimal(amount),
        )
        self.session.add(budget)
        self.session.commit()
        return budget

    def goal(
        self, name: str, current: str, target: str, created_at: datetime
    ) -> FinancialGoal:
        goal = FinancialGoal(
            user_id=self.user_id,
            name=name,
            current_amount=Decimal(current),
            target_amount=Decimal(target),
            created_at=created_at,
            updated_at=created_at,
        )
        self.session.add(goal)
        self.session.commit()
        return goal


@pytest.fixture
def seed(session_factory) -> Seeder:
    session = session_factory()
    yield Seeder(session)
    session.close()
