import os
import tempfile
import unittest
from decimal import Decimal

from sqlalchemy import func, insert, select

from expense_tracker.auth import AuthContext
from expense_tracker.database import (
    accounts,
    build_engine,
    categories,
    init_db,
    proposals,
    transactions,
    users,
)


class DatabaseTestCase(unittest.TestCase):
    """Gives each test a fresh SQLite file so threads can share it."""

    seed_default_category = True

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self._tmpdir.name, "ledger.db")
        self.engine = build_engine(f"sqlite:///{path}")
        init_db(self.engine, seed_default_category=self.seed_default_category)

    def tearDown(self) -> None:
        self.engine.dispose()
        self._tmpdir.cleanup()

    def create_user(self, email: str = "owner@example.com") -> AuthContext:
        with self.engine.begin() as conn:
            user_id = conn.execute(
                insert(users)
                .values(email=email, hashed_password="not-a-real-hash")
                .returning(users.c.id)
            ).scalar_one()
        return AuthContext(user_id=user_id)

    def create_account(
        self,
        auth: AuthContext,
        name: str = "Card",
        last4: str | None = None,
        balance: Decimal = Decimal("0"),
    ) -> int:
        with self.engine.begin() as conn:
            return conn.execute(
                insert(accounts)
                .values(user_id=auth.user_id, name=name, type="CARD", last4=last4, balance_estimate=balance)
                .returning(accounts.c.id)
            ).scalar_one()

    def create_category(self, auth: AuthContext | None, name: str) -> int:
        with self.engine.begin() as conn:
            return conn.execute(
                insert(categories)
                .values(user_id=auth.user_id if auth else None, name=name)
                .returning(categories.c.id)
            ).scalar_one()

    def account_balance(self, account_id: int) -> Decimal:
        with self.engine.begin() as conn:
            return conn.execute(
                select(accounts.c.balance_estimate).where(accounts.c.id == account_id)
            ).scalar_one()

    def proposal_row(self, proposal_id: int):
        with self.engine.begin() as conn:
            return conn.execute(
                select(proposals).where(proposals.c.id == proposal_id)
            ).mappings().one()

    def entry_count(self, auth: AuthContext) -> int:
        with self.engine.begin() as conn:
            return conn.execute(
                select(func.count())
                .select_from(transactions)
                .where(transactions.c.user_id == auth.user_id)
            ).scalar_one()
