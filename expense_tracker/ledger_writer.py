"""
Ledger writer: the only code path that touches ``accounts.balance_estimate``
after an account is created.

All functions run inside the caller's transaction (``engine.begin()``), so an
entry and its balance adjustment commit or roll back together. The balance is
changed with a single ``UPDATE ... SET balance_estimate = balance_estimate +
:delta`` so concurrent writers on the same account cannot lose an update.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog
from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.engine import Connection, RowMapping

from expense_tracker.config import DEFAULT_CATEGORY_NAME
from expense_tracker.database import accounts, categories, transactions, utcnow
from expense_tracker.errors import ConfigurationError, NotFoundError
from expense_tracker.schemas import TransactionResponse, TransactionType

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def quantize_amount(amount: Decimal) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def signed_effect(amount: Decimal, txn_type: str) -> Decimal:
    """Balance effect of an entry: debits subtract, credits add."""
    value = quantize_amount(amount)
    if txn_type.strip().upper() == TransactionType.DEBIT:
        return -value
    return value


def to_transaction_response(row: RowMapping, category_name: Optional[str]) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        category_id=row["category_id"],
        category_name=category_name,
        merchant=row["merchant"],
        amount=row["amount"],
        currency=row["currency"],
        type=row["type"],
        source=row["source"],
        txn_date=row["txn_date"],
    )


def find_default_category(conn: Connection) -> Optional[RowMapping]:
    return conn.execute(
        select(categories.c.id, categories.c.name)
        .where(categories.c.user_id.is_(None), categories.c.name == DEFAULT_CATEGORY_NAME)
        .order_by(categories.c.id.asc())
        .limit(1)
    ).mappings().first()


def resolve_category(conn: Connection, user_id: int, category_id: Optional[int]) -> RowMapping:
    """
    Return the category an entry should be filed under.

    An explicit id must name a global category or one owned by ``user_id``.
    Without one, the global default category is used; its absence means the
    deployment was never bootstrapped and is raised as a configuration error.
    """
    if category_id is not None:
        row = conn.execute(
            select(categories.c.id, categories.c.name).where(
                categories.c.id == category_id,
                or_(categories.c.user_id.is_(None), categories.c.user_id == user_id),
            )
        ).mappings().first()
        if not row:
            raise NotFoundError("Category not found.")
        return row

    row = find_default_category(conn)
    if not row:
        logger.error("default_category_missing", name=DEFAULT_CATEGORY_NAME)
        raise ConfigurationError(f"Default category '{DEFAULT_CATEGORY_NAME}' is missing.")
    return row


def apply_balance_delta(conn: Connection, user_id: int, account_id: int, delta: Decimal) -> None:
    result = conn.execute(
        update(accounts)
        .where(accounts.c.id == account_id, accounts.c.user_id == user_id)
        .values(balance_estimate=func.coalesce(accounts.c.balance_estimate, 0) + delta)
    )
    if result.rowcount == 0:
        raise NotFoundError("Account not found.")


def write_ledger_entry(
    conn: Connection,
    *,
    user_id: int,
    account_id: Optional[int],
    category_id: Optional[int],
    amount: Decimal,
    currency: str,
    txn_type: str,
    source: Optional[str],
    merchant: Optional[str],
) -> TransactionResponse:
    """Insert a ledger entry and apply its effect to the account, if any."""
    txn_type = TransactionType.validate(txn_type)
    amount = quantize_amount(amount)
    category = resolve_category(conn, user_id, category_id)

    row = conn.execute(
        insert(transactions)
        .values(
            user_id=user_id,
            account_id=account_id,
            category_id=category["id"],
            merchant=merchant,
            amount=amount,
            currency=currency,
            type=txn_type,
            source=source,
            txn_date=utcnow(),
        )
        .returning(transactions)
    ).mappings().one()

    if account_id is not None:
        apply_balance_delta(conn, user_id, account_id, signed_effect(amount, txn_type))

    logger.info(
        "ledger_entry_written",
        user_id=user_id,
        transaction_id=row["id"],
        account_id=account_id,
        category_id=category["id"],
        type=txn_type,
        amount=amount,
        source=source,
    )
    return to_transaction_response(row, category["name"])


def reverse_ledger_entry(conn: Connection, user_id: int, entry: RowMapping) -> None:
    """Undo ``entry``'s effect on its account. The entry row itself is untouched."""
    if entry["account_id"] is None:
        return
    delta = -signed_effect(entry["amount"], entry["type"])
    apply_balance_delta(conn, user_id, entry["account_id"], delta)
    logger.info(
        "ledger_entry_reversed",
        user_id=user_id,
        transaction_id=entry["id"],
        account_id=entry["account_id"],
        delta=delta,
    )
