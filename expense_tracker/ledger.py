"""
Direct ledger operations: manual entry, lookup, paginated listing and
corrective edits.

Corrections keep the balance estimate honest by reversing the stored entry's
effect before applying the new one, all in one transaction.
"""

import math
from typing import Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.engine import Connection, Engine, RowMapping

from expense_tracker.account_matcher import find_first_account
from expense_tracker.auth import AuthContext
from expense_tracker.config import MAX_PAGE_SIZE, SYSTEM_DEFAULT_CURRENCY
from expense_tracker.database import accounts, categories, count_rows, transactions
from expense_tracker.errors import NotFoundError, ValidationError
from expense_tracker.ledger_writer import (
    apply_balance_delta,
    quantize_amount,
    resolve_category,
    reverse_ledger_entry,
    signed_effect,
    to_transaction_response,
    write_ledger_entry,
)
from expense_tracker.proposal_store import detach_transaction
from expense_tracker.schemas import (
    TransactionPage,
    TransactionPayload,
    TransactionResponse,
    TransactionType,
)

logger = structlog.get_logger(__name__)

MANUAL_SOURCE = "MANUAL"


def _owned_account_id(conn: Connection, user_id: int, account_id: int) -> int:
    exists = conn.execute(
        select(accounts.c.id).where(accounts.c.id == account_id, accounts.c.user_id == user_id)
    ).first()
    if not exists:
        raise NotFoundError("Account not found.")
    return account_id


def _default_account_id(conn: Connection, user_id: int) -> Optional[int]:
    account = find_first_account(conn, user_id)
    return account["id"] if account else None


def _entry_query():
    return select(transactions, categories.c.name.label("category_name")).select_from(
        transactions.outerjoin(categories, categories.c.id == transactions.c.category_id)
    )


def _get_entry_row(conn: Connection, user_id: int, transaction_id: int) -> RowMapping:
    row = conn.execute(
        _entry_query().where(transactions.c.id == transaction_id, transactions.c.user_id == user_id)
    ).mappings().first()
    if not row:
        raise NotFoundError("Transaction not found.")
    return row


def create_ledger_entry(
    engine: Engine, auth: AuthContext, payload: TransactionPayload
) -> TransactionResponse:
    payload = TransactionPayload.validate_payload(payload)
    with engine.begin() as conn:
        if payload.account_id is not None:
            account_id = _owned_account_id(conn, auth.user_id, payload.account_id)
        else:
            account_id = _default_account_id(conn, auth.user_id)
        return write_ledger_entry(
            conn,
            user_id=auth.user_id,
            account_id=account_id,
            category_id=payload.category_id,
            amount=payload.amount,
            currency=payload.currency or SYSTEM_DEFAULT_CURRENCY,
            txn_type=payload.type or TransactionType.DEBIT,
            source=payload.source or MANUAL_SOURCE,
            merchant=payload.merchant,
        )


def get_ledger_entry(engine: Engine, auth: AuthContext, transaction_id: int) -> TransactionResponse:
    with engine.begin() as conn:
        row = _get_entry_row(conn, auth.user_id, transaction_id)
    return to_transaction_response(row, row["category_name"])


def list_ledger_entries(
    engine: Engine,
    auth: AuthContext,
    page: int,
    size: int,
    category_id: Optional[int] = None,
) -> TransactionPage:
    invalid = []
    if page < 0:
        invalid.append("page")
    if size < 1 or size > MAX_PAGE_SIZE:
        invalid.append("size")
    if invalid:
        raise ValidationError(f"Invalid field(s): {', '.join(invalid)}.", fields=invalid)

    conditions = [transactions.c.user_id == auth.user_id]
    if category_id is not None:
        conditions.append(transactions.c.category_id == category_id)

    with engine.begin() as conn:
        total_items = count_rows(conn, transactions, *conditions)
        rows = conn.execute(
            _entry_query()
            .where(*conditions)
            .order_by(transactions.c.txn_date.desc(), transactions.c.id.desc())
            .offset(page * size)
            .limit(size)
        ).mappings().all()

    return TransactionPage(
        items=[to_transaction_response(row, row["category_name"]) for row in rows],
        page=page,
        size=size,
        total_items=total_items,
        total_pages=math.ceil(total_items / size) if total_items else 0,
    )


def update_ledger_entry(
    engine: Engine, auth: AuthContext, transaction_id: int, payload: TransactionPayload
) -> TransactionResponse:
    payload = TransactionPayload.validate_payload(payload)
    with engine.begin() as conn:
        existing = _get_entry_row(conn, auth.user_id, transaction_id)
        if payload.account_id is not None:
            account_id = _owned_account_id(conn, auth.user_id, payload.account_id)
        else:
            account_id = existing["account_id"]
        category_id = payload.category_id if payload.category_id is not None else existing["category_id"]
        category = resolve_category(conn, auth.user_id, category_id)
        amount = quantize_amount(payload.amount)
        txn_type = payload.type or existing["type"]

        reverse_ledger_entry(conn, auth.user_id, existing)
        row = conn.execute(
            update(transactions)
            .where(transactions.c.id == transaction_id, transactions.c.user_id == auth.user_id)
            .values(
                account_id=account_id,
                category_id=category["id"],
                merchant=payload.merchant,
                amount=amount,
                currency=payload.currency or existing["currency"],
                type=txn_type,
                source=payload.source or existing["source"],
            )
            .returning(transactions)
        ).mappings().one()
        if account_id is not None:
            apply_balance_delta(conn, auth.user_id, account_id, signed_effect(amount, txn_type))

    logger.info(
        "ledger_entry_corrected",
        user_id=auth.user_id,
        transaction_id=transaction_id,
        old_account_id=existing["account_id"],
        account_id=account_id,
        old_amount=existing["amount"],
        amount=amount,
    )
    return to_transaction_response(row, category["name"])


def delete_ledger_entry(engine: Engine, auth: AuthContext, transaction_id: int) -> None:
    with engine.begin() as conn:
        existing = _get_entry_row(conn, auth.user_id, transaction_id)
        reverse_ledger_entry(conn, auth.user_id, existing)
        detach_transaction(conn, auth.user_id, transaction_id)
        conn.execute(
            delete(transactions).where(
                transactions.c.id == transaction_id, transactions.c.user_id == auth.user_id
            )
        )
    logger.info("ledger_entry_deleted", user_id=auth.user_id, transaction_id=transaction_id)
