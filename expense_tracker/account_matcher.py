"""
Account resolution for proposals.

Maps a free-text account hint ("card ending 4321", "HDFC xx123") onto one of
the user's accounts. This is a best-effort heuristic: an unmatched hint is
never an error, the caller just gets a less specific account or none.
"""

import re
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.engine import Connection, RowMapping

from expense_tracker.database import accounts

logger = structlog.get_logger(__name__)

HINT_DIGITS_PATTERN = re.compile(r"\d{3,4}")


def extract_hint_digits(hint: Optional[str]) -> Optional[str]:
    """
    Return the first run of 3-4 digits in ``hint``.

    The leftmost match wins and is greedy up to four digits, so
    ``"ending 12345"`` yields ``"1234"``.
    """
    if not hint:
        return None
    match = HINT_DIGITS_PATTERN.search(hint)
    if not match:
        return None
    return match.group(0)


def find_account_by_last4(conn: Connection, user_id: int, last4: str) -> Optional[RowMapping]:
    return conn.execute(
        select(accounts)
        .where(accounts.c.user_id == user_id, accounts.c.last4 == last4)
        .order_by(accounts.c.id.asc())
        .limit(1)
    ).mappings().first()


def find_first_account(conn: Connection, user_id: int) -> Optional[RowMapping]:
    return conn.execute(
        select(accounts)
        .where(accounts.c.user_id == user_id)
        .order_by(accounts.c.id.asc())
        .limit(1)
    ).mappings().first()


def resolve_account(conn: Connection, user_id: int, hint: Optional[str]) -> Optional[RowMapping]:
    """
    Resolve ``hint`` to one of ``user_id``'s accounts.

    Tries, in order:
    1. the account whose last4 equals the digits found in the hint
    2. any account the user owns (lowest id; callers must not rely on which)

    Returns None only when the user owns no accounts.
    """
    digits = extract_hint_digits(hint)
    if digits:
        matched = find_account_by_last4(conn, user_id, digits)
        if matched:
            logger.debug("account_matched_by_hint", user_id=user_id, account_id=matched["id"])
            return matched

    fallback = find_first_account(conn, user_id)
    if fallback is None:
        logger.info("account_unresolved", user_id=user_id, hint_digits=digits)
        return None
    logger.debug("account_fallback_used", user_id=user_id, account_id=fallback["id"])
    return fallback
