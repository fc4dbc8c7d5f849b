"""Turns incoming candidate transactions into PENDING proposals.

Ingestion only ever adds a proposal row. Accounts and the ledger are not
touched until the user accepts, so a proposal that is never accepted has no
effect at all.
"""

from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.engine import Engine

from expense_tracker.auth import AuthContext
from expense_tracker.config import SYSTEM_DEFAULT_CURRENCY
from expense_tracker.proposal_store import insert_proposal, list_pending_proposals, to_proposal_response
from expense_tracker.schemas import IngestRequest, IngestResponse, ProposalResponse

logger = structlog.get_logger(__name__)

CURRENCY_SYMBOLS = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}


def format_amount(amount: Optional[Decimal], currency: Optional[str]) -> str:
    if amount is None:
        return "an unspecified amount"
    code = currency or SYSTEM_DEFAULT_CURRENCY
    symbol = CURRENCY_SYMBOLS.get(code)
    value = f"{amount:,.2f}"
    if symbol:
        return f"{symbol}{value}"
    return f"{code} {value}"


def build_display_text(amount: Optional[Decimal], currency: Optional[str], merchant: Optional[str]) -> str:
    """Yes/no prompt shown to the user, e.g. ``Add ₹500.00 for Cafe?``."""
    return f"Add {format_amount(amount, currency)} for {merchant or 'an unknown merchant'}?"


def submit_signal(engine: Engine, auth: AuthContext, signal: IngestRequest) -> IngestResponse:
    signal = IngestRequest.validate_payload(signal)
    with engine.begin() as conn:
        row = insert_proposal(conn, auth.user_id, signal)

    logger.info(
        "proposal_ingested",
        proposal_id=row["id"],
        user_id=auth.user_id,
        source=signal.source,
        has_amount=signal.amount is not None,
        has_hint=signal.account_hint is not None,
    )
    return IngestResponse(
        proposal_id=row["id"],
        display_text=build_display_text(signal.amount, signal.currency, signal.merchant),
    )


def list_pending(engine: Engine, auth: AuthContext) -> list[ProposalResponse]:
    with engine.begin() as conn:
        rows = list_pending_proposals(conn, auth.user_id)
    return [to_proposal_response(row) for row in rows]
