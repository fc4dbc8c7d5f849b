"""
Proposal lifecycle: PENDING -> ACCEPTED | REJECTED.

Both transitions are terminal. Each runs as one database transaction whose
first write is a compare-and-set on ``proposals.status``; that statement is
the per-proposal serialization point, so of several concurrent callers
exactly one proceeds and the rest see ``ConflictError``. On acceptance the
ledger entry, the balance adjustment and the status change commit together,
so a failure part-way leaves the proposal PENDING with nothing written.
"""

import structlog
from sqlalchemy.engine import Connection, Engine, RowMapping

from expense_tracker.account_matcher import resolve_account
from expense_tracker.auth import AuthContext
from expense_tracker.config import SYSTEM_DEFAULT_CURRENCY
from expense_tracker.database import utcnow
from expense_tracker.errors import ConflictError, NotFoundError
from expense_tracker.ledger_writer import write_ledger_entry
from expense_tracker.proposal_store import (
    attach_transaction,
    get_proposal,
    to_proposal_response,
    transition_status,
)
from expense_tracker.schemas import (
    ZERO,
    AcceptResponse,
    ProposalResponse,
    ProposalStatus,
    TransactionType,
)

logger = structlog.get_logger(__name__)

PROPOSAL_SOURCE = "PROPOSAL"


def _load_pending_proposal(conn: Connection, auth: AuthContext, proposal_id: int) -> RowMapping:
    row = get_proposal(conn, proposal_id)
    if row is None:
        raise NotFoundError("Proposal not found.")
    if row["user_id"] != auth.user_id:
        logger.warning("proposal_owner_mismatch", proposal_id=proposal_id, user_id=auth.user_id)
        raise NotFoundError("Proposal not found.")
    if row["status"] != ProposalStatus.PENDING:
        logger.info(
            "proposal_already_handled",
            proposal_id=proposal_id,
            user_id=auth.user_id,
            status=row["status"],
        )
        raise ConflictError("Proposal already handled.")
    return row


def _claim(conn: Connection, auth: AuthContext, proposal_id: int, to_status: str) -> None:
    claimed = transition_status(
        conn,
        proposal_id,
        auth.user_id,
        from_status=ProposalStatus.PENDING,
        to_status=to_status,
        responded_at=utcnow(),
    )
    if not claimed:
        logger.info("proposal_transition_lost", proposal_id=proposal_id, to_status=to_status)
        raise ConflictError("Proposal already handled.")


def accept_proposal(engine: Engine, auth: AuthContext, proposal_id: int) -> AcceptResponse:
    with engine.begin() as conn:
        proposal = _load_pending_proposal(conn, auth, proposal_id)
        _claim(conn, auth, proposal_id, ProposalStatus.ACCEPTED)

        account = resolve_account(conn, auth.user_id, proposal["account_hint"])
        amount = proposal["amount"] if proposal["amount"] is not None else ZERO
        entry = write_ledger_entry(
            conn,
            user_id=auth.user_id,
            account_id=account["id"] if account else None,
            category_id=None,
            amount=amount,
            currency=proposal["currency"] or SYSTEM_DEFAULT_CURRENCY,
            txn_type=TransactionType.DEBIT,
            source=PROPOSAL_SOURCE,
            merchant=proposal["merchant"],
        )
        attach_transaction(conn, proposal_id, entry.id)

    logger.info(
        "proposal_accepted",
        proposal_id=proposal_id,
        user_id=auth.user_id,
        transaction_id=entry.id,
        account_id=entry.account_id,
    )
    return AcceptResponse(transaction_id=entry.id)


def reject_proposal(engine: Engine, auth: AuthContext, proposal_id: int) -> ProposalResponse:
    with engine.begin() as conn:
        _load_pending_proposal(conn, auth, proposal_id)
        _claim(conn, auth, proposal_id, ProposalStatus.REJECTED)
        row = get_proposal(conn, proposal_id)

    logger.info("proposal_rejected", proposal_id=proposal_id, user_id=auth.user_id)
    return to_proposal_response(row)
