from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection, RowMapping

from expense_tracker.database import proposals, utcnow
from expense_tracker.schemas import IngestRequest, ProposalResponse, ProposalStatus


def to_proposal_response(row: RowMapping) -> ProposalResponse:
    return ProposalResponse(
        id=row["id"],
        user_id=row["user_id"],
        amount=row["amount"],
        currency=row["currency"],
        merchant=row["merchant"],
        account_hint=row["account_hint"],
        raw_payload=row["raw_payload"],
        source=row["source"],
        status=row["status"],
        transaction_id=row["transaction_id"],
        created_at=row["created_at"],
        responded_at=row["responded_at"],
    )


def insert_proposal(conn: Connection, user_id: int, signal: IngestRequest) -> RowMapping:
    return conn.execute(
        insert(proposals)
        .values(
            user_id=user_id,
            amount=signal.amount,
            currency=signal.currency,
            merchant=signal.merchant,
            account_hint=signal.account_hint,
            raw_payload=signal.raw_text,
            source=signal.source,
            status=ProposalStatus.PENDING,
            created_at=utcnow(),
        )
        .returning(proposals)
    ).mappings().one()


def get_proposal(conn: Connection, proposal_id: int) -> Optional[RowMapping]:
    return conn.execute(select(proposals).where(proposals.c.id == proposal_id)).mappings().first()


def list_pending_proposals(conn: Connection, user_id: int) -> list[RowMapping]:
    return conn.execute(
        select(proposals)
        .where(proposals.c.user_id == user_id, proposals.c.status == ProposalStatus.PENDING)
        .order_by(proposals.c.created_at.desc(), proposals.c.id.desc())
    ).mappings().all()


def transition_status(
    conn: Connection,
    proposal_id: int,
    user_id: int,
    from_status: str,
    to_status: str,
    responded_at: Optional[datetime] = None,
) -> bool:
    """Compare-and-set the status. Returns False when another caller got there first."""
    result = conn.execute(
        update(proposals)
        .where(
            proposals.c.id == proposal_id,
            proposals.c.user_id == user_id,
            proposals.c.status == from_status,
        )
        .values(status=to_status, responded_at=responded_at or utcnow())
    )
    return result.rowcount == 1


def attach_transaction(conn: Connection, proposal_id: int, transaction_id: int) -> None:
    conn.execute(
        update(proposals)
        .where(proposals.c.id == proposal_id)
        .values(transaction_id=transaction_id)
    )


def detach_transaction(conn: Connection, user_id: int, transaction_id: int) -> None:
    conn.execute(
        update(proposals)
        .where(proposals.c.user_id == user_id, proposals.c.transaction_id == transaction_id)
        .values(transaction_id=None)
    )
