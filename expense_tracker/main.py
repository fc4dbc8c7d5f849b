from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from expense_tracker.auth import AuthContext, hash_password, resolve_auth_context, verify_password
from expense_tracker.config import (
    DATABASE_URL,
    DEFAULT_ACCOUNT_NAME,
    DEFAULT_ACCOUNT_TYPE,
    DEFAULT_PAGE_SIZE,
    FRONTEND_ORIGIN,
    MAX_PAGE_SIZE,
)
from expense_tracker.database import accounts, build_engine, categories, init_db, transactions, users
from expense_tracker.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    register_error_handlers,
)
from expense_tracker.ingestion import list_pending, submit_signal
from expense_tracker.ledger import (
    create_ledger_entry,
    delete_ledger_entry,
    get_ledger_entry,
    list_ledger_entries,
    update_ledger_entry,
)
from expense_tracker.ledger_writer import quantize_amount
from expense_tracker.logging_config import setup_logging
from expense_tracker.proposal_machine import accept_proposal, reject_proposal
from expense_tracker.schemas import (
    ZERO,
    AcceptResponse,
    AccountPayload,
    AccountResponse,
    CategoryPayload,
    CategoryResponse,
    CredentialsPayload,
    IngestRequest,
    IngestResponse,
    ProposalResponse,
    TransactionPage,
    TransactionPayload,
    TransactionResponse,
    UserResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_auth_context(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    engine: Engine = Depends(get_engine),
) -> AuthContext:
    return resolve_auth_context(engine, x_user_id)


def account_response(row) -> AccountResponse:
    return AccountResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=row["type"],
        last4=row["last4"],
        balance_estimate=row["balance_estimate"],
        created_at=row["created_at"],
    )


def category_response(row) -> CategoryResponse:
    return CategoryResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        parent=row["parent"],
        is_global=row["user_id"] is None,
        created_at=row["created_at"],
    )


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload, engine: Engine = Depends(get_engine)) -> UserResponse:
    email = payload.email.strip().lower()
    missing = [name for name, value in (("email", email), ("password", payload.password)) if not value]
    if missing:
        raise ValidationError("Email and password required.", fields=missing)
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().one()
            # New users get an account for proposals and manual entries to land on.
            account_id = conn.execute(
                insert(accounts)
                .values(
                    user_id=row["id"],
                    name=DEFAULT_ACCOUNT_NAME,
                    type=DEFAULT_ACCOUNT_TYPE,
                    balance_estimate=ZERO,
                )
                .returning(accounts.c.id)
            ).scalar_one()
    except IntegrityError as exc:
        raise ConflictError("Email already exists.") from exc

    logger.info("user_registered", user_id=row["id"], default_account_id=account_id)
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@router.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload, engine: Engine = Depends(get_engine)) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise AuthenticationError("Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    auth: AuthContext = Depends(get_auth_context), engine: Engine = Depends(get_engine)
) -> list[AccountResponse]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(accounts).where(accounts.c.user_id == auth.user_id).order_by(accounts.c.id.asc())
        ).mappings().all()
    return [account_response(row) for row in rows]


@router.post("/accounts", response_model=AccountResponse)
def create_account(
    payload: AccountPayload,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> AccountResponse:
    payload = AccountPayload.validate_payload(payload)
    opening_balance = quantize_amount(payload.opening_balance) if payload.opening_balance is not None else ZERO

    stmt = (
        insert(accounts)
        .values(
            user_id=auth.user_id,
            name=payload.name,
            type=payload.type,
            last4=payload.last4,
            balance_estimate=opening_balance,
        )
        .returning(accounts)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().one()

    logger.info("account_created", user_id=auth.user_id, account_id=row["id"])
    return account_response(row)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> AccountResponse:
    with engine.begin() as conn:
        row = conn.execute(
            select(accounts).where(accounts.c.id == account_id, accounts.c.user_id == auth.user_id)
        ).mappings().first()
    if not row:
        raise NotFoundError("Account not found.")
    return account_response(row)


@router.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int,
    payload: AccountPayload,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> AccountResponse:
    # The balance estimate is owned by the ledger writer; opening_balance is ignored here.
    payload = AccountPayload.validate_payload(payload)
    stmt = (
        update(accounts)
        .where(accounts.c.id == account_id, accounts.c.user_id == auth.user_id)
        .values(name=payload.name, type=payload.type, last4=payload.last4)
        .returning(accounts)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise NotFoundError("Account not found.")
    return account_response(row)


@router.delete("/accounts/{account_id}")
def delete_account(
    account_id: int,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> dict:
    with engine.begin() as conn:
        conn.execute(
            update(transactions)
            .where(transactions.c.account_id == account_id, transactions.c.user_id == auth.user_id)
            .values(account_id=None)
        )
        result = conn.execute(
            delete(accounts).where(accounts.c.id == account_id, accounts.c.user_id == auth.user_id)
        )
        if result.rowcount == 0:
            raise NotFoundError("Account not found.")
    logger.info("account_deleted", user_id=auth.user_id, account_id=account_id)
    return {"status": "deleted"}


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    auth: AuthContext = Depends(get_auth_context), engine: Engine = Depends(get_engine)
) -> list[CategoryResponse]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(categories)
            .where(or_(categories.c.user_id.is_(None), categories.c.user_id == auth.user_id))
            .order_by(categories.c.name.asc(), categories.c.id.asc())
        ).mappings().all()
    return [category_response(row) for row in rows]


@router.post("/categories", response_model=CategoryResponse)
def create_category(
    payload: CategoryPayload,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> CategoryResponse:
    payload = CategoryPayload.validate_payload(payload)
    stmt = (
        insert(categories)
        .values(user_id=auth.user_id, name=payload.name, parent=payload.parent)
        .returning(categories)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().one()
    except IntegrityError as exc:
        raise ConflictError("Category already exists.") from exc
    return category_response(row)


@router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(
    category_id: int,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> CategoryResponse:
    with engine.begin() as conn:
        row = conn.execute(
            select(categories).where(
                categories.c.id == category_id,
                or_(categories.c.user_id.is_(None), categories.c.user_id == auth.user_id),
            )
        ).mappings().first()
    if not row:
        raise NotFoundError("Category not found.")
    return category_response(row)


@router.put("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: int,
    payload: CategoryPayload,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> CategoryResponse:
    payload = CategoryPayload.validate_payload(payload)
    stmt = (
        update(categories)
        .where(categories.c.id == category_id, categories.c.user_id == auth.user_id)
        .values(name=payload.name, parent=payload.parent)
        .returning(categories)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise ConflictError("Category already exists.") from exc

    if not row:
        raise NotFoundError("Category not found.")
    return category_response(row)


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> dict:
    with engine.begin() as conn:
        row = conn.execute(
            select(categories.c.id).where(
                categories.c.id == category_id, categories.c.user_id == auth.user_id
            )
        ).first()
        if not row:
            raise NotFoundError("Category not found.")
        in_use = conn.execute(
            select(func.count())
            .select_from(transactions)
            .where(transactions.c.category_id == category_id)
        ).scalar_one()
        if in_use:
            raise ConflictError("Category is in use.")
        conn.execute(delete(categories).where(categories.c.id == category_id))
    return {"status": "deleted"}


@router.post("/ingest", response_model=IngestResponse)
def ingest(
    payload: IngestRequest,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> IngestResponse:
    return submit_signal(engine, auth, payload)


@router.get("/proposals", response_model=list[ProposalResponse])
def list_proposals(
    auth: AuthContext = Depends(get_auth_context), engine: Engine = Depends(get_engine)
) -> list[ProposalResponse]:
    return list_pending(engine, auth)


@router.post("/proposals/{proposal_id}/accept", response_model=AcceptResponse)
def accept(
    proposal_id: int,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> AcceptResponse:
    return accept_proposal(engine, auth, proposal_id)


@router.post("/proposals/{proposal_id}/reject", response_model=ProposalResponse)
def reject(
    proposal_id: int,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> ProposalResponse:
    return reject_proposal(engine, auth, proposal_id)


@router.get("/transactions", response_model=TransactionPage)
def list_transactions(
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    category_id: int | None = None,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> TransactionPage:
    return list_ledger_entries(engine, auth, page=page, size=size, category_id=category_id)


@router.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    return create_ledger_entry(engine, auth, payload)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: int,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    return get_ledger_entry(engine, auth, transaction_id)


@router.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    return update_ledger_entry(engine, auth, transaction_id, payload)


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    auth: AuthContext = Depends(get_auth_context),
    engine: Engine = Depends(get_engine),
) -> dict:
    delete_ledger_entry(engine, auth, transaction_id)
    return {"status": "deleted"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db(app.state.engine)
    logger.info("app_starting")
    yield
    logger.info("app_stopping")


def create_app(engine: Engine | None = None) -> FastAPI:
    app = FastAPI(title="Expense Tracker", lifespan=lifespan)
    app.state.engine = engine if engine is not None else build_engine(DATABASE_URL)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[FRONTEND_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()
