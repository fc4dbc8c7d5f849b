from datetime import datetime, timezone

import structlog
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Connection, Engine

from expense_tracker.config import DATABASE_TIMEOUT_SECONDS, DEFAULT_CATEGORY_NAME

logger = structlog.get_logger(__name__)

metadata = MetaData()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("type", String(50)),
    Column("last4", String(10)),
    Column("balance_estimate", Numeric(18, 2), nullable=False, server_default="0"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

# user_id NULL marks a global category shared by every user.
categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), index=True),
    Column("name", String(255), nullable=False),
    Column("parent", String(255)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    UniqueConstraint("user_id", "name", name="uq_categories_user_name"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("account_id", Integer, ForeignKey("accounts.id")),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("merchant", String(255)),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("currency", String(10), nullable=False),
    Column("type", String(10), nullable=False),
    Column("source", String(2000)),
    Column("txn_date", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

proposals = Table(
    "proposals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("amount", Numeric(18, 2)),
    Column("currency", String(10)),
    Column("merchant", String(255)),
    Column("account_hint", String(255)),
    Column("raw_payload", Text),
    Column("source", String(2000)),
    Column("status", String(20), nullable=False, server_default="PENDING"),
    Column("transaction_id", Integer, ForeignKey("transactions.id")),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("responded_at", DateTime(timezone=True)),
)


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": DATABASE_TIMEOUT_SECONDS}
    return create_engine(database_url, connect_args=connect_args)


def ensure_default_category(conn: Connection) -> int:
    existing = conn.execute(
        select(categories.c.id)
        .where(categories.c.user_id.is_(None), categories.c.name == DEFAULT_CATEGORY_NAME)
        .order_by(categories.c.id.asc())
        .limit(1)
    ).scalar_one_or_none()
    if existing is not None:
        return existing
    category_id = conn.execute(
        insert(categories)
        .values(user_id=None, name=DEFAULT_CATEGORY_NAME)
        .returning(categories.c.id)
    ).scalar_one()
    logger.info("default_category_seeded", category_id=category_id, name=DEFAULT_CATEGORY_NAME)
    return category_id


def init_db(engine: Engine, seed_default_category: bool = True) -> None:
    metadata.create_all(engine)
    if seed_default_category:
        with engine.begin() as conn:
            ensure_default_category(conn)


def count_rows(conn: Connection, table: Table, *conditions) -> int:
    return conn.execute(select(func.count()).select_from(table).where(*conditions)).scalar_one()
