from dataclasses import dataclass

import bcrypt
from sqlalchemy import select
from sqlalchemy.engine import Engine

from expense_tracker.database import users
from expense_tracker.errors import AuthenticationError, NotFoundError, ValidationError


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller, established once at the HTTP boundary.

    Every core operation receives it explicitly; the pipeline never looks up
    a "current user" on its own.
    """

    user_id: int


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def resolve_auth_context(engine: Engine, x_user_id: str | None) -> AuthContext:
    if not x_user_id:
        raise AuthenticationError("Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise ValidationError("Invalid user identity.", fields=["x-user-id"]) from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise NotFoundError("User not found.")
    return AuthContext(user_id=user_id)
