from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from expense_tracker.config import normalize_currency
from expense_tracker.errors import ValidationError

ZERO = Decimal("0")
# Exclusive upper bound for Numeric(18, 2) amounts.
MAX_AMOUNT = Decimal("1e16")

MAX_NAME_LENGTH = 255
MAX_HINT_LENGTH = 255
MAX_CURRENCY_LENGTH = 10
MAX_LAST4_LENGTH = 10
MAX_SOURCE_LENGTH = 2000
MAX_RAW_TEXT_LENGTH = 10000


class TransactionType:
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
    values = {DEBIT, CREDIT}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


class ProposalStatus:
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    values = {PENDING, ACCEPTED, REJECTED}


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _check_length(errors: list[str], field: str, value: str | None, limit: int) -> None:
    if value is not None and len(value) > limit:
        errors.append(field)


def _raise_if_invalid(errors: list[str]) -> None:
    if errors:
        raise ValidationError(
            f"Invalid field(s): {', '.join(errors)}.",
            fields=errors,
        )


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class AccountPayload(BaseModel):
    name: str | None = None
    type: str | None = None
    last4: str | None = None
    opening_balance: Decimal | None = None

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        errors: list[str] = []
        payload.name = _strip_or_none(payload.name)
        payload.type = _strip_or_none(payload.type)
        payload.last4 = _strip_or_none(payload.last4)
        if not payload.name:
            errors.append("name")
        _check_length(errors, "name", payload.name, MAX_NAME_LENGTH)
        _check_length(errors, "type", payload.type, 50)
        _check_length(errors, "last4", payload.last4, MAX_LAST4_LENGTH)
        _raise_if_invalid(errors)
        return payload


class AccountResponse(BaseModel):
    id: int
    user_id: int
    name: str
    type: str | None = None
    last4: str | None = None
    balance_estimate: Decimal
    created_at: datetime | None = None


class CategoryPayload(BaseModel):
    name: str | None = None
    parent: str | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        errors: list[str] = []
        payload.name = _strip_or_none(payload.name)
        payload.parent = _strip_or_none(payload.parent)
        if not payload.name:
            errors.append("name")
        _check_length(errors, "name", payload.name, MAX_NAME_LENGTH)
        _check_length(errors, "parent", payload.parent, MAX_NAME_LENGTH)
        _raise_if_invalid(errors)
        return payload


class CategoryResponse(BaseModel):
    id: int
    user_id: int | None = None
    name: str
    parent: str | None = None
    is_global: bool
    created_at: datetime | None = None


class IngestRequest(BaseModel):
    """A raw candidate transaction. Every field is optional."""

    amount: Decimal | None = None
    currency: str | None = None
    merchant: str | None = None
    account_hint: str | None = None
    raw_text: str | None = None
    source: str | None = None

    @classmethod
    def validate_payload(cls, payload: "IngestRequest") -> "IngestRequest":
        errors: list[str] = []
        payload.merchant = _strip_or_none(payload.merchant)
        payload.account_hint = _strip_or_none(payload.account_hint)
        payload.source = _strip_or_none(payload.source)
        payload.currency = _strip_or_none(payload.currency)
        if payload.amount is not None and not ZERO < payload.amount < MAX_AMOUNT:
            errors.append("amount")
        if payload.currency is not None:
            try:
                payload.currency = normalize_currency(payload.currency)
            except ValueError:
                errors.append("currency")
        _check_length(errors, "merchant", payload.merchant, MAX_NAME_LENGTH)
        _check_length(errors, "account_hint", payload.account_hint, MAX_HINT_LENGTH)
        _check_length(errors, "source", payload.source, MAX_SOURCE_LENGTH)
        _check_length(errors, "raw_text", payload.raw_text, MAX_RAW_TEXT_LENGTH)
        _raise_if_invalid(errors)
        return payload


class IngestResponse(BaseModel):
    proposal_id: int
    display_text: str


class ProposalResponse(BaseModel):
    id: int
    user_id: int
    amount: Decimal | None = None
    currency: str | None = None
    merchant: str | None = None
    account_hint: str | None = None
    raw_payload: str | None = None
    source: str | None = None
    status: str
    transaction_id: int | None = None
    created_at: datetime | None = None
    responded_at: datetime | None = None


class AcceptResponse(BaseModel):
    transaction_id: int


class TransactionPayload(BaseModel):
    amount: Decimal | None = None
    merchant: str | None = None
    currency: str | None = None
    account_id: int | None = None
    category_id: int | None = None
    type: str | None = None
    source: str | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        errors: list[str] = []
        payload.merchant = _strip_or_none(payload.merchant)
        payload.currency = _strip_or_none(payload.currency)
        payload.source = _strip_or_none(payload.source)
        if payload.amount is None or not ZERO < payload.amount < MAX_AMOUNT:
            errors.append("amount")
        if not payload.merchant:
            errors.append("merchant")
        _check_length(errors, "merchant", payload.merchant, MAX_NAME_LENGTH)
        if payload.currency is not None:
            try:
                payload.currency = normalize_currency(payload.currency)
            except ValueError:
                errors.append("currency")
        if payload.type is not None:
            try:
                payload.type = TransactionType.validate(payload.type)
            except ValueError:
                errors.append("type")
        _check_length(errors, "source", payload.source, MAX_SOURCE_LENGTH)
        _raise_if_invalid(errors)
        return payload


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    account_id: int | None = None
    category_id: int
    category_name: str | None = None
    merchant: str | None = None
    amount: Decimal
    currency: str
    type: str
    source: str | None = None
    txn_date: datetime


class TransactionPage(BaseModel):
    items: list[TransactionResponse]
    page: int
    size: int
    total_items: int
    total_pages: int
