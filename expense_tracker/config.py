import os


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if not normalized or len(normalized) > 10 or not normalized.isalpha():
        raise ValueError("Currency must be an alphabetic code of at most 10 letters.")
    return normalized


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "INR")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "INR"


def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./expense_tracker.db")
DATABASE_TIMEOUT_SECONDS = _get_int("DATABASE_TIMEOUT_SECONDS", 30)
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _get_bool("LOG_JSON", False)
DEFAULT_PAGE_SIZE = _get_int("DEFAULT_PAGE_SIZE", 20)
MAX_PAGE_SIZE = _get_int("MAX_PAGE_SIZE", 100)

DEFAULT_CATEGORY_NAME = "Uncategorized"
DEFAULT_ACCOUNT_NAME = "Default Cash"
DEFAULT_ACCOUNT_TYPE = "CASH"
