"""Structured logging with structlog.

JSON output for deployed environments, colorized console output for local
development. Modules obtain loggers with ``structlog.get_logger(__name__)``
and log events as snake_case names with keyword fields:

    logger.info("proposal_accepted", proposal_id=12, transaction_id=40)

Ledger events carry ``Decimal`` amounts; they are rendered as plain strings
("500.00") so JSON lines keep the exact cent value.
"""

import logging
import sys
from decimal import Decimal

import structlog

from expense_tracker.config import LOG_JSON, LOG_LEVEL

# Engine chatter drowns out ledger events at INFO.
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


def render_decimals(logger, method_name: str, event_dict: dict) -> dict:
    """Replace ``Decimal`` field values with their exact string form."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = format(value, "f")
    return event_dict


def setup_logging(log_level: str = LOG_LEVEL, json_output: bool = LOG_JSON) -> None:
    """Configure structlog and the stdlib root logger it writes through.

    Args:
        log_level: Python log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Render JSON lines when True, console output otherwise.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        render_decimals,
    ]

    if json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # force: uvicorn installs root handlers before the lifespan runs.
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
