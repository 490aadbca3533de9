"""
structlog configuration for the index service.

Every line carries `event_type`, `level`, `logger` and an ISO-8601 UTC
`timestamp`. Wallet, owner and beneficiary addresses are shortened so a
reconciliation trail stays readable; digests and record ids are left intact.

LOG_LEVEL picks the threshold (default INFO). LOG_FORMAT=json (default) renders
one JSON object per line; LOG_FORMAT=console renders for a terminal.

This module imports nothing from backend_zombie so any package can log at import time.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

ADDRESS_KEYS = ("wallet", "owner", "beneficiary")
_SHORTEN_OVER = 20

EventDict = dict[str, Any]


def _stamp(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _shorten_addresses(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    """0x1234abcd...ef01 instead of the full 66 characters."""
    for key in ADDRESS_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > _SHORTEN_OVER:
            event_dict[key] = f"{value[:10]}...{value[-4:]}"
    return event_dict


def _event_type(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    # structlog's positional event becomes event_type; message mirrors it unless given
    if "event_type" not in event_dict and "event" in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "event_type" in event_dict:
        event_dict.setdefault("message", str(event_dict["event_type"]))
    return event_dict


def _renderer() -> Any:
    if LOG_FORMAT == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _stamp,
            _shorten_addresses,
            _event_type,
            _renderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger. Pass the event name first, then context:

        logger = get_logger(__name__)
        logger.info("checkin_mirrored", wallet=wallet, beneficiary=bene, last_checkin=ts)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_wallet(wallet: str) -> structlog.BoundLogger:
    """Logger with `wallet` attached, for multi-step work on one wallet (e.g. resync)."""
    return get_logger("backend_zombie").bind(wallet=wallet)
