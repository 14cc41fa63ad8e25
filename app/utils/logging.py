"""
Logging Configuration

Standard library logging with two output styles:
- human-readable lines for development and tests
- one JSON object per line in production, for log aggregation

Every record is stamped with the tenant of the current request (taken
from the tenant ContextVar), so call sites never pass tenant_id by hand.
"""
from datetime import datetime, timezone
from typing import Any, Dict
import json
import logging
import sys

from app.core.tenant_context import get_current_tenant_id


# Extras copied into JSON records when present
EXTRA_FIELDS = ("tenant_id", "user_id", "request_id", "event_type")

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [tenant=%(tenant_id)s] %(message)s"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "passlib": logging.ERROR,
}


class TenantContextFilter(logging.Filter):
    """Stamp records with the current tenant unless the caller set one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "tenant_id"):
            record.tenant_id = get_current_tenant_id()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (name, getattr(record, name))
            for name in EXTRA_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure the root logger. Call once at startup.

    Replaces any handlers already installed, so calling it again
    reconfigures instead of duplicating output.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TenantContextFilter())
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_security_event(event_type: str, details: Dict[str, Any], logger: logging.Logger) -> None:
    """
    Log a security-relevant event at WARNING with event_type attached.

    Event types in use:
    - failed_login: unknown email, wrong password or inactive tenant
    - failed_two_factor: wrong or expired 2FA code
    - invalid_api_key: unknown X-API-Key presented
    - tenant_isolation_violation: credentials naming different tenants
    - invalid_reset_token / invalid_invitation_token: unusable one-time token

    details must not use LogRecord attribute names (message, name, ...).
    """
    logger.warning(
        f"SECURITY EVENT: {event_type}",
        extra={"security_event": True, "event_type": event_type, **details}
    )
