"""
Request-scoped logging: request id on every record, bearer tokens and JWT signatures
never written to logs.
"""
import logging
import re
import secrets
import sys
from contextvars import ContextVar

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

_BEARER_RE = re.compile(r"(?i)\bbearer\s+[^\s\"',]+")
_JWT_RE = re.compile(r"(eyJ[a-zA-Z0-9_-]{5,}\.eyJ[a-zA-Z0-9_-]{5,})\.[a-zA-Z0-9_-]*")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"


def new_request_id() -> str:
    """Short random id returned in x-request-id and used in error bodies."""
    return secrets.token_urlsafe(12)


def redact(message: str) -> str:
    """Replace bearer credentials and truncate JWT signatures."""
    message = _JWT_RE.sub(r"\1.<sig>", message)
    return _BEARER_RE.sub("Bearer {AUTHORIZATION}", message)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


_handler: logging.Handler | None = None


def configure_logging(level: str = "INFO") -> logging.Handler:
    """
    Add a stream handler with request ids and redaction to the root logger and set its level.
    Called on every app startup; the handler is installed once per process.
    """
    global _handler
    root = logging.getLogger()
    if _handler is None:
        _handler = logging.StreamHandler(sys.stdout)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        _handler.addFilter(RequestContextFilter())
        _handler.addFilter(RedactingFilter())
    if _handler not in root.handlers:
        root.addHandler(_handler)
    root.setLevel(level)
    return _handler
