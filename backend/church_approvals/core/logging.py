"""Structured JSON logging configuration.

Every record carries the id of the HTTP request (or Celery task) that
produced it, so a single approval decision can be traced across the
service, store and notifier log lines.
"""
import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger import jsonlogger

from church_approvals.core.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Copy the current request id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def setup_logging() -> None:
    """Configure JSON structured logging for production, human-readable for dev."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())

    if getattr(settings, "APP_ENV", "development") == "production":
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(asctime)s %(name)s %(levelname)s %(request_id)s %(message)s",
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s [%(request_id)s] %(message)s")
        )

    logging.root.handlers = [handler]
    logging.root.setLevel(logging.INFO)
