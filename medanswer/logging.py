"""Logging configuration for the pipeline."""

from __future__ import annotations

import contextvars
import logging

from medanswer.config import settings

query_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "query_id",
    default=None,
)


class QueryIdFilter(logging.Filter):
    """Attach query_id from contextvars to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "query_id", None):
            record.query_id = query_id_var.get() or "-"
        return True


def configure_logging(level: str | None = None) -> None:
    """Configure structured logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s query_id=%(query_id)s",
    )
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if not any(isinstance(f, QueryIdFilter) for f in handler.filters):
            handler.addFilter(QueryIdFilter())
