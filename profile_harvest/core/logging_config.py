"""Structured logging configuration.

Supports two modes via LOG_FORMAT env var:
- "json" (default for production): one JSON object per line
- "text" (for development): human-readable lines

Every record carries the request ID plus the scrape operation and target
it was logged under, so the lines of one search or profile fetch can be
pulled out of a busy log even when several run at once.
"""

import contextlib
import contextvars
import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from profile_harvest.middleware.request_id import get_request_id

TEXT_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s [%(request_id)s] "
    "[%(operation)s %(target)s] %(message)s"
)
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s %(request_id)s %(operation)s %(target)s"

scrape_context_var: contextvars.ContextVar[tuple[str, str]] = contextvars.ContextVar(
    "scrape_context", default=("", "")
)


@contextlib.contextmanager
def scrape_context(operation: str, target: str):
    """Tag log records emitted inside the block with an operation and target."""
    token = scrape_context_var.set((operation, target))
    try:
        yield
    finally:
        scrape_context_var.reset(token)


class ScrapeContextFilter(logging.Filter):
    """Inject request_id, operation and target into every log record."""

    def filter(self, record):
        record.request_id = get_request_id()
        record.operation, record.target = scrape_context_var.get()
        return True


class PlaywrightPipeFilter(logging.Filter):
    """Suppress Playwright's noisy 'pipe closed by peer' warnings.

    When a browser context dies mid-request, Playwright logs this for every
    pending write.
    """

    def filter(self, record):
        return "pipe closed by peer" not in record.getMessage()


def configure_logging(log_format: str = "json", log_level: str = "INFO"):
    """Configure the root logger.

    Args:
        log_format: "json" or "text"
        log_level: Python log level name
    """
    root = logging.getLogger()
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ScrapeContextFilter())
    handler.addFilter(PlaywrightPipeFilter())

    if log_format == "json":
        formatter = JsonFormatter(
            fmt=JSON_FORMAT,
            rename_fields={
                "levelname": "level",
                "name": "logger",
                "asctime": "timestamp",
            },
        )
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    logging.getLogger("playwright").setLevel(logging.ERROR)
