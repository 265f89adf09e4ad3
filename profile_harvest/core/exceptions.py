"""Typed failures surfaced by the scraping core.

Every public operation either returns a well-formed result or raises one of
these. ``status_code`` and ``code`` are used by the API layer to render the
error envelope; the core itself never looks at them.
"""


class ScrapeError(Exception):
    """Base class for every error the scraping core surfaces."""

    status_code: int = 500
    code: str = "scrape_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class InvalidArgument(ScrapeError):
    """Caller contract violation. Never retried."""

    status_code = 400
    code = "invalid_argument"


class EngineUnavailable(ScrapeError):
    """The shared browser could not be launched. The next call may retry."""

    status_code = 503
    code = "engine_unavailable"


class NavigationTimeout(ScrapeError):
    """Target did not load within the navigation budget and nothing was extractable."""

    status_code = 504
    code = "navigation_timeout"

    def __init__(self, message: str = "", url: str = ""):
        self.url = url
        super().__init__(message or f"Navigation timed out: {url}")


class NavigationError(ScrapeError):
    """Navigation failed outright (DNS, connection reset, aborted load)."""

    status_code = 502
    code = "navigation_error"


class Exhausted(ScrapeError):
    """The operation deadline passed, either queued for a slot or mid-flight."""

    status_code = 504
    code = "exhausted"

    def __init__(self, message: str = "", timeout: float | None = None):
        self.timeout = timeout
        super().__init__(message or f"Operation exceeded {timeout}s deadline")


class GateMisuseError(RuntimeError):
    """A slot was released without a matching acquire. Programming error."""
