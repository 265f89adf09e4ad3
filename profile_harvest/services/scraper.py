"""User search and profile lookups over the shared browser.

Each operation walks the same path:

    Queued -> SlotAcquired -> EngineReady -> SessionOpen -> Navigated
    -> Probed -> Extracted -> SessionClosed -> SlotReleased -> Completed

and can drop to Failed from any state. The session and the admission slot
are released on every path, and the whole walk runs under one deadline.
Callers only ever see a result or a ``ScrapeError`` subclass.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from urllib.parse import quote

from profile_harvest.config import Settings, settings as default_settings
from profile_harvest.core.exceptions import (
    Exhausted,
    InvalidArgument,
    NavigationError,
    NavigationTimeout,
    ScrapeError,
)
from profile_harvest.core.logging_config import scrape_context
from profile_harvest.core.metrics import (
    admission_timeouts_total,
    extracted_records_total,
    readiness_probe_misses_total,
    scrape_duration_seconds,
    scrape_operations_total,
)
from profile_harvest.schemas.users import (
    MAX_BATCH_QUERIES,
    MAX_BATCH_RESULTS,
    MAX_SEARCH_RESULTS,
    BatchQueryResult,
    UserProfile,
    UserRecord,
)
from profile_harvest.services.admission import AdmissionGate
from profile_harvest.services.engine import EngineManager
from profile_harvest.services.extraction import (
    extract_profile,
    extract_users,
    parse_document,
)
from profile_harvest.services.readiness import has_any_marker, probe
from profile_harvest.services.session import WorkSession, open_session

logger = logging.getLogger(__name__)

# Readiness markers, semantic first. Plain CSS so both Playwright and
# BeautifulSoup understand them.
SEARCH_READY_MARKERS = [
    '[data-e2e="search-user-container"]',
    '[data-e2e="search-user-nickname"]',
    '[data-e2e="user-title"]',
    'a[href*="/@"]',
    ".user-title",
]

PROFILE_READY_MARKERS = [
    '[data-e2e="user-title"]',
    '[data-e2e="user-subtitle"]',
    '[data-e2e="user-avatar"]',
    ".user-title",
    "h1",
    "h2",
]

# Stricter subset: at least one must be in the final document, otherwise
# the account is treated as private or nonexistent.
PROFILE_CONFIRM_MARKERS = [
    '[data-e2e="user-title"]',
    '[data-e2e="user-subtitle"]',
    '[data-e2e="user-avatar"]',
    '[data-e2e="followers-count"]',
    '[data-e2e="user-bio"]',
]


class FlightState(str, enum.Enum):
    QUEUED = "queued"
    SLOT_ACQUIRED = "slot_acquired"
    ENGINE_READY = "engine_ready"
    SESSION_OPEN = "session_open"
    NAVIGATED = "navigated"
    PROBED = "probed"
    EXTRACTED = "extracted"
    SESSION_CLOSED = "session_closed"
    SLOT_RELEASED = "slot_released"
    COMPLETED = "completed"
    FAILED = "failed"


class Flight:
    """Progress of one operation, for logs and failure classification."""

    def __init__(self, operation: str, target: str):
        self.operation = operation
        self.target = target
        self.state = FlightState.QUEUED
        self.navigation_fault: ScrapeError | None = None
        self.started = time.monotonic()

    def advance(self, state: FlightState) -> None:
        self.state = state
        logger.debug("%s %s -> %s", self.operation, self.target, state.value)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started


def _require_text(value, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{name} must be a non-empty string")
    return value.strip()


def _require_limit(limit, upper: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= upper:
        raise InvalidArgument(f"limit must be an integer in [1, {upper}], got {limit!r}")


def normalize_handle(handle) -> str:
    handle = _require_text(handle, "handle").lstrip("@").strip()
    if not handle or "/" in handle:
        raise InvalidArgument(f"Invalid handle: {handle!r}")
    return handle


class UserScraper:
    """Search users and fetch profiles through a bounded pool of browser sessions."""

    def __init__(
        self,
        config: Settings | None = None,
        engine: EngineManager | None = None,
        gate: AdmissionGate | None = None,
    ):
        self._settings = config or default_settings
        self.engine = engine or EngineManager(self._settings)
        self.gate = gate or AdmissionGate(
            self._settings.MAX_CONCURRENT_PAGES, strict=self._settings.DEBUG
        )

    def search_url(self, query: str) -> str:
        return f"{self._settings.TARGET_BASE_URL}/search/user?q={quote(query)}"

    def profile_url(self, handle: str) -> str:
        return f"{self._settings.TARGET_BASE_URL}/@{quote(handle)}"

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def search(
        self, query: str, limit: int = 5, timeout: float | None = None
    ) -> list[UserRecord]:
        """Users matching ``query``, best match first, at most ``limit``."""
        query = _require_text(query, "query")
        _require_limit(limit, MAX_SEARCH_RESULTS)

        flight = Flight("search", query)
        return await self._run(flight, self._search(flight, query, limit), timeout)

    async def fetch_profile(
        self, handle: str, timeout: float | None = None
    ) -> UserProfile | None:
        """Profile for ``handle``, or None if it is private or doesn't exist."""
        handle = normalize_handle(handle)
        flight = Flight("profile", handle)
        return await self._run(flight, self._profile(flight, handle), timeout)

    async def search_batch(
        self, queries: list[str], limit: int = 1, timeout: float | None = None
    ) -> list[BatchQueryResult]:
        """Search several keywords concurrently, one result entry per query.

        A query that fails gets ``success=False`` and the error message; the
        others are unaffected. Each query queues at the admission gate like
        any other search and has its own deadline.
        """
        if not isinstance(queries, list) or not queries:
            raise InvalidArgument("queries must be a non-empty list")
        if len(queries) > MAX_BATCH_QUERIES:
            raise InvalidArgument(f"At most {MAX_BATCH_QUERIES} queries allowed per batch")
        _require_limit(limit, MAX_BATCH_RESULTS)

        outcomes = await asyncio.gather(
            *(self.search(query, limit, timeout) for query in queries),
            return_exceptions=True,
        )
        results = []
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, ScrapeError):
                results.append(BatchQueryResult(query=str(query), success=False, error=outcome.message))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(
                    BatchQueryResult(query=query, success=True, users=outcome, count=len(outcome))
                )
        logger.info(
            "Batch of %d queries: %d succeeded",
            len(results), sum(1 for r in results if r.success),
        )
        return results

    # ------------------------------------------------------------------
    # Flights
    # ------------------------------------------------------------------

    async def _run(self, flight: Flight, work, timeout: float | None):
        timeout = self._settings.SCRAPE_TIMEOUT_SECONDS if timeout is None else timeout
        status = "error"
        with scrape_context(flight.operation, flight.target):
            try:
                result = await asyncio.wait_for(work, timeout=timeout)
                status = "success" if result else "empty"
                flight.advance(FlightState.COMPLETED)
                return result
            except asyncio.TimeoutError as e:
                status = "timeout"
                if flight.state is FlightState.QUEUED:
                    admission_timeouts_total.inc()
                logger.warning(
                    "%s %r exceeded %.1fs deadline (last state: %s)",
                    flight.operation, flight.target, timeout, flight.state.value,
                )
                flight.advance(FlightState.FAILED)
                raise Exhausted(timeout=timeout) from e
            except ScrapeError as e:
                status = e.code
                flight.advance(FlightState.FAILED)
                raise
            except Exception as e:
                logger.exception("%s %r failed in state %s", flight.operation, flight.target, flight.state.value)
                flight.advance(FlightState.FAILED)
                raise ScrapeError(f"{flight.operation} failed: {e}") from e
            finally:
                scrape_operations_total.labels(operation=flight.operation, status=status).inc()
                scrape_duration_seconds.labels(operation=flight.operation).observe(flight.elapsed)

    async def _load(
        self,
        flight: Flight,
        session: WorkSession,
        url: str,
        wait_until: str,
        markers: list[str],
        budget_ms: int,
    ) -> str:
        """Navigate, probe and return whatever HTML the page holds.

        Navigation faults are recorded on the flight rather than raised, so
        the caller can still extract from a partially rendered page.
        """
        try:
            await session.navigate(url, wait_until=wait_until, timeout_ms=self._settings.NAVIGATION_TIMEOUT_MS)
        except (NavigationTimeout, NavigationError) as e:
            flight.navigation_fault = e
        flight.advance(FlightState.NAVIGATED)

        if not isinstance(flight.navigation_fault, NavigationError):
            result = await probe(session.page, markers, budget_ms)
            if not result.ready:
                readiness_probe_misses_total.labels(operation=flight.operation).inc()
        flight.advance(FlightState.PROBED)
        return await session.content()

    async def _search(self, flight: Flight, query: str, limit: int) -> list[UserRecord]:
        async with self.gate.slot():
            flight.advance(FlightState.SLOT_ACQUIRED)
            browser = await self.engine.ensure_ready()
            flight.advance(FlightState.ENGINE_READY)
            async with open_session(browser, self._settings) as session:
                flight.advance(FlightState.SESSION_OPEN)
                html = await self._load(
                    flight, session, self.search_url(query), "domcontentloaded",
                    SEARCH_READY_MARKERS, self._settings.SEARCH_PROBE_BUDGET_MS,
                )
                users = extract_users(html, limit)
                flight.advance(FlightState.EXTRACTED)
            flight.advance(FlightState.SESSION_CLOSED)
        flight.advance(FlightState.SLOT_RELEASED)

        if not users and flight.navigation_fault is not None:
            raise flight.navigation_fault
        if flight.navigation_fault is not None:
            logger.info(
                "Search %r degraded: %d users from a partial page", query, len(users)
            )
        extracted_records_total.labels(operation="search").inc(len(users))
        logger.info("Found %d users for %r in %.2fs", len(users), query, flight.elapsed)
        return users

    async def _profile(self, flight: Flight, handle: str) -> UserProfile | None:
        async with self.gate.slot():
            flight.advance(FlightState.SLOT_ACQUIRED)
            browser = await self.engine.ensure_ready()
            flight.advance(FlightState.ENGINE_READY)
            async with open_session(browser, self._settings) as session:
                flight.advance(FlightState.SESSION_OPEN)
                html = await self._load(
                    flight, session, self.profile_url(handle), "networkidle",
                    PROFILE_READY_MARKERS, self._settings.PROFILE_PROBE_BUDGET_MS,
                )
                soup = parse_document(html)
                profile = None
                if has_any_marker(soup, PROFILE_CONFIRM_MARKERS):
                    profile = extract_profile(soup, handle, session.current_url)
                flight.advance(FlightState.EXTRACTED)
            flight.advance(FlightState.SESSION_CLOSED)
        flight.advance(FlightState.SLOT_RELEASED)

        if profile is None:
            if flight.navigation_fault is not None:
                raise flight.navigation_fault
            logger.info("Profile %r not found or private", handle)
            return None
        extracted_records_total.labels(operation="profile").inc()
        logger.info("Fetched profile %r in %.2fs", handle, flight.elapsed)
        return profile


# ---------------------------------------------------------------------------
# Process-wide instance used by the API layer
# ---------------------------------------------------------------------------

_scraper: UserScraper | None = None


def get_scraper() -> UserScraper:
    global _scraper
    if _scraper is None:
        _scraper = UserScraper()
    return _scraper


async def shutdown_scraper(grace_seconds: float | None = None) -> None:
    """Close the shared browser, waiting at most ``grace_seconds``."""
    if _scraper is None:
        return
    grace = default_settings.ENGINE_SHUTDOWN_GRACE_SECONDS if grace_seconds is None else grace_seconds
    try:
        await asyncio.wait_for(_scraper.engine.shutdown(), timeout=grace)
    except asyncio.TimeoutError:
        logger.error("Browser engine did not shut down within %.1fs", grace)
