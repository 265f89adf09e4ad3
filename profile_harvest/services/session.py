import asyncio
import logging
from contextlib import asynccontextmanager

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from profile_harvest.config import Settings, settings as default_settings
from profile_harvest.core.exceptions import (
    EngineUnavailable,
    NavigationError,
    NavigationTimeout,
)
from profile_harvest.core.metrics import active_browser_contexts

logger = logging.getLogger(__name__)

CLOSE_TIMEOUT_SECONDS = 10.0

_BROWSER_CLOSED_PHRASES = (
    "browser has been closed",
    "target page, context or browser has been closed",
    "connection closed",
    "browser closed",
)


def is_browser_closed_error(exc: Exception) -> bool:
    """Check if an exception indicates the browser process has died."""
    msg = str(exc).lower()
    return any(phrase in msg for phrase in _BROWSER_CLOSED_PHRASES)


async def _run_to_completion(coro):
    """Await ``coro`` even if the caller is cancelled meanwhile.

    The cancellation is re-raised once the coroutine has finished, so
    whatever runs after (slot release) never overtakes it.
    """
    task = asyncio.ensure_future(coro)
    cancelled = False
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.done():
                break
            cancelled = True
    if cancelled:
        task.exception()  # mark retrieved; the cancel takes precedence
        raise asyncio.CancelledError()
    return task.result()


class WorkSession:
    """One request's private browser context and page."""

    def __init__(self, context: BrowserContext, page: Page):
        self.context = context
        self.page = page
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current_url(self) -> str:
        try:
            return self.page.url
        except Exception:
            return ""

    async def navigate(
        self,
        url: str,
        wait_until: str = "domcontentloaded",
        timeout_ms: int = 30000,
    ) -> None:
        """Load ``url``.

        Raises ``NavigationTimeout`` when the load signal didn't fire in
        time; the page may still hold a partial document worth extracting.
        Other load failures raise ``NavigationError``.
        """
        logger.info("Navigating to %s (wait_until=%s)", url, wait_until)
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            logger.warning("Navigation timed out after %dms: %s", timeout_ms, url)
            raise NavigationTimeout(url=url) from e
        except PlaywrightError as e:
            if is_browser_closed_error(e):
                raise EngineUnavailable(f"Browser closed during navigation: {e}") from e
            raise NavigationError(f"Navigation to {url} failed: {e}") from e

    async def content(self) -> str:
        """Rendered HTML of the page, or "" if it can no longer be read."""
        try:
            return await self.page.content()
        except PlaywrightError as e:
            logger.warning("Could not read page content: %s", e)
            return ""

    async def close(self) -> None:
        """Close page and context. Only the first call does anything."""
        if self._closed:
            return
        self._closed = True
        active_browser_contexts.dec()
        errors: list[Exception] = []
        for name, closer in (("page", self.page.close), ("context", self.context.close)):
            try:
                await asyncio.wait_for(closer(), timeout=CLOSE_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                errors.append(RuntimeError(f"Closing {name} timed out"))
            except Exception as e:
                errors.append(e)
        if errors:
            raise errors[-1]


async def _new_context(browser: Browser, config: Settings) -> BrowserContext:
    try:
        return await browser.new_context(
            user_agent=config.BROWSER_USER_AGENT,
            viewport={"width": config.VIEWPORT_WIDTH, "height": config.VIEWPORT_HEIGHT},
            locale="en-US",
            ignore_https_errors=True,
            java_script_enabled=True,
        )
    except Exception as e:
        if is_browser_closed_error(e):
            raise EngineUnavailable(f"Browser closed before context creation: {e}") from e
        raise


@asynccontextmanager
async def open_session(browser: Browser, config: Settings | None = None):
    """Open a fresh context + page on ``browser`` and close it on exit.

    Close runs exactly once on every exit path and is not cut short by
    cancellation. If the body failed, a close error is logged and the body's
    error wins; otherwise the close error propagates.
    """
    config = config or default_settings
    context = await _new_context(browser, config)
    try:
        page = await context.new_page()
    except BaseException:
        try:
            await _run_to_completion(context.close())
        except Exception as close_err:
            logger.warning("Closing context after failed new_page errored: %s", close_err)
        raise

    active_browser_contexts.inc()
    session = WorkSession(context, page)
    try:
        yield session
    except BaseException:
        try:
            await _run_to_completion(session.close())
        except Exception as close_err:
            logger.warning("Session close failed after error: %s", close_err)
        raise
    else:
        await _run_to_completion(session.close())
