import asyncio
import enum
import logging
import os
import sys

from playwright.async_api import async_playwright, Browser

from profile_harvest.config import Settings, settings as default_settings
from profile_harvest.core.exceptions import EngineUnavailable
from profile_harvest.core.metrics import engine_launches_total

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Chromium launch args: sandbox off for containers, low memory footprint
# ---------------------------------------------------------------------------

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=VizDisplayCompositor",
    "--disable-infobars",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--mute-audio",
]

LINUX_CHROME_PATHS = [
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
]
WINDOWS_CHROME_PATHS = [
    r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
]
MACOS_CHROME_PATHS = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
]


def platform_candidates(platform: str | None = None) -> list[str]:
    platform = platform or sys.platform
    if platform.startswith("win"):
        return WINDOWS_CHROME_PATHS
    if platform == "darwin":
        return MACOS_CHROME_PATHS
    return LINUX_CHROME_PATHS


def resolve_executable_path(
    configured: str = "", candidates: list[str] | None = None
) -> str | None:
    """Pick the Chromium binary to launch.

    Order: the configured path, then platform-default locations. ``None``
    lets Playwright fall back to its own bundled browser.
    """
    if configured:
        if os.path.isfile(configured):
            return configured
        logger.warning("Configured browser executable not found: %s", configured)

    for path in platform_candidates() if candidates is None else candidates:
        if os.path.isfile(path):
            logger.debug("Found browser executable at %s", path)
            return path
    return None


class EngineState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LAUNCHING = "launching"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


class EngineManager:
    """Owns the one shared Chromium instance.

    The browser is launched lazily on first use. Concurrent callers that find
    it missing all await the same launch task. A failed launch is reported to
    everyone waiting on it and then forgotten, so the next call tries again.
    After ``shutdown()`` or a browser crash the next ``ensure_ready()``
    launches a fresh instance. While a shutdown is in progress no launch is
    started; ``ensure_ready()`` raises ``EngineUnavailable`` instead.
    """

    def __init__(self, config: Settings | None = None, playwright_factory=async_playwright):
        self._settings = config or default_settings
        self._playwright_factory = playwright_factory
        self._playwright = None
        self._browser: Browser | None = None
        self._launching: asyncio.Task | None = None
        self._shutting_down: asyncio.Task | None = None
        self._closed = False

    @property
    def state(self) -> EngineState:
        if self._shutting_down is not None and not self._shutting_down.done():
            return EngineState.CLOSING
        if self._launching is not None and not self._launching.done():
            return EngineState.LAUNCHING
        if self._browser is not None and self._browser.is_connected():
            return EngineState.READY
        if self._closed:
            return EngineState.CLOSED
        return EngineState.UNINITIALIZED

    @property
    def is_ready(self) -> bool:
        return self.state is EngineState.READY

    def launch_options(self) -> dict:
        options: dict = {
            "headless": self._settings.BROWSER_HEADLESS,
            "args": CHROMIUM_ARGS,
        }
        executable = resolve_executable_path(self._settings.BROWSER_EXECUTABLE_PATH)
        if executable:
            options["executable_path"] = executable
        return options

    async def ensure_ready(self) -> Browser:
        if self._shutting_down is not None:
            raise EngineUnavailable("Browser engine is shutting down")

        browser = self._browser
        if browser is not None and browser.is_connected():
            return browser

        if self._launching is None or self._launching.done():
            if browser is not None:
                logger.warning("Chromium browser disconnected, relaunching")
            self._launching = asyncio.ensure_future(self._launch())
            self._launching.add_done_callback(self._launch_settled)

        # Shielded so one caller hitting its deadline doesn't abort the
        # launch everyone else is waiting on.
        return await asyncio.shield(self._launching)

    def _launch_settled(self, task: asyncio.Task) -> None:
        if self._launching is task:
            self._launching = None
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Launch task settled with error: %s", task.exception())

    async def _launch(self) -> Browser:
        await self._release_resources()

        options = self.launch_options()
        logger.info(
            "Launching Chromium (headless=%s, executable=%s)",
            options["headless"],
            options.get("executable_path", "bundled"),
        )
        try:
            playwright = await self._playwright_factory().start()
        except Exception as e:
            engine_launches_total.labels(status="error").inc()
            raise EngineUnavailable(f"Playwright failed to start: {e}") from e

        try:
            browser = await playwright.chromium.launch(**options)
        except Exception as e:
            engine_launches_total.labels(status="error").inc()
            try:
                await playwright.stop()
            except Exception as stop_err:
                logger.warning("Playwright stop after failed launch errored: %s", stop_err)
            raise EngineUnavailable(f"Chromium launch failed: {e}") from e

        self._playwright = playwright
        self._browser = browser
        self._closed = False
        engine_launches_total.labels(status="success").inc()
        logger.info("Chromium launched")
        return browser

    async def _release_resources(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning("Error closing browser: %s", e)
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning("Error stopping Playwright: %s", e)

    async def shutdown(self) -> None:
        """Close the browser if one exists. Safe to call at any time.

        Concurrent calls share one teardown. When it returns, no browser
        started by this manager is left running.
        """
        if self._shutting_down is None:
            self._shutting_down = asyncio.ensure_future(self._teardown())
            self._shutting_down.add_done_callback(self._shutdown_settled)
        # Teardown keeps going if this caller gives up waiting.
        await asyncio.shield(self._shutting_down)

    def _shutdown_settled(self, task: asyncio.Task) -> None:
        if self._shutting_down is task:
            self._shutting_down = None
        if not task.cancelled() and task.exception() is not None:
            logger.error("Browser engine teardown failed: %s", task.exception())

    async def _teardown(self) -> None:
        had_engine = False
        while True:
            launching = self._launching
            if launching is not None and not launching.done():
                try:
                    await launching
                except EngineUnavailable:
                    pass
                continue
            if self._browser is None and self._playwright is None:
                break
            had_engine = True
            await self._release_resources()
        self._closed = True
        if had_engine:
            logger.info("Browser engine shut down")
