"""Bounded wait for "enough of the page has rendered to extract".

The probe races one selector wait per acceptance marker under a shared
deadline and succeeds as soon as any of them attaches. A miss is a
degraded-confidence signal for the caller, never an error.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    ready: bool
    matched: str | None
    elapsed_ms: float


async def probe(page, selectors: list[str], budget_ms: int) -> ProbeResult:
    """Wait until any of ``selectors`` is attached, within ``budget_ms``.

    Every wait gets the full shared deadline, so a slow or broken selector
    cannot use up time the others could have succeeded in. When several
    resolve in the same tick, the earliest in ``selectors`` wins.
    """
    start = time.monotonic()
    if not selectors or budget_ms <= 0:
        return ProbeResult(ready=False, matched=None, elapsed_ms=0.0)

    async def _wait(selector: str) -> str:
        await page.wait_for_selector(selector, state="attached", timeout=budget_ms)
        return selector

    tasks = [asyncio.ensure_future(_wait(sel)) for sel in selectors]
    deadline = start + budget_ms / 1000
    pending = set(tasks)
    matched: str | None = None
    try:
        while pending and matched is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            for task in tasks:
                if task not in done:
                    continue
                exc = task.exception()
                if exc is None:
                    matched = task.result()
                    break
                logger.debug("Readiness wait failed: %s", exc)
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in tasks:
            if task.done() and not task.cancelled():
                task.exception()

    elapsed_ms = (time.monotonic() - start) * 1000
    if matched is None:
        logger.warning(
            "No acceptance marker within %dms, extracting anyway (low confidence)",
            budget_ms,
        )
    else:
        logger.debug("Content ready via %r after %.0fms", matched, elapsed_ms)
    return ProbeResult(ready=matched is not None, matched=matched, elapsed_ms=elapsed_ms)


def has_any_marker(soup: BeautifulSoup, selectors: list[str]) -> bool:
    """Confirmation step: is any acceptance marker present in the document?"""
    for selector in selectors:
        try:
            if soup.select_one(selector) is not None:
                return True
        except Exception as e:
            logger.debug("Bad marker selector %r: %s", selector, e)
    return False
