"""Record extraction from rendered search and profile pages.

Everything here is a pure function of the HTML: no browser, no I/O. Each
record facet (avatar, display name, counts, ...) has its own ordered tuple
of strategies, tried in order until one yields a usable value:

    semantic ``data-e2e`` marker -> generic tag -> enclosing card
    -> obfuscated presentation class (last resort)

A strategy takes a node and yields candidate strings. Faults inside a
strategy are logged and skipped; a facet whose strategies all come up empty
defaults to "" without affecting the rest of the record.
"""
from __future__ import annotations

import functools
import logging
import re
from typing import Callable, Iterable, Iterator
from urllib.parse import unquote

from bs4 import BeautifulSoup, Tag

from profile_harvest.core.exceptions import InvalidArgument
from profile_harvest.schemas.users import (
    MAX_SEARCH_RESULTS,
    MediaRef,
    UserProfile,
    UserRecord,
)

logger = logging.getLogger(__name__)

Strategy = Callable[[Tag], Iterable[str]]

HANDLE_RE = re.compile(r"/@([^/?#\s]+)")
COUNT_RE = re.compile(r"\d[\d.,]*\s*[KMBkmb]?")

# Structural marker: every user link carries /@handle in its path.
USER_ANCHOR_SELECTOR = 'a[href*="/@"]'

MAX_CARD_DEPTH = 4
MAX_RECENT_MEDIA = 5
NOISE_TEXTS = frozenset({"Break reminders", "Follow", "Following", "Message"})


def parse_document(html: str | BeautifulSoup) -> BeautifulSoup:
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html or "", "lxml")


def handle_from_url(url: str | None) -> str | None:
    """Extract the handle from a ``/@handle`` URL path segment."""
    if not url:
        return None
    match = HANDLE_RE.search(url)
    if not match:
        return None
    return unquote(match.group(1)).strip() or None


def clamp_limit(limit) -> int:
    """Validate ``limit`` and cap it at MAX_SEARCH_RESULTS."""
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidArgument(f"limit must be an integer, got {limit!r}")
    if limit < 1:
        raise InvalidArgument(f"limit must be positive, got {limit}")
    if limit > MAX_SEARCH_RESULTS:
        logger.debug("limit %d capped at %d", limit, MAX_SEARCH_RESULTS)
        return MAX_SEARCH_RESULTS
    return limit


# ---------------------------------------------------------------------------
# Strategy building blocks
# ---------------------------------------------------------------------------


def text_of(selector: str) -> Strategy:
    """Text of each element matching ``selector``."""

    def strategy(node: Tag) -> Iterator[str]:
        for el in node.select(selector):
            yield el.get_text(" ", strip=True)

    strategy.__name__ = f"text_of({selector!r})"
    return strategy


def leaf_text_of(selector: str) -> Strategy:
    """Like ``text_of`` but skips wrappers, only elements without child tags."""

    def strategy(node: Tag) -> Iterator[str]:
        for el in node.select(selector):
            if el.find(True) is None:
                yield el.get_text(" ", strip=True)

    strategy.__name__ = f"leaf_text_of({selector!r})"
    return strategy


def attr_of(selector: str, *attrs: str) -> Strategy:
    """First non-empty of ``attrs`` on each element matching ``selector``."""

    def strategy(node: Tag) -> Iterator[str]:
        for el in node.select(selector):
            for attr in attrs:
                value = el.get(attr)
                if isinstance(value, list):
                    value = " ".join(value)
                if value:
                    yield value

    strategy.__name__ = f"attr_of({selector!r})"
    return strategy


def own_attr(*attrs: str) -> Strategy:
    """Attributes of the node itself."""

    def strategy(node: Tag) -> Iterator[str]:
        for attr in attrs:
            value = node.get(attr)
            if value:
                yield value

    strategy.__name__ = f"own_attr{attrs!r}"
    return strategy


def present(selector: str) -> Strategy:
    """Yields "true" if anything matches ``selector``."""

    def strategy(node: Tag) -> Iterator[str]:
        if node.select_one(selector) is not None:
            yield "true"

    strategy.__name__ = f"present({selector!r})"
    return strategy


def labelled_count(selector: str, label: str) -> Strategy:
    """Count out of elements whose text carries ``label`` ("1.2M Followers")."""

    def strategy(node: Tag) -> Iterator[str]:
        for el in node.select(selector):
            text = el.get_text(" ", strip=True)
            if label.lower() in text.lower():
                match = COUNT_RE.search(text)
                yield match.group(0) if match else text

    strategy.__name__ = f"labelled_count({selector!r}, {label!r})"
    return strategy


def count_before_label(tag: str, label: str) -> Strategy:
    """``<strong>1.2M</strong><span>Followers</span>`` style pairs."""

    def strategy(node: Tag) -> Iterator[str]:
        for el in node.select(tag):
            sibling = el.find_next_sibling()
            if sibling is not None and label.lower() in sibling.get_text().lower():
                yield el.get_text(" ", strip=True)

    strategy.__name__ = f"count_before_label({tag!r}, {label!r})"
    return strategy


def card_of(anchor: Tag) -> Tag | None:
    """Largest ancestor (a few levels up) that only links to the anchor's user."""
    handle = handle_from_url(anchor.get("href"))
    card = None
    for depth, parent in enumerate(anchor.parents):
        if depth >= MAX_CARD_DEPTH or parent.name in ("body", "html", "[document]"):
            break
        handles = {handle_from_url(a.get("href")) for a in parent.select(USER_ANCHOR_SELECTOR)}
        if handles - {handle}:
            break
        card = parent
    return card


def in_card(inner: Strategy) -> Strategy:
    """Run ``inner`` against the anchor's enclosing card instead of the anchor."""

    def strategy(node: Tag) -> Iterator[str]:
        card = card_of(node)
        if card is not None:
            yield from inner(card)

    strategy.__name__ = f"in_card({getattr(inner, '__name__', inner)})"
    return strategy


def first_success(
    node: Tag,
    strategies: Iterable[Strategy],
    accept: Callable[[str], bool] | None = None,
) -> str:
    """First non-empty, accepted candidate over ``strategies``, else ""."""
    for strategy in strategies:
        try:
            for value in strategy(node):
                value = (value or "").strip()
                if value and (accept is None or accept(value)):
                    return value
        except Exception as e:
            logger.debug("Strategy %s failed: %s", getattr(strategy, "__name__", strategy), e)
    return ""


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------

SEARCH_AVATAR_STRATEGIES: tuple[Strategy, ...] = (
    attr_of('[data-e2e="search-user-avatar"] img', "src", "data-src"),
    attr_of("img", "src", "data-src"),
    in_card(attr_of('[data-e2e="search-user-avatar"] img', "src", "data-src")),
    in_card(attr_of("img", "src", "data-src")),
)

SEARCH_NAME_STRATEGIES: tuple[Strategy, ...] = (
    text_of('[data-e2e="search-user-nickname"]'),
    text_of('[data-e2e="search-user-unique-id"]'),
    leaf_text_of("h3, h4, p, span, div"),
    in_card(text_of('[data-e2e="search-user-nickname"]')),
    text_of('[class*="PUserSubTitle"], [class*="UserSubTitle"]'),
    in_card(text_of('[class*="PUserSubTitle"], [class*="UserSubTitle"]')),
    in_card(leaf_text_of('[class*="css-"]')),
)

SEARCH_VERIFIED_STRATEGIES: tuple[Strategy, ...] = (
    present('[data-e2e*="verified"]'),
    in_card(present('[data-e2e*="verified"]')),
    present('[class*="Verified"], [class*="verified"]'),
)


def _is_display_name(value: str, handle: str) -> bool:
    lowered = value.lower()
    return (
        lowered != handle.lower()
        and lowered != f"@{handle}".lower()
        and value not in NOISE_TEXTS
    )


def extract_users(html: str | BeautifulSoup, limit: int) -> list[UserRecord]:
    """Users on a search results page, in document order.

    Duplicate handles keep their first position. At most ``limit`` records
    are returned; an empty list means "no matches", not failure.
    """
    limit = clamp_limit(limit)
    soup = parse_document(html)

    users: list[UserRecord] = []
    seen: set[str] = set()
    for anchor in soup.select(USER_ANCHOR_SELECTOR):
        handle = handle_from_url(anchor.get("href"))
        if not handle or handle in seen:
            continue
        seen.add(handle)

        users.append(
            UserRecord(
                handle=handle,
                display_name=first_success(
                    anchor,
                    SEARCH_NAME_STRATEGIES,
                    accept=functools.partial(_is_display_name, handle=handle),
                ),
                avatar_url=first_success(anchor, SEARCH_AVATAR_STRATEGIES),
                verified=bool(first_success(anchor, SEARCH_VERIFIED_STRATEGIES)),
            )
        )
        if len(users) >= limit:
            break

    return users


# ---------------------------------------------------------------------------
# Profile page
# ---------------------------------------------------------------------------

PROFILE_NAME_STRATEGIES: tuple[Strategy, ...] = (
    text_of('[data-e2e="user-subtitle"]'),
    text_of('[data-e2e="user-title"]'),
    text_of(".user-title"),
    text_of("h1"),
    text_of("h2"),
    text_of('[class*="DisplayName"], [class*="displayName"], [class*="username"]'),
)

PROFILE_BIO_STRATEGIES: tuple[Strategy, ...] = (
    text_of('[data-e2e="user-bio"]'),
    text_of(".user-bio"),
    text_of('[class*="ShareDesc"], [class*="UserBio"], [class*="bio"], [class*="description"]'),
)

PROFILE_AVATAR_STRATEGIES: tuple[Strategy, ...] = (
    attr_of('[data-e2e="user-avatar"] img', "src", "data-src"),
    attr_of(".user-avatar img", "src", "data-src"),
    attr_of('[class*="ImgAvatar"] img, img[class*="ImgAvatar"]', "src"),
    attr_of("img", "src"),
)

PROFILE_VERIFIED_STRATEGIES: tuple[Strategy, ...] = (
    present('[data-e2e="verified-icon"]'),
    present(".verified-icon"),
    present('[class*="verified"], [class*="Verified"]'),
)


def _count_strategies(key: str, label: str) -> tuple[Strategy, ...]:
    return (
        text_of(f'[data-e2e="{key}-count"]'),
        text_of(f".{key}-count"),
        count_before_label("strong", label),
        labelled_count(f'[class*="{label}"], [class*="{label.lower()}"]', label),
    )


FOLLOWERS_STRATEGIES = _count_strategies("followers", "Follower")
FOLLOWING_STRATEGIES = _count_strategies("following", "Following")
LIKES_STRATEGIES = _count_strategies("likes", "Like")

MEDIA_ITEM_SELECTORS = (
    '[data-e2e="user-post-item"]',
    '[data-e2e="video-item"]',
    ".video-item",
    "video",
)

MEDIA_SRC_STRATEGIES: tuple[Strategy, ...] = (
    own_attr("src"),
    attr_of("video", "src"),
    attr_of("source", "src"),
    attr_of('a[href*="/video/"]', "href"),
)

MEDIA_THUMBNAIL_STRATEGIES: tuple[Strategy, ...] = (
    own_attr("poster"),
    attr_of("video", "poster"),
    attr_of("img", "src", "data-src"),
)


def extract_media(soup: BeautifulSoup, limit: int = MAX_RECENT_MEDIA) -> list[MediaRef]:
    """Up to ``limit`` recent media items from the first selector that matches."""
    for selector in MEDIA_ITEM_SELECTORS:
        try:
            items = soup.select(selector)
        except Exception as e:
            logger.debug("Media selector %r failed: %s", selector, e)
            continue
        if not items:
            continue
        return [
            MediaRef(
                index=i + 1,
                src=first_success(item, MEDIA_SRC_STRATEGIES),
                thumbnail=first_success(item, MEDIA_THUMBNAIL_STRATEGIES),
            )
            for i, item in enumerate(items[:limit])
        ]
    return []


def extract_profile(
    html: str | BeautifulSoup,
    requested_handle: str,
    final_url: str = "",
) -> UserProfile:
    """Profile facets from a rendered profile page.

    The handle comes from the page URL after redirects, falling back to the
    handle that was requested (itself the URL segment navigated to).
    """
    soup = parse_document(html)
    handle = handle_from_url(final_url) or requested_handle.lstrip("@")
    display_name = first_success(soup, PROFILE_NAME_STRATEGIES)

    return UserProfile(
        handle=handle,
        display_name=display_name,
        avatar_url=first_success(soup, PROFILE_AVATAR_STRATEGIES),
        bio=first_success(
            soup, PROFILE_BIO_STRATEGIES, accept=lambda v: v != display_name
        ),
        followers=first_success(soup, FOLLOWERS_STRATEGIES),
        following=first_success(soup, FOLLOWING_STRATEGIES),
        likes=first_success(soup, LIKES_STRATEGIES),
        verified=bool(first_success(soup, PROFILE_VERIFIED_STRATEGIES)),
        recent_media=extract_media(soup),
    )
