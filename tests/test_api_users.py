"""Integration tests for /v1/users endpoints."""

import logging

import pytest
from httpx import AsyncClient

from profile_harvest.core.exceptions import (
    EngineUnavailable,
    Exhausted,
    InvalidArgument,
    NavigationTimeout,
)
from profile_harvest.schemas.users import BatchQueryResult, MediaRef, UserProfile, UserRecord

USERS = [
    UserRecord(handle="dancequeen", display_name="Dance Queen", avatar_url="https://cdn.test/1.jpg"),
    UserRecord(handle="dancedad", verified=True),
]


class TestSearchEndpoint:
    @pytest.mark.asyncio
    async def test_get_search(self, client: AsyncClient, stub_scraper):
        """GET /v1/users/search returns users in order with the count."""
        stub_scraper.search.return_value = USERS
        resp = await client.get("/v1/users/search", params={"query": "dance", "max_results": 2})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["query"] == "dance"
        assert data["count"] == 2
        assert [u["handle"] for u in data["users"]] == ["dancequeen", "dancedad"]
        assert data["users"][1]["display_name"] == "dancedad"
        assert data["users"][1]["verified"] is True
        stub_scraper.search.assert_awaited_once_with("dance", 2)

    @pytest.mark.asyncio
    async def test_get_search_default_limit(self, client: AsyncClient, stub_scraper):
        """max_results defaults to 5."""
        await client.get("/v1/users/search", params={"query": "dance"})
        stub_scraper.search.assert_awaited_once_with("dance", 5)

    @pytest.mark.asyncio
    async def test_post_search(self, client: AsyncClient, stub_scraper):
        """POST /v1/users/search accepts a JSON body."""
        stub_scraper.search.return_value = USERS[:1]
        resp = await client.post("/v1/users/search", json={"query": "dance", "max_results": 1})
        assert resp.status_code == 200
        assert resp.json()["count"] == 1

    @pytest.mark.asyncio
    async def test_empty_result(self, client: AsyncClient, stub_scraper):
        """No matches is a 200 with an empty list."""
        resp = await client.get("/v1/users/search", params={"query": "zzzz"})
        assert resp.status_code == 200
        assert resp.json()["users"] == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{"query": "dance", "max_results": 0}, {"query": "dance", "max_results": 21}, {}])
    async def test_request_validation(self, client: AsyncClient, stub_scraper, params):
        """Out-of-range max_results or a missing query is rejected before scraping."""
        resp = await client.get("/v1/users/search", params=params)
        assert resp.status_code == 422
        stub_scraper.search.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,status,code",
        [
            (InvalidArgument("query must be a non-empty string"), 400, "invalid_argument"),
            (EngineUnavailable("Chromium launch failed"), 503, "engine_unavailable"),
            (NavigationTimeout(url="https://example.test"), 504, "navigation_timeout"),
            (Exhausted(timeout=60), 504, "exhausted"),
        ],
    )
    async def test_errors_mapped_to_envelope(self, client: AsyncClient, stub_scraper, error, status, code):
        """Scrape errors render as {success: false, error, code} with their status."""
        stub_scraper.search.side_effect = error
        resp = await client.get("/v1/users/search", params={"query": "dance"})
        assert resp.status_code == status
        data = resp.json()
        assert data["success"] is False
        assert data["code"] == code
        assert data["error"] == error.message


class TestBatchSearchEndpoint:
    @pytest.mark.asyncio
    async def test_batch_search(self, client: AsyncClient, stub_scraper):
        """POST /v1/users/search/batch reports every query and the success count."""
        stub_scraper.search_batch.return_value = [
            BatchQueryResult(query="dance", success=True, users=USERS[:1], count=1),
            BatchQueryResult(query="cook", success=False, error="Navigation timed out"),
        ]
        resp = await client.post(
            "/v1/users/search/batch", json={"queries": ["dance", "cook"], "max_results": 1}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["total_queries"] == 2
        assert data["successful_queries"] == 1
        assert data["max_results"] == 1
        assert data["results"][0]["users"][0]["handle"] == "dancequeen"
        assert data["results"][1] == {
            "query": "cook",
            "success": False,
            "users": [],
            "count": 0,
            "error": "Navigation timed out",
        }
        stub_scraper.search_batch.assert_awaited_once_with(["dance", "cook"], 1)

    @pytest.mark.asyncio
    async def test_batch_default_max_results(self, client: AsyncClient, stub_scraper):
        """max_results defaults to 1 for a batch."""
        await client.post("/v1/users/search/batch", json={"queries": ["dance"]})
        stub_scraper.search_batch.assert_awaited_once_with(["dance"], 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"queries": ["a", "b", "c", "d", "e", "f"]},
            {"queries": []},
            {"queries": ["dance"], "max_results": 6},
            {"queries": ["dance"], "max_results": 0},
            {"queries": [""]},
            {},
        ],
    )
    async def test_batch_validation(self, client: AsyncClient, stub_scraper, body):
        """More than 5 queries, an empty list or max_results outside 1..5 is a 422."""
        resp = await client.post("/v1/users/search/batch", json=body)
        assert resp.status_code == 422
        stub_scraper.search_batch.assert_not_awaited()


class TestProfileEndpoint:
    @pytest.mark.asyncio
    async def test_profile_found(self, client: AsyncClient, stub_scraper):
        """GET /v1/users/{handle} returns the profile with its media."""
        stub_scraper.fetch_profile.return_value = UserProfile(
            handle="dancequeen",
            display_name="Dance Queen",
            followers="1.2M",
            recent_media=[MediaRef(index=1, src="https://www.tiktok.com/@dancequeen/video/1")],
        )
        resp = await client.get("/v1/users/dancequeen")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["handle"] == "dancequeen"
        assert data["user"]["followers"] == "1.2M"
        assert data["user"]["recent_media"][0]["index"] == 1
        stub_scraper.fetch_profile.assert_awaited_once_with("dancequeen")

    @pytest.mark.asyncio
    async def test_profile_not_found(self, client: AsyncClient, stub_scraper):
        """A private or missing account is a 404 envelope, not an error."""
        resp = await client.get("/v1/users/nobody")
        assert resp.status_code == 404
        data = resp.json()
        assert data["success"] is False
        assert data["user"] is None
        assert "not found" in data["message"]

    @pytest.mark.asyncio
    async def test_post_profile(self, client: AsyncClient, stub_scraper):
        """POST /v1/users/profile passes the handle through as given."""
        stub_scraper.fetch_profile.return_value = UserProfile(handle="dancequeen")
        resp = await client.post("/v1/users/profile", json={"handle": "@dancequeen"})
        assert resp.status_code == 200
        assert resp.json()["user"]["display_name"] == "dancequeen"
        stub_scraper.fetch_profile.assert_awaited_once_with("@dancequeen")

    @pytest.mark.asyncio
    async def test_user_named_search(self, client: AsyncClient, stub_scraper):
        """/v1/users/@search reaches the profile route, not keyword search."""
        stub_scraper.fetch_profile.return_value = UserProfile(handle="search")
        resp = await client.get("/v1/users/@search")
        assert resp.status_code == 200
        assert resp.json()["handle"] == "search"
        stub_scraper.fetch_profile.assert_awaited_once_with("@search")
        stub_scraper.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_profile_invalid_handle(self, client: AsyncClient, stub_scraper):
        """An unusable handle maps to 400 invalid_argument."""
        stub_scraper.fetch_profile.side_effect = InvalidArgument("Invalid handle: '@'")
        resp = await client.post("/v1/users/profile", json={"handle": "@"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_argument"


class TestRequestId:
    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient):
        """A well-formed X-Request-ID is echoed back unchanged."""
        resp = await client.get("/v1/users/search", params={"query": "x"}, headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client: AsyncClient):
        """A request without an ID gets one."""
        resp = await client.get("/")
        assert resp.headers.get("X-Request-ID")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("incoming", ["x" * 129, "bad id with spaces", "a<b>"])
    async def test_unsafe_request_id_replaced(self, client: AsyncClient, incoming):
        """Oversized or unsafe IDs are replaced with a generated one."""
        resp = await client.get("/v1/users/search", params={"query": "x"}, headers={"X-Request-ID": incoming})
        rid = resp.headers["X-Request-ID"]
        assert rid != incoming
        assert len(rid) == 32

    @pytest.mark.asyncio
    async def test_finished_request_logged(self, client: AsyncClient, caplog):
        """Each request is logged with method, path and status."""
        with caplog.at_level(logging.INFO, logger="profile_harvest.middleware.request_id"):
            await client.get("/v1/users/search", params={"query": "x"}, headers={"X-Request-ID": "trace-7"})
        record = next(r for r in caplog.records if "/v1/users/search" in r.getMessage())
        assert "-> 200" in record.getMessage()
