"""User search and profile endpoints.

Endpoints:
  GET  /v1/users/search?query=...&max_results=5 — search users by keyword
  POST /v1/users/search                        — same, JSON body
  POST /v1/users/search/batch                  — up to 5 keywords at once
  GET  /v1/users/{handle}                      — single user profile
  POST /v1/users/profile                       — same, JSON body

The literal path /v1/users/search belongs to the search route, so a user
whose handle is "search" is fetched as /v1/users/@search or through
POST /v1/users/profile.
"""

import logging
import time

from fastapi import APIRouter, Depends, Query, Response

from profile_harvest.config import settings
from profile_harvest.schemas.users import (
    MAX_SEARCH_RESULTS,
    BatchSearchRequest,
    BatchSearchResponse,
    ErrorResponse,
    UserProfileRequest,
    UserProfileResponse,
    UserSearchRequest,
    UserSearchResponse,
)
from profile_harvest.services.scraper import UserScraper, get_scraper

router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid query, handle or limit"},
    503: {"model": ErrorResponse, "description": "Browser engine could not be started"},
    504: {"model": ErrorResponse, "description": "Navigation or overall deadline exceeded"},
}


async def _search(scraper: UserScraper, query: str, max_results: int) -> UserSearchResponse:
    start = time.time()
    users = await scraper.search(query, max_results)
    return UserSearchResponse(
        query=query,
        count=len(users),
        time_taken=round(time.time() - start, 3),
        users=users,
    )


async def _profile(scraper: UserScraper, handle: str, response: Response) -> UserProfileResponse:
    start = time.time()
    profile = await scraper.fetch_profile(handle)
    elapsed = round(time.time() - start, 3)
    if profile is None:
        response.status_code = 404
        return UserProfileResponse(
            success=False,
            handle=handle,
            time_taken=elapsed,
            message="User not found or profile is private",
        )
    return UserProfileResponse(
        handle=profile.handle,
        time_taken=elapsed,
        message=f"Found user profile in {elapsed}s",
        user=profile,
    )


@router.get(
    "/search",
    response_model=UserSearchResponse,
    responses=_ERROR_RESPONSES,
    summary="Search users",
    description="Search users by keyword. Results keep the site's ranking order, deduplicated by handle.",
)
async def search_users(
    query: str = Query(..., min_length=1, max_length=100),
    max_results: int = Query(settings.DEFAULT_SEARCH_RESULTS, ge=1, le=MAX_SEARCH_RESULTS),
    scraper: UserScraper = Depends(get_scraper),
):
    return await _search(scraper, query, max_results)


@router.post(
    "/search",
    response_model=UserSearchResponse,
    responses=_ERROR_RESPONSES,
    summary="Search users (JSON body)",
)
async def search_users_post(
    request: UserSearchRequest,
    scraper: UserScraper = Depends(get_scraper),
):
    return await _search(scraper, request.query, request.max_results)


@router.post(
    "/search/batch",
    response_model=BatchSearchResponse,
    responses=_ERROR_RESPONSES,
    summary="Search users for several keywords",
    description="Search up to 5 keywords concurrently. Each query gets its own result entry; "
    "a failed query is reported with success=false and does not fail the batch.",
)
async def search_users_batch(
    request: BatchSearchRequest,
    scraper: UserScraper = Depends(get_scraper),
):
    start = time.time()
    results = await scraper.search_batch(request.queries, request.max_results)
    return BatchSearchResponse(
        max_results=request.max_results,
        total_queries=len(results),
        successful_queries=sum(1 for r in results if r.success),
        time_taken=round(time.time() - start, 3),
        results=results,
    )


@router.post(
    "/profile",
    response_model=UserProfileResponse,
    responses=_ERROR_RESPONSES,
    summary="Get user profile (JSON body)",
)
async def get_profile_post(
    request: UserProfileRequest,
    response: Response,
    scraper: UserScraper = Depends(get_scraper),
):
    return await _profile(scraper, request.handle, response)


@router.get(
    "/{handle}",
    response_model=UserProfileResponse,
    responses=_ERROR_RESPONSES,
    summary="Get user profile",
    description="Fetch a user's profile. Returns 404 with success=false when the account is private or does not exist. "
    "The handle may carry a leading '@'; use /v1/users/@search for a user named 'search'.",
)
async def get_profile(
    handle: str,
    response: Response,
    scraper: UserScraper = Depends(get_scraper),
):
    return await _profile(scraper, handle, response)
