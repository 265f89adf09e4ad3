"""Pydantic schemas for user search and profile lookups."""

from typing import Annotated

from pydantic import BaseModel, Field, model_validator

MAX_SEARCH_RESULTS = 20
MAX_BATCH_QUERIES = 5
MAX_BATCH_RESULTS = 5


# --- Records ---

class MediaRef(BaseModel):
    index: int = Field(..., ge=1, description="1-indexed position on the profile grid")
    src: str = ""
    thumbnail: str = ""


class UserRecord(BaseModel):
    handle: str = Field(..., min_length=1, description="Handle taken from the /@handle URL segment")
    display_name: str = ""
    avatar_url: str = ""
    verified: bool = False

    @model_validator(mode="after")
    def _default_display_name(self):
        if not self.display_name:
            self.display_name = self.handle
        return self


class UserProfile(UserRecord):
    bio: str = ""
    followers: str = Field("", description="Raw follower count text, e.g. '1.2M'")
    following: str = ""
    likes: str = ""
    recent_media: list[MediaRef] = Field(default_factory=list, max_length=5)


# --- Requests ---

class UserSearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=100, description="Search keyword")
    max_results: int = Field(5, ge=1, le=MAX_SEARCH_RESULTS, description="Number of users to return")


class UserProfileRequest(BaseModel):
    handle: str = Field(..., min_length=1, max_length=100, description="User handle, with or without '@'")


class BatchSearchRequest(BaseModel):
    queries: list[Annotated[str, Field(min_length=1, max_length=100)]] = Field(
        ..., min_length=1, max_length=MAX_BATCH_QUERIES, description="Search keywords, searched concurrently"
    )
    max_results: int = Field(1, ge=1, le=MAX_BATCH_RESULTS, description="Users to return per query")


# --- Responses ---

class UserSearchResponse(BaseModel):
    success: bool = True
    query: str
    count: int = 0
    time_taken: float = Field(..., description="API response time in seconds")
    users: list[UserRecord] = []


class UserProfileResponse(BaseModel):
    success: bool = True
    handle: str
    time_taken: float
    message: str = ""
    user: UserProfile | None = None


class BatchQueryResult(BaseModel):
    query: str
    success: bool
    users: list[UserRecord] = []
    count: int = 0
    error: str | None = None


class BatchSearchResponse(BaseModel):
    success: bool = True
    max_results: int
    total_queries: int
    successful_queries: int
    time_taken: float = Field(..., description="API response time in seconds")
    results: list[BatchQueryResult] = []


class PoolStats(BaseModel):
    capacity: int
    in_use: int
    waiting: int


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
