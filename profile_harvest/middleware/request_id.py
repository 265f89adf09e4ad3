"""Request ID middleware.

Every request gets an ID: the caller's ``X-Request-ID`` when it is a short
token of safe characters, otherwise a fresh UUID4 hex. The ID lives in a
ContextVar for the length of the request so scraper logs (including those
from the per-query tasks of a batch search) carry it, and it is echoed back
in the response header. Each finished request is logged with its status and
duration.
"""

import contextvars
import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_REQUEST_ID = re.compile(r"[A-Za-z0-9._:-]{1,128}")

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


def resolve_request_id(incoming: str | None) -> str:
    """Accept the caller's ID if it is safe to log and echo, else mint one."""
    if incoming and _VALID_REQUEST_ID.fullmatch(incoming):
        return incoming
    return uuid.uuid4().hex


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = request_id_var.set(rid)
        start = time.monotonic()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            logger.info(
                "%s %s -> %d in %.3fs",
                request.method, request.url.path, response.status_code, time.monotonic() - start,
            )
            return response
        finally:
            request_id_var.reset(token)


def get_request_id() -> str:
    """Current request ID, empty outside a request."""
    return request_id_var.get()
