import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from profile_harvest.config import settings
from profile_harvest.core.metrics import get_metrics, get_metrics_content_type
from profile_harvest.services.engine import EngineState
from profile_harvest.services.scraper import UserScraper, get_scraper

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/health",
    summary="Liveness check",
    description="Returns HTTP 200 while the process is running, with browser status and admission pool stats.",
)
async def liveness(scraper: UserScraper = Depends(get_scraper)):
    """Liveness probe — returns 200 if the process is running."""
    return {
        "status": "healthy",
        "browser": scraper.engine.state.value,
        "pool": scraper.gate.stats().model_dump(),
    }


@router.get(
    "/health/ready",
    summary="Readiness check",
    description="HTTP 200 when requests can be served. The browser launches lazily, so "
    "'uninitialized' counts as ready; a closing or closed engine does not.",
)
async def readiness(scraper: UserScraper = Depends(get_scraper)):
    """Readiness probe — checks the browser engine state."""
    state = scraper.engine.state
    ok = state not in (EngineState.CLOSING, EngineState.CLOSED)
    return Response(
        content=json.dumps(
            {
                "status": "ready" if ok else "not ready",
                "checks": {"browser": state.value},
                "pool": scraper.gate.stats().model_dump(),
            }
        ),
        status_code=200 if ok else 503,
        media_type="application/json",
    )


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Application metrics in Prometheus exposition format. HTTP 404 if metrics are disabled.",
)
async def metrics():
    """Prometheus metrics endpoint."""
    if not settings.METRICS_ENABLED:
        return Response(content="Metrics disabled", status_code=404)

    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
