import logging

from fastapi import APIRouter, Request

from rxautomate.config import get_settings
from rxautomate.middleware.rate_limit import limiter, HEALTH_RATE_LIMIT
from rxautomate.models import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
@limiter.limit(HEALTH_RATE_LIMIT)
async def health_check(request: Request) -> HealthResponse:
    settings = get_settings()
    checks: dict[str, str] = {}
    status = "healthy"

    # Firestore (critical: audit sink)
    firestore = getattr(request.app.state, "firestore", None)
    if firestore is not None:
        try:
            ok = await firestore.health_check()
            checks["firestore"] = "ok" if ok else "fail"
        except Exception:
            logger.warning("Firestore health check failed", exc_info=True)
            checks["firestore"] = "fail"
    else:
        checks["firestore"] = "not_configured"

    # Window store (optional: the limiter fails open without it)
    rate_limiter = getattr(request.app.state, "rate_limiter", None)
    if rate_limiter is not None:
        try:
            ok = await rate_limiter.health_check()
            checks["rate_limit_store"] = "ok" if ok else "fail"
        except Exception:
            logger.warning("Rate limit store health check failed", exc_info=True)
            checks["rate_limit_store"] = "fail"
    else:
        checks["rate_limit_store"] = "not_configured"

    if checks["firestore"] == "fail":
        status = "unhealthy"
    elif checks["rate_limit_store"] == "fail":
        status = "degraded"

    return HealthResponse(
        status=status,
        environment=settings.env,
        checks=checks,
    )
