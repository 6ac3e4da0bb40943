from fastapi import APIRouter, Depends, Query, Request

from rxautomate.middleware.auth import verify_firebase_token
from rxautomate.middleware.rate_limit import limiter, ADMIN_RATE_LIMIT
from rxautomate.nhs.rate_limiter import RateLimiter

router = APIRouter(prefix="/api/admin")


@router.get("/rate-limit-events")
@limiter.limit(ADMIN_RATE_LIMIT)
async def rate_limit_events(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    user: dict = Depends(verify_firebase_token),
) -> dict:
    """Most recent outbound rate-limit overflow events, newest first."""
    rate_limiter: RateLimiter = request.app.state.rate_limiter
    events = await rate_limiter.recent_overflow(limit)
    return {"events": events, "count": len(events)}
