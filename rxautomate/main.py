import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rxautomate.api import admin, eps, health, prescriptions
from rxautomate.audit.writer import AuditWriter
from rxautomate.config import get_settings
from rxautomate.errors import RxAutomateError
from rxautomate.logging_config import configure_logging
from rxautomate.middleware.error_handler import (
    generic_exception_handler,
    rxautomate_exception_handler,
)
from rxautomate.middleware.rate_limit import limiter
from rxautomate.nhs.bsa import BSAService
from rxautomate.nhs.eps import EPSService
from rxautomate.nhs.rate_limiter import InMemoryWindowStore, RateLimiter, RedisWindowStore
from rxautomate.nhs.response_cache import ResponseCache
from rxautomate.nhs.spine import NHSSpineService
from rxautomate.services.firestore import FirestoreService
from rxautomate.services.inventory import InventoryService
from rxautomate.services.metrics import init_metrics
from rxautomate.services.notifications import NotificationService
from rxautomate.services.pubsub import PubSubService
from rxautomate.validation.service import PrescriptionValidationService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services at startup, clean up at shutdown."""
    settings = get_settings()
    configure_logging("nhs-gateway", settings.env)
    init_metrics(settings.gcp_project_id)

    firestore = FirestoreService(settings)
    pubsub = PubSubService(settings)
    audit_writer = AuditWriter(firestore, pubsub)

    if settings.redis_url:
        window_store = RedisWindowStore.from_url(settings.redis_url)
    else:
        logger.warning("REDIS_URL not set, rate limiting is process-local")
        window_store = InMemoryWindowStore()
    rate_limiter = RateLimiter(
        window_store,
        settings.rate_limits,
        window_seconds=settings.rate_limit_window_seconds,
        bypass=settings.bypass_rate_limit,
    )
    cache = ResponseCache(max_entries=settings.response_cache_max_entries)
    inventory = InventoryService(firestore, audit_writer)

    spine = NHSSpineService(settings, settings.nhs_api_base_url, rate_limiter, cache, audit_writer)
    eps_service = EPSService(
        settings, settings.eps_base_url, rate_limiter, cache, audit_writer, inventory=inventory
    )
    bsa = BSAService(settings, settings.bsa_api_base_url, rate_limiter, cache, audit_writer)

    app.state.firestore = firestore
    app.state.rate_limiter = rate_limiter
    app.state.spine = spine
    app.state.eps = eps_service
    app.state.bsa = bsa
    app.state.validation = PrescriptionValidationService(
        firestore, audit_writer, NotificationService(pubsub)
    )

    logger.info("RXautomate NHS gateway started (env=%s)", settings.env)
    yield

    # Cleanup
    await spine.close()
    await eps_service.close()
    await bsa.close()
    await window_store.close()
    await firestore.close()
    logger.info("RXautomate NHS gateway shut down")


app = FastAPI(
    title="RXautomate NHS Gateway",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting (inbound, per client IP)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_exception_handler(RxAutomateError, rxautomate_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# CORS
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining"],
)

app.include_router(health.router)
app.include_router(eps.router)
app.include_router(prescriptions.router)
app.include_router(admin.router)
