import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

# Configure before fitlink modules create their loggers
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("fitlink").setLevel(logging.DEBUG)

from fitlink.api.v1 import activities, backfill, oauth, sync, training_sessions, webhooks
from fitlink.config import settings
from fitlink.core.rate_limit import limiter
from fitlink.db.session import init_db
from fitlink.errors import FitlinkError
from fitlink.services.backfill import scheduled_reconcile
from fitlink.services.http_client import close_http_client, init_http_client
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def _check_production_config() -> None:
    """Refuse to boot a production deployment that would store provider secrets unencrypted."""
    if settings.app_env != "production":
        return
    if len(settings.encryption_key.split(",")[0].strip()) < 32:
        raise RuntimeError("ENCRYPTION_KEY (a Fernet key) is required in production")
    settings.validate_jwt_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    _check_production_config()
    await init_db()
    init_http_client(timeout=settings.http_timeout_seconds)
    scheduler.add_job(
        scheduled_reconcile,
        "interval",
        minutes=settings.backfill_reconcile_interval_minutes,
        id="backfill_reconcile",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Backfill reconciliation every %s min", settings.backfill_reconcile_interval_minutes)
    try:
        yield
    finally:
        scheduler.shutdown(wait=False)
        await close_http_client()


app = FastAPI(
    title="Fitlink API",
    description="Strava and Garmin activity ingestion: OAuth, sync, backfill, webhooks, unified activities",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(FitlinkError)
async def fitlink_error_handler(request: Request, exc: FitlinkError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(SECURITY_HEADERS)
    if settings.enable_hsts:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)

for module in (oauth, sync, backfill, webhooks, activities, training_sessions):
    app.include_router(module.router, prefix="/api/v1")

app.mount("/metrics", make_asgi_app())


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
