import logging
import sys
from contextlib import asynccontextmanager

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from prometheus_client import make_asgi_app

from batchkeeper.api.v1 import admin, auth, batches, enrollments
from batchkeeper.config import Settings, get_settings
from batchkeeper.core.cookies import clear_session_cookies
from batchkeeper.db.session import create_engine, create_session_maker, init_db
from batchkeeper.services.content_fetch import ResourceFetcher
from batchkeeper.services.errors import (
    BatchNotFound,
    BatchUnavailable,
    ProviderAuthError,
    ProviderError,
    SessionError,
)
from batchkeeper.services.notifier import TelegramNotifier
from batchkeeper.services.provider_client import ProviderClient
from batchkeeper.services.reconciler import BatchCredentialReconciler
from batchkeeper.services.session_auth import SessionAuthenticator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("batchkeeper").setLevel(logging.DEBUG)
logger = logging.getLogger(__name__)


def parse_cron_hours(value: str) -> list[int]:
    """Comma-separated hours 0-23; invalid input disables the schedule."""
    try:
        hours = [int(h.strip()) for h in value.split(",") if h.strip()]
    except ValueError:
        logger.warning("Invalid RECONCILE_CRON_HOURS %r; in-process schedule disabled", value)
        return []
    return [h for h in hours if 0 <= h <= 23]


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    settings.validate_production()
    await init_db(app.state.engine)

    scheduler = AsyncIOScheduler()
    for hour in parse_cron_hours(settings.reconcile_cron_hours):
        scheduler.add_job(app.state.reconciler.run, "cron", hour=hour, minute=0, kwargs={"trigger": "schedule"})
    scheduler.start()
    yield
    scheduler.shutdown()
    await app.state.http_client.aclose()
    await app.state.engine.dispose()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, enable_hsts: bool = False):
        super().__init__(app)
        self.enable_hsts = enable_hsts

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


async def _session_error_handler(request: Request, exc: SessionError):
    response = JSONResponse(status_code=401, content={"detail": exc.detail})
    clear_session_cookies(response, request.app.state.settings)
    return response


async def _batch_not_found_handler(request: Request, exc: BatchNotFound):
    return JSONResponse(status_code=404, content={"detail": "Batch not found"})


async def _batch_unavailable_handler(request: Request, exc: BatchUnavailable):
    return JSONResponse(status_code=403, content={"success": False, "message": exc.message})


async def _provider_error_handler(request: Request, exc: ProviderError):
    if isinstance(exc, ProviderAuthError):
        return JSONResponse(status_code=403, content={"detail": "Provider session expired; log in again"})
    status = exc.status_code if exc.status_code and 400 <= exc.status_code < 600 else 502
    logger.warning("Provider error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"detail": exc.message})


def create_app(settings: Settings | None = None, http_client: httpx.AsyncClient | None = None) -> FastAPI:
    """Build the app with its components on app.state. Components are created eagerly so tests can skip lifespan."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Batchkeeper API",
        description="Batch credential lifecycle: sessions, provider token refresh, content fallback",
        version="0.1.0",
        lifespan=lifespan,
    )
    engine = create_engine(settings)
    http_client = http_client or httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
    provider = ProviderClient(settings, http_client)
    session_maker = create_session_maker(engine)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_maker = session_maker
    app.state.http_client = http_client
    app.state.provider = provider
    app.state.authenticator = SessionAuthenticator(settings)
    app.state.reconciler = BatchCredentialReconciler(
        settings, provider, session_maker, TelegramNotifier(settings, http_client)
    )
    app.state.fetcher = ResourceFetcher(provider)

    limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(SessionError, _session_error_handler)
    app.add_exception_handler(BatchNotFound, _batch_not_found_handler)
    app.add_exception_handler(BatchUnavailable, _batch_unavailable_handler)
    app.add_exception_handler(ProviderError, _provider_error_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.enable_hsts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(batches.router, prefix="/api/v1")
    app.include_router(enrollments.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    app.mount("/metrics", make_asgi_app())

    @app.get("/health")
    @limiter.exempt
    def health(request: Request):
        return {"status": "ok"}

    return app


app = create_app()
