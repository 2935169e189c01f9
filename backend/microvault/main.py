from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import os
import time

from fastapi import FastAPI, Response, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from . import __version__
from .database import Store
from .errors import RegistryError, StoreUnavailable
from .routes import auth, users, strains, audit

logger = logging.getLogger(__name__)

dsn = os.getenv("SENTRY_DSN")
if dsn:
    sentry_sdk.init(dsn=dsn, integrations=[FastApiIntegration()])

REQUEST_COUNT = Counter("request_count", "Total requests", ["method", "endpoint"])
REQUEST_LATENCY = Histogram(
    "request_latency_seconds", "Request latency", ["endpoint"]
)

PUBLIC_PATHS = {
    "/api/auth/login",
    "/api/auth/register",
}

GENERIC_ERROR = {"detail": "Internal server error"}


def _error_response(exc: RegistryError) -> JSONResponse:
    if exc.status_code >= 500:
        return JSONResponse(GENERIC_ERROR, status_code=exc.status_code)
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


async def handle_registry_error(request: Request, exc: RegistryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code, exc_info=exc)
    return _error_response(exc)


async def handle_store_error(request: Request, exc: SQLAlchemyError):
    logger.error("%s %s store failure", request.method, request.url.path, exc_info=exc)
    return _error_response(StoreUnavailable())


async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return JSONResponse(
        {"detail": "Validation failed", "reason": "validation_error", "errors": errors},
        status_code=400,
    )


def metrics_label(request: Request) -> str:
    """Route template for the request, so ids do not become label values."""

    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def audit_routes(app: FastAPI):
    from fastapi.routing import APIRoute
    from .auth import get_current_principal

    for route in app.routes:
        if isinstance(route, APIRoute) and route.path.startswith("/api") and route.path not in PUBLIC_PATHS:
            calls = [dep.call for dep in route.dependant.dependencies]
            if get_current_principal not in calls:
                raise RuntimeError(f"Route {route.path} missing authentication")


def create_app(store: Store | None = None) -> FastAPI:
    """Build the API around ``store``; without one, the app opens and closes its own."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if store is not None:
            app.state.store = store
            yield
            return
        owned = Store()
        owned.create_schema()
        app.state.store = owned
        logger.info("Record store opened")
        try:
            yield
        finally:
            owned.close()
            logger.info("Record store closed")

    app = FastAPI(title="MicroVault API", version=__version__, lifespan=lifespan)
    if store is not None:
        app.state.store = store

    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = auth.limiter
    app.add_exception_handler(RateLimitExceeded, lambda r, e: Response("Too Many Requests", status_code=429))
    if os.getenv("TESTING") != "1":
        app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(RegistryError, handle_registry_error)
    app.add_exception_handler(SQLAlchemyError, handle_store_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    @app.middleware("http")
    async def record_metrics(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        endpoint = metrics_label(request)
        REQUEST_COUNT.labels(request.method, endpoint).inc()
        REQUEST_LATENCY.labels(endpoint).observe(time.time() - start)
        return response

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        }

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(strains.router)
    app.include_router(audit.router)

    audit_routes(app)
    return app


app = create_app()
