"""
Main FastAPI application
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import time
from prometheus_client import make_asgi_app, Counter, Histogram, REGISTRY
import uuid

from app.config import settings
from app.core.database import init_db, close_db
from app.core.events import event_dispatcher
from app.core.exceptions import register_exception_handlers
from app.core.logging import setup_logging
from app.api.v1.api import api_router
from app.api.v1.endpoints import health
from app.listeners import register_listeners
from app.services.email_service import email_service
from app.services.payment_service import payment_service

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Prometheus metrics - use try/except to avoid duplicate registration
try:
    REQUEST_COUNT = Counter(
        "app_requests_total",
        "Total requests",
        ["method", "endpoint", "status"]
    )
    REQUEST_DURATION = Histogram(
        "app_request_duration_seconds",
        "Request duration",
        ["method", "endpoint"]
    )
except ValueError:
    # Metrics already registered, get them from registry
    REQUEST_COUNT = REGISTRY._names_to_collectors["app_requests_total"]
    REQUEST_DURATION = REGISTRY._names_to_collectors["app_request_duration_seconds"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()
    logger.info("Database connection established")

    event_dispatcher.clear()
    register_listeners(event_dispatcher, payment_service.synchronizer, email_service)
    logger.info("Payment event listeners registered")

    yield

    # Shutdown
    logger.info("Shutting down application")

    # Let background notifications finish before the engine goes away
    await event_dispatcher.drain()

    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Venue booking payments with QiCard",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

register_exception_handlers(app)


# Request tracking middleware
@app.middleware("http")
async def track_requests(request: Request, call_next):
    """
    Track request metrics and add request ID
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Label by route template so ids do not explode cardinality
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    REQUEST_DURATION.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(duration)

    return response


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    logger.error(
        f"Internal server error: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "request_id": getattr(request.state, "request_id", None)}
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An internal server error occurred"
            }
        }
    )


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "api_docs": "/docs" if settings.DEBUG else None
    }


# Health endpoints
app.include_router(health.router, prefix="/health", tags=["Health"])

# Payment endpoints
app.include_router(api_router, prefix=settings.API_PREFIX)

# Mount Prometheus metrics endpoint
if settings.PROMETHEUS_ENABLED:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
