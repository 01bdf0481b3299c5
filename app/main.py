"""
Billing Reconciler API - Main Application
=========================================

FastAPI application entry point with middleware configuration
and route registration.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import newrelic.agent

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.db.session import init_db, close_db
from app.services.cache import init_redis, close_redis
from app.core.errors import setup_exception_handlers
from app.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# =============================================================================
# New Relic Transaction Enrichment Middleware (Raw ASGI)
# =============================================================================

class NewRelicTransactionMiddleware:
    """
    Raw ASGI middleware that adds custom attributes to every New Relic
    transaction.

    Raw ASGI rather than BaseHTTPMiddleware so the route handler runs in
    the same task and New Relic's contextvars-based spans stay attached.

    Captures: response status, latency, HTTP method, route pattern, client
    IP, the webhook provider and the checkout user (when known).
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500  # default until we capture the real one

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000

            txn = newrelic.agent.current_transaction()
            if txn:
                route = scope.get("route")
                route_path = route.path if route else scope.get("path", "unknown")

                client = scope.get("client")
                client_ip = client[0] if client else "unknown"

                newrelic.agent.add_custom_attributes([
                    ("http.method", scope.get("method", "")),
                    ("http.route", route_path),
                    ("http.status_code", status_code),
                    ("http.duration_ms", round(duration_ms, 2)),
                    ("http.client_ip", client_ip),
                    ("environment", settings.ENVIRONMENT),
                ])

                state = scope.get("state") or {}
                provider = state.get("webhook_provider")
                if provider:
                    newrelic.agent.add_custom_attribute("billing.provider", provider)
                user_id = state.get("user_id")
                if user_id:
                    newrelic.agent.add_custom_attribute("enduser.id", str(user_id))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Connects the database and Redis on startup and closes them on shutdown.
    """
    logger.info("Starting %s...", settings.APP_NAME)

    # Continue startup even if DB fails (for health checks)
    try:
        await init_db()
    except Exception as e:
        logger.warning("Database connection failed: %s", e)

    try:
        await init_redis()
    except Exception as e:
        logger.warning("Redis connection failed: %s", e)

    yield

    logger.info("Shutting down %s...", settings.APP_NAME)
    await close_db()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title="Billing Reconciler API",
    description="""
## Billing reconciliation and checkout

Ingests payment provider webhooks and keeps subscriptions, the payment
ledger and user entitlements consistent. Also issues hosted checkout
sessions and confirms them when the buyer returns from the provider.

### Providers
- **Paystack**: checkout, webhooks, transaction re-verification
- **Flutterwave**: checkout, webhooks, transaction re-verification
- **Stripe**: webhooks

### Rate Limits
- Webhooks: 100 requests/minute per IP
- Checkout: 30 requests/minute per IP
    """,
    version=VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse, "description": "Validation or signature error"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Payment belongs to another user"},
        404: {"model": ErrorResponse, "description": "Subscription not found"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
        503: {"model": ErrorResponse, "description": "Payment provider unavailable"},
    },
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# New Relic transaction enrichment (adds custom attrs to every transaction)
app.add_middleware(NewRelicTransactionMiddleware)

# Setup exception handlers
setup_exception_handlers(app)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns the current status of the API.
    """
    return {
        "status": "healthy",
        "version": VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "Billing Reconciler API",
        "version": VERSION,
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

from app.api.v1 import checkout, webhooks
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
app.include_router(checkout.router, prefix="/api/v1/checkout", tags=["Checkout"])
