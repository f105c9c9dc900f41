"""Team billing gateway - FastAPI application entrypoint."""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import BaseModel, Field

from app.config import AppConfig, load_config, log_config_snapshot
from app.correlation import CorrelationIdMiddleware, RequestIdLogFilter, get_request_id
from app.routers import stripe_callbacks
from billing.service import BillingGateway
from billing.stripe_client import build_stripe_client
from billing.webhooks import SignatureVerificationError, WebhookError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdLogFilter())
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Response body of /health."""
    status: str = Field(..., description="Always 'healthy' while the process serves requests")
    service: str
    version: str
    environment: str = Field(..., description="APP_ENVIRONMENT the process was started with")
    started_at: datetime


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


async def webhook_error_handler(request: Request, exc: WebhookError):
    """Reject unverifiable webhooks with a non-2xx so Stripe retries them."""
    request_id = get_request_id(request) or "unknown"

    if isinstance(exc, SignatureVerificationError):
        logger.warning(f"Webhook signature verification failed: {exc}", extra={"request_id": request_id})
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    logger.error(f"Webhook error: {exc}", extra={"request_id": request_id})
    return JSONResponse(status_code=400, content={"error": str(exc)})


def create_app(
    config: Optional[AppConfig] = None,
    gateway: Optional[BillingGateway] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Loaded configuration (read from the environment if omitted)
        gateway: Billing gateway (built from config.billing if omitted)
    """
    if config is None:
        config = load_config()
    log_config_snapshot(config)

    if gateway is None:
        gateway = BillingGateway(build_stripe_client(config.billing), config.billing)

    application = FastAPI(
        title="Team Billing Gateway",
        description="Stripe checkout, subscriptions and webhooks for teams",
        version=config.service_version,
    )
    application.state.config = config
    application.state.billing_gateway = gateway
    application.state.started_at = datetime.now(timezone.utc)

    # Middleware stack (added in reverse execution order)
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(CorrelationIdMiddleware)

    application.add_exception_handler(WebhookError, webhook_error_handler)

    application.include_router(stripe_callbacks.router)

    @application.on_event("startup")
    async def startup_event():
        """Initialize database tables."""
        from persistence.db import init_db
        init_db()
        logger.info("Database initialized")

    @application.get("/health", response_model=HealthResponse)
    async def health():
        """Health check with service observability."""
        return {
            "status": "healthy",
            "service": config.service_name,
            "version": config.service_version,
            "environment": config.environment,
            "started_at": application.state.started_at,
        }

    return application


app = create_app()
