"""FastAPI Application Entry Point."""

import logging
import os

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.core.rate_limit import limiter

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking
# IMPORTANT: Must be done BEFORE creating FastAPI app
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            CeleryIntegration(),
        ],
        # Payment and identity data must not leave the service
        send_default_pii=False,
        release=f"prepx-backend@{os.getenv('GIT_COMMIT', 'dev')}",
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )
    logger.info(f"Sentry initialized (environment: {settings.SENTRY_ENVIRONMENT})")
else:
    logger.info("Sentry DSN not set - Error tracking disabled")

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="UPSC PrepX - subscriptions, payments, entitlements and referrals",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Configure CORS with strict security rules
# - allow_origins: Validated whitelist from settings (no wildcards)
# - allow_methods / allow_headers: explicit lists
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Razorpay-Signature",
    ],
    max_age=settings.CORS_MAX_AGE,
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return a generic 500; the traceback stays in the server log."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def validate_gateway_settings() -> None:
    """
    Check payment and identity settings at startup.

    In production a placeholder JWT secret or missing gateway keys stop the
    process; elsewhere they only log a warning. An empty webhook secret
    disables webhook signature checks and is always logged.

    Raises:
        SystemExit: If production settings are unusable
    """
    problems = []
    if "change-me" in settings.JWT_SECRET_KEY:
        problems.append("JWT_SECRET_KEY is a placeholder")
    if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
        problems.append("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not set")

    if not settings.RAZORPAY_WEBHOOK_SECRET:
        logger.warning("RAZORPAY_WEBHOOK_SECRET not set - webhook signatures will NOT be verified")

    for problem in problems:
        logger.warning(f"Configuration: {problem}")
    if problems and settings.APP_ENV == "production":
        logger.error("Refusing to start with incomplete production configuration")
        raise SystemExit(1)


@app.on_event("startup")
async def startup_event() -> None:
    """Run validation checks on application startup."""
    validate_gateway_settings()


@app.get("/api/v1/health", tags=["health"])
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": settings.APP_NAME,
            "environment": settings.APP_ENV,
        },
    )


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "Welcome to UPSC PrepX API",
        "docs": "/api/docs",
        "health": "/api/v1/health",
    }


# Include API v1 routers
from app.api.v1 import api_router

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
