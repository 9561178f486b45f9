"""
Storefront Billing - FastAPI Application

Main entry point for the billing API: plans, subscriptions, dunning,
coupons, gifts, bundles, payment methods and payment-provider webhooks.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront_billing.config.settings import settings
from storefront_billing.infrastructure.exceptions import (
    BillingError,
    ConcurrencyConflictError,
    DuplicateError,
    NotFoundError,
    PaymentGatewayError,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info(f"Storefront Billing starting in {settings.environment} mode...")

    if settings.database_url:
        try:
            from storefront_billing.infrastructure.db.database import init_db
            await init_db()
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.warning(f"Database initialization skipped: {e}")

    yield

    if settings.database_url:
        try:
            from storefront_billing.infrastructure.db.database import close_db
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.warning(f"Database shutdown error: {e}")

    logger.info("Storefront Billing shutting down...")


app = FastAPI(
    title="Storefront Billing",
    description="Subscription billing, dunning and promotions",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors, invalid transitions included."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(ConcurrencyConflictError)
@app.exception_handler(DuplicateError)
async def conflict_error_handler(request: Request, exc: BillingError):
    """State changed underneath the request, or a unique value is taken."""
    return JSONResponse(
        status_code=409,
        content=exc.to_dict(),
    )


@app.exception_handler(PaymentGatewayError)
async def gateway_error_handler(request: Request, exc: PaymentGatewayError):
    """Handle payment provider failures."""
    logger.error(f"Payment gateway error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=502,
        content=exc.to_dict(),
    )


@app.exception_handler(BillingError)
async def general_error_handler(request: Request, exc: BillingError):
    """Handle all other application errors."""
    logger.error(f"Unhandled billing error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "storefront-billing"}


# ============================================================================
# Import and register routers
# ============================================================================

from storefront_billing.api.routes import (  # noqa: E402
    billing_history,
    bundles,
    coupons,
    gifts,
    payment_methods,
    plans,
    retries,
    subscriptions,
    webhooks,
)

app.include_router(plans.router, prefix="/api", tags=["Plans"])
# Before subscriptions so /subscriptions/process-retries is not read as an id
app.include_router(retries.router, prefix="/api", tags=["Batch Triggers"])
app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(billing_history.router, prefix="/api", tags=["Billing History"])
app.include_router(coupons.router, prefix="/api", tags=["Coupons"])
app.include_router(gifts.router, prefix="/api", tags=["Gift Subscriptions"])
app.include_router(bundles.router, prefix="/api", tags=["Bundles"])
app.include_router(payment_methods.router, prefix="/api", tags=["Payment Methods"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
