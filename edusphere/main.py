# edusphere/main.py

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import text

from .config import settings
from .database import async_engine, close_all_sessions
from .logging_config import setup_logging, get_logger
from .error_handlers import register_exception_handlers
from .middleware import register_middleware

from .cart.router import router as cart_router
from .wallet.router import router as wallet_router
from .orders.router import router as orders_router
from .payments.router import router as payments_router, admin_router as fraud_admin_router
from .refunds.router import router as refunds_router, admin_router as refunds_admin_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events
    """
    # ========================================================================
    # STARTUP
    # ========================================================================
    logger.info("=" * 80)
    logger.info("Starting EduSphere Checkout API")
    logger.info("=" * 80)

    logger.info(
        "Application configuration",
        extra={
            "extra_data": {
                "environment": settings.ENVIRONMENT,
                "log_level": settings.LOG_LEVEL,
                "database": settings.DATABASE_URL.split("@")[-1] if settings.DATABASE_URL else "Not configured",
                "default_currency": settings.DEFAULT_CURRENCY,
                "paypal_configured": bool(settings.PAYPAL_CLIENT_ID),
                "stripe_configured": bool(settings.STRIPE_SECRET_KEY),
                "nets_configured": bool(settings.NETS_API_KEY),
                "fraud_block": settings.FRAUD_BLOCK,
            }
        }
    )

    try:
        async with async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
    except Exception as e:
        logger.error(f"Database connection failed: {e}", exc_info=True)
        raise

    logger.info("EduSphere Checkout API is ready to accept requests")

    yield

    # ========================================================================
    # SHUTDOWN
    # ========================================================================
    logger.info("Shutting down EduSphere Checkout API")
    await close_all_sessions()


# ============================================================================
# CREATE FASTAPI APP
# ============================================================================

# Setup logging BEFORE creating the app
setup_logging()

app = FastAPI(
    title="EduSphere Checkout API",
    description="Cart, checkout, payments and refunds for the EduSphere course marketplace",
    version="1.0.0",
    lifespan=lifespan,
)

# ============================================================================
# REGISTER MIDDLEWARE (ORDER MATTERS!)
# ============================================================================
register_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# ============================================================================
# REGISTER ROUTERS
# ============================================================================

app.include_router(cart_router)
app.include_router(wallet_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(fraud_admin_router)
app.include_router(refunds_router)
app.include_router(refunds_admin_router)

logger.info("All routers registered")


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers"""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": "1.0.0"
    }


@app.get("/")
async def root():
    return {
        "message": "EduSphere Checkout API",
        "version": "1.0.0",
        "docs": "/docs"
    }
