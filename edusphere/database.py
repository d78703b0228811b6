# edusphere/database.py
from typing import AsyncGenerator

from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)

from .config import settings
from .logging_config import get_logger

# Get logger for this module
logger = get_logger(__name__)

# ============================================================================
# ASYNC ENGINE CONFIGURATION
# ============================================================================

def _make_async_url(sync_url: str) -> str:
    """Convert sync database URLs to their async driver equivalents"""
    if sync_url.startswith("postgresql://"):
        return sync_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if sync_url.startswith("sqlite://"):
        return sync_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return sync_url


ASYNC_DATABASE_URL = _make_async_url(settings.DATABASE_URL)
IS_POSTGRES = ASYNC_DATABASE_URL.startswith("postgresql")


def _engine_options(url: str) -> dict:
    # Pool sizing and asyncpg connect args only apply to PostgreSQL
    if not url.startswith("postgresql"):
        return {"pool_pre_ping": True, "echo": False}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 5,
        "pool_timeout": 10,
        "pool_recycle": 3600,
        "echo": False,  # Set to True for SQL debugging
        "connect_args": {
            "statement_cache_size": 20,
            "prepared_statement_cache_size": 10,
            "command_timeout": 60,
            "server_settings": {
                "jit": "off",
                # Wallet/order rows are read under FOR UPDATE, READ COMMITTED is enough
                "default_transaction_isolation": "read committed"
            }
        },
    }


async_engine = create_async_engine(ASYNC_DATABASE_URL, **_engine_options(ASYNC_DATABASE_URL))

async_session = async_sessionmaker(
    bind=async_engine,
    expire_on_commit=False,
    class_=AsyncSession,
)

logger.info(
    "Async database engine configured",
    extra={"extra_data": {
        "dialect": async_engine.dialect.name,
        "pooled": IS_POSTGRES,
        "environment": settings.ENVIRONMENT
    }}
)

# ============================================================================
# BASE MODEL
# ============================================================================

Base = declarative_base()

# Import all models to ensure they're registered with Base
from .users import models as users_models  # noqa: E402,F401
from .courses import models as courses_models  # noqa: E402,F401
from .cart import models as cart_models  # noqa: E402,F401
from .wallet import models as wallet_models  # noqa: E402,F401
from .orders import models as orders_models  # noqa: E402,F401
from .payments import models as payments_models  # noqa: E402,F401
from .refunds import models as refunds_models  # noqa: E402,F401

# ============================================================================
# DEPENDENCIES
# ============================================================================

async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Async DB session dependency for FastAPI endpoints.

    Automatically handles:
    - Transaction rollback on exceptions
    - Session cleanup

    Usage:
        @router.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_async_db)):
            ...
    """
    async with async_session() as session:
        try:
            yield session
        except Exception as e:
            logger.error(
                "Error in async database session",
                extra={"extra_data": {"error": str(e)}},
                exc_info=True
            )
            await session.rollback()
            raise
        finally:
            await session.close()


async def close_all_sessions():
    """Dispose the engine's connection pool (application shutdown)"""
    try:
        await async_engine.dispose()
        logger.info("All database connections closed successfully")
    except Exception as e:
        logger.error(
            "Error closing database connections",
            extra={"extra_data": {"error": str(e)}},
            exc_info=True
        )
