"""
Database engine and session factory.

WHY: Services commit through UnitOfWork, so the request-scoped session
only has to be opened, rolled back when a handler fails mid-transaction,
and closed. Nothing here commits on the caller's behalf.
"""

from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, sizing the pool only for server databases."""
    options = {"echo": echo, "pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    return create_async_engine(url, **options)


engine = build_engine(settings.async_database_url, echo=settings.DEBUG)

# expire_on_commit=False keeps loaded rows readable after UnitOfWork commits
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield one session per request.

    Reads never open a write transaction worth keeping, and mutations have
    already committed inside their UnitOfWork by the time the handler
    returns, so anything still pending here is discarded.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()
