from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coupon_engine.core.config import settings


def engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # Concurrent redemptions queue on SQLite's write lock rather than failing immediately.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


engine = create_async_engine(settings.database_url, future=True, echo=False, **engine_options(settings.database_url))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency providing one session per request; redemption commits inside it."""
    async with SessionLocal() as session:
        yield session
