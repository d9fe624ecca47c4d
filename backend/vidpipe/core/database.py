"""Async SQLAlchemy engine and session factory."""

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from vidpipe.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for catalog and notification tables."""


engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)

async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create the tables the pipeline writes to when they do not exist.

    Production schemas are owned by the catalog service; this serves local
    SQLite deployments and tests.
    """
    # Register the mapped tables on Base.metadata
    from vidpipe.modules.catalog import models as _catalog_models  # noqa: F401
    from vidpipe.modules.notification import models as _notification_models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
