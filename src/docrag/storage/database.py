"""Postgres engine and transactional sessions for docrag.

One async engine serves ingestion, retrieval, the semantic cache and the
CLI. Pool sizing comes from the ``db_*`` settings; SQL echo follows
``log_level=DEBUG``. Connections open lazily, so importing this module never
touches the database.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from docrag.config import Settings, settings

logger = logging.getLogger(__name__)

# Extensions the chunk and cache tables depend on
REQUIRED_EXTENSIONS = ("vector",)

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for documents, chunks, concepts, chats and the cache."""

    metadata = MetaData(naming_convention=convention)


def engine_options(config: Settings) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine`` derived from settings."""
    return {
        "echo": config.log_level.upper() == "DEBUG",
        "pool_size": config.db_pool_size,
        "max_overflow": config.db_max_overflow,
        "pool_timeout": config.db_pool_timeout_seconds,
        "pool_pre_ping": config.db_pool_pre_ping,
    }


engine = create_async_engine(settings.database_url, **engine_options(settings))

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One transaction: commit on clean exit, roll back and re-raise otherwise."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the pgvector extension and every docrag table."""
    async with engine.begin() as conn:
        for extension in REQUIRED_EXTENSIONS:
            await conn.execute(text(f"CREATE EXTENSION IF NOT EXISTS {extension}"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready on %s", settings.postgres_db)


async def close_db() -> None:
    """Dispose of pooled connections; called once per CLI command."""
    await engine.dispose()
