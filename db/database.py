import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.settings import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the inventory store.

    asyncpg gets ``command_timeout`` so a stuck statement cannot hold a ledger
    row lock forever; SQLite (tests, local runs) uses a static pool.
    """
    url = settings.database_url
    engine_kwargs: Dict[str, Any] = {"echo": settings.DB_ECHO}

    if url.startswith("sqlite"):
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            connect_args={"command_timeout": settings.DB_STATEMENT_TIMEOUT_SECONDS},
        )

    engine = create_async_engine(url, **engine_kwargs)
    logging.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # ORM objects stay readable after commit; async sessions cannot lazy-refresh
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
