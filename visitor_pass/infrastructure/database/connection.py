"""Async engine and session factory for the pass table.

Both are built on first access so importing the package never needs a
reachable database (tests swap in their own session maker).
"""
import asyncio
from typing import Optional

import structlog
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker

from visitor_pass.config import settings

logger = structlog.get_logger()

ASYNC_PG_SCHEMES = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}

STARTUP_ATTEMPTS = 5
FIRST_BACKOFF_SECONDS = 2

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[sessionmaker] = None


def resolve_database_url(raw: Optional[str] = None) -> str:
    """Return the configured URL rewritten for the asyncpg driver."""
    url = settings.database_url if raw is None else raw
    if not url:
        raise RuntimeError("DATABASE_URL is empty; set it in the environment or .env")

    if "+asyncpg" in url:
        return url
    for scheme, async_scheme in ASYNC_PG_SCHEMES.items():
        if url.startswith(scheme):
            return async_scheme + url[len(scheme):]
    return url


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": settings.debug}

    # pgbouncer in transaction mode cannot hold prepared statements
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "connect_args": {
            "statement_cache_size": 0,
            "server_settings": {"application_name": settings.service_name},
        },
    }


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = resolve_database_url()
        _engine = create_async_engine(url, **_engine_options(url))
    return _engine


def get_session_maker() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _session_factory


async def init_db() -> None:
    """Create missing tables, backing off while the database comes up."""
    from visitor_pass.domain.models import VisitorPass  # noqa: F401  (registers the table)

    delay = FIRST_BACKOFF_SECONDS
    attempt = 0
    while True:
        attempt += 1
        logger.info("database_connect_attempt", attempt=attempt, max_attempts=STARTUP_ATTEMPTS)
        try:
            async with get_engine().begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
        except Exception as e:
            if attempt >= STARTUP_ATTEMPTS:
                logger.error("database_connect_gave_up", attempts=attempt, error=str(e))
                raise
            logger.warning("database_connect_failed", attempt=attempt, error=str(e), retry_in=delay)
            await asyncio.sleep(delay)
            delay *= 2
        else:
            logger.info("database_initialized", attempts=attempt)
            return
