import logging
from typing import Any, AsyncGenerator

from sqlalchemy import event
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from bikawo.settings import settings

Base = declarative_base()

# Models reference each other by name; load them all once Base exists.
import bikawo.infra.models  # noqa: F401,E402

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("postgresql"):
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
        options["pool_timeout"] = settings.database_pool_timeout_seconds
    return options


def _log_pool_timeout(context) -> None:  # noqa: ANN001
    exc = context.original_exception or context.sqlalchemy_exception
    if isinstance(exc, PoolTimeoutError):
        logger.warning(
            "db_pool_timeout",
            extra={"extra": {"statement": str(context.statement) if context.statement else None}},
        )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Build the engine lazily so importing the app never opens a connection."""
    global _engine, _session_factory
    if _session_factory is None:
        _engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))
        event.listen(_engine.sync_engine, "handle_error", _log_pool_timeout)
        _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    global _engine, _session_factory
    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
