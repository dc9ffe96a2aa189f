"""
FieldLedger - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fieldledger.config import settings

logger = logging.getLogger(__name__)


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def _engine_options() -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "echo": settings.debug and not settings.is_sqlite,  # Log SQL queries in debug mode
    }
    # SQLite (local/dev) does not take a connection pool size
    if not settings.is_sqlite:
        options.update(
            pool_pre_ping=True,   # Verify connections before use
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
    return options


# Create async engine
engine = create_async_engine(settings.database_url_async, **_engine_options())

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.
    Use with FastAPI's Depends().
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


# Alias used by the routers
get_db = get_async_session


@asynccontextmanager
async def atomic(
    session: AsyncSession,
    action: str,
    conflict_message: Optional[str] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Run a unit of work as one transaction.

    Commits when the block exits cleanly; on any failure the session is
    rolled back so no partial write survives. Database errors surface as
    DatabaseException (or ConflictException for integrity violations when
    conflict_message is given); application errors are re-raised unchanged.
    """
    from fieldledger.utils.error_handling import (
        AppException,
        ConflictException,
        DatabaseException,
        ErrorCode,
    )

    try:
        yield session
        await session.commit()
    except AppException:
        await session.rollback()
        raise
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Integrity violation during {action}: {e.orig}")
        if conflict_message:
            raise ConflictException(conflict_message) from e
        raise DatabaseException(
            f"Could not {action}: data integrity constraint violated",
            code=ErrorCode.DATA_INTEGRITY_ERROR,
            original_error=e,
        ) from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error during {action}", exc_info=True)
        raise DatabaseException(
            f"Could not {action}",
            code=ErrorCode.TRANSACTION_ERROR,
            original_error=e,
        ) from e
    except BaseException:
        await session.rollback()
        raise


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    For production, use Alembic migrations.
    """
    # Register every model on the metadata before create_all
    import fieldledger.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
