"""
Database initialization and connection management.

This module provides functions for:
1. Building the async engine and session factory
2. Creating the schema, either directly or through Alembic migrations
3. Closing the engine on shutdown
"""

from pathlib import Path
from typing import Any, Dict, Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from eduassess.common.logger import app_logger
from eduassess.config import Settings
from eduassess.database.base import Base

logger = app_logger.getChild("database.init_db")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine_kwargs(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> Dict[str, Any]:
    """
    Engine options for a URL. Pool sizing only applies to server databases;
    SQLite gets a busy timeout so concurrent writers wait instead of failing.
    """
    kwargs: Dict[str, Any] = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": pool_timeout}
    else:
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
        )
    return kwargs


def build_engine(settings: Settings) -> AsyncEngine:
    """Create an async engine from settings."""
    return create_async_engine(
        settings.DATABASE_URL,
        **get_engine_kwargs(
            settings.DATABASE_URL,
            echo=settings.SQL_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the engine services; one session per operation."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Get the global async engine instance."""
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call initialize_database() first.")
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Get the global session factory."""
    if _session_factory is None:
        raise RuntimeError("Database engine not initialized. Call initialize_database() first.")
    return _session_factory


async def initialize_database(settings: Settings) -> AsyncEngine:
    """
    Initialize the global async engine and session factory.

    Args:
        settings: Application settings

    Returns:
        AsyncEngine instance
    """
    global _engine, _session_factory

    logger.info(f"Initializing database {settings.DATABASE_URL.split('://')[0]} (pool size {settings.DB_POOL_SIZE})")
    engine = build_engine(settings)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Failed to initialize async database: {str(e)}")
        await engine.dispose()
        raise

    _engine = engine
    _session_factory = create_session_factory(engine)
    logger.info("Database engine initialized successfully")
    return engine


def _metadata():
    # Registers the assessment tables on Base.metadata
    from eduassess.assessments import database_models  # noqa: F401
    return Base.metadata


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly from the ORM metadata."""
    metadata = _metadata()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Database schema created")


def _alembic_config() -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    return cfg


def _upgrade(connection: Connection, revision: str) -> None:
    cfg = _alembic_config()
    cfg.attributes["connection"] = connection
    command.upgrade(cfg, revision)


async def run_migrations(engine: AsyncEngine, revision: str = "head") -> None:
    """
    Upgrade the database schema with Alembic.

    Args:
        engine: Engine to migrate
        revision: Target revision
    """
    async with engine.begin() as conn:
        await conn.run_sync(_upgrade, revision)
    logger.info(f"Database migrated to {revision}")


async def close_database() -> None:
    """Close the database engine and all connections."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine closed successfully")
