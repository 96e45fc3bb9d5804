"""Database connection management using SQLModel with an async engine."""

from typing import Optional
from urllib.parse import urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from app.config.settings import Settings, settings
from app.config.logger import app_logger
from app.db.store import MemoryStore, SQLStore, Store

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


def get_db_url(url: Optional[str] = None) -> str:
    """Get database URL for SQLAlchemy with an async driver."""
    db_url = url or settings.effective_database_url
    if not db_url:
        raise ValueError("DATABASE_URL not configured")
    # SQLite or other non-Postgres URLs are returned as-is
    if db_url.startswith("sqlite"):
        return db_url

    # For Postgres URLs, strip sslmode (asyncpg takes SSL via connect_args)
    parsed = urlparse(db_url)
    query_parts = [p for p in parsed.query.split("&") if not p.startswith("sslmode=") and p]
    query = "&".join(query_parts)
    clean_url = urlunparse(
        (
            parsed.scheme,
            parsed.netloc,
            parsed.path,
            parsed.params,
            query,
            parsed.fragment,
        )
    )

    if clean_url.startswith("postgresql://"):
        clean_url = clean_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif clean_url.startswith("postgres://"):
        clean_url = clean_url.replace("postgres://", "postgresql+asyncpg://", 1)

    return clean_url


async def init_db(url: Optional[str] = None) -> async_sessionmaker:
    """Initialize the database engine and create tables."""
    global _engine, _session_maker

    db_url = get_db_url(url)
    app_logger.info("Initializing database connection")

    engine_kwargs = {"echo": False}
    if not db_url.startswith("sqlite"):
        engine_kwargs.update(pool_size=20, max_overflow=0)

    _engine = create_async_engine(db_url, **engine_kwargs)
    _session_maker = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Register table models with SQLModel
    from app.models import kv_entry  # noqa: F401

    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    app_logger.info("Database initialized successfully")
    return _session_maker


async def close_db() -> None:
    """Close the database engine."""
    global _engine, _session_maker

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_maker = None
        app_logger.info("Database connection closed")


async def create_store(config: Settings = settings) -> Store:
    """Build the durable store selected by STORE_BACKEND."""
    if config.STORE_BACKEND == "memory":
        app_logger.warning("Using in-memory store - state will not survive a restart")
        return MemoryStore(timeout_seconds=config.STORE_TIMEOUT_SECONDS)

    session_maker = await init_db(config.effective_database_url)
    return SQLStore(session_maker, timeout_seconds=config.STORE_TIMEOUT_SECONDS)
