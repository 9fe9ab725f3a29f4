"""
SQL client - async SQLAlchemy engine, session factory and message table.

Provides:
- Singleton async engine backed by DATABASE_URL (SQLite via aiosqlite by
  default, PostgreSQL via asyncpg when AGENT_DB_URL points there)
- Async session factory
- SQLAlchemy table definition for persisted agent messages (agent_messages)
"""

from pathlib import Path
from typing import Optional

from loguru import logger
from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from infrastructure.config import DATABASE_ECHO, DATABASE_URL

# Singleton engine
_engine: Optional[AsyncEngine] = None
_SessionLocal: Optional[async_sessionmaker] = None

# Metadata
metadata = MetaData()

# ============================================================================
# AGENT MESSAGE TABLE
# ============================================================================

agent_messages_table = Table(
    "agent_messages",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("session_id", String(64), nullable=False, index=True),
    Column("agent_id", String(128), nullable=False, index=True),
    Column("agent_name", String(256), nullable=True),
    Column("role", String(32), nullable=False),
    Column("content", Text, nullable=False),
    Column("mime_type", String(64), nullable=False),
    Column("model_id", String(128), nullable=True),
    Column("metadata_json", Text, nullable=True),
    Column("input_tokens", Integer, nullable=True),
    Column("output_tokens", Integer, nullable=True),
    Column("total_tokens", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("version", Integer, nullable=False, server_default=text("1")),
    Index("ix_agent_messages_session_agent", "session_id", "agent_id"),
)


def _to_async_url(url: str) -> str:
    """Pick the async driver for plain database URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


def create_engine_for(url: str, *, echo: bool = DATABASE_ECHO) -> AsyncEngine:
    """
    Build a new async engine (no singleton). Used by tests and scripts that
    target a database other than the configured one.
    """
    url = _to_async_url(url)
    _ensure_sqlite_dir(url)
    kwargs = {"echo": echo}
    if make_url(url).get_backend_name() == "postgresql":
        kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True, pool_recycle=3600)
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_engine() -> AsyncEngine:
    """
    Get the process-wide async engine for DATABASE_URL.

    Returns:
        SQLAlchemy AsyncEngine
    """
    global _engine
    if _engine is None:
        _engine = create_engine_for(DATABASE_URL)
        logger.info("SQL engine created ({})", _engine.url.get_backend_name())
    return _engine


def get_session_factory() -> async_sessionmaker:
    """
    Get the async session factory for the process-wide engine.

    Returns:
        async_sessionmaker producing AsyncSession objects
    """
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = create_session_factory(get_async_engine())
    return _SessionLocal


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create database tables if they don't exist."""
    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Database tables created/verified")


async def dispose_engine() -> None:
    """Close pooled connections of the process-wide engine."""
    global _engine, _SessionLocal
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _SessionLocal = None


async def test_connection() -> bool:
    """
    Test the database connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_async_engine()
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            assert result.scalar() == 1
        logger.info("Database connection test: SUCCESS")
        return True
    except Exception as e:
        logger.error("Database connection test: FAILED - {}", e)
        return False
