"""Database setup with async SQLAlchemy."""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase
from pathlib import Path
import logging
import re

logger = logging.getLogger(__name__)


def mask_db_url(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r'://([^:]+):([^@]+)@', r'://\1:****@', url)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def _ensure_sqlite_dir(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return
    database = parsed.database
    if not database or database == ":memory:":
        return
    parent = Path(database).parent
    if not parent.exists():
        logger.info(f"Creating database directory: {parent}")
        parent.mkdir(parents=True, exist_ok=True)


def build_engine(database_url: str, echo: bool = False, **engine_args) -> AsyncEngine:
    """
    Create the async engine for a database URL.
    
    Args:
        database_url: SQLAlchemy URL (e.g. sqlite+aiosqlite:///./data/alphachecker.db)
        echo: Log all SQL statements
        **engine_args: Extra keyword arguments for create_async_engine
        
    Returns:
        AsyncEngine
    """
    logger.info(f"Connecting to database: {mask_db_url(database_url)}")
    _ensure_sqlite_dir(database_url)
    engine = create_async_engine(database_url, echo=echo, **engine_args)
    logger.debug(f"Engine pool configuration: {engine.pool}")
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create the session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def init_db(engine: AsyncEngine):
    """Initialize database tables."""
    # Register models on the metadata
    from alphachecker.models import AlphaToken  # noqa: F401
    
    logger.info("Initializing database tables...")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✓ Database tables initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database tables: {str(e)}", exc_info=True)
        raise
