"""
Database base configuration and async session management
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

# Base class for models (must be defined first)
Base = declarative_base()


def get_database_url(database_url: str) -> str:
    """Convert a plain PostgreSQL URL to the asyncpg driver form"""
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return database_url


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async database engine"""
    return create_async_engine(
        get_database_url(database_url),
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create the async session factory bound to an engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables directly (tests and local development; production uses Alembic)"""
    # Register models on Base.metadata
    from agentic_service.db.models import job  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
