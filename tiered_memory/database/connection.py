"""
Database Connection Manager.
Handles asynchronous connections to the long-term memory database using SQLAlchemy.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tiered_memory.database.models import Base
from tiered_memory.utils.structured_logging import get_logger

logger = get_logger("database")


class Database:
    """
    Owns one async engine and its session factory.

    Each Durable Store gets its own instance so that several engines
    (e.g. one per test) can coexist in a process.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url

        self.engine = create_async_engine(
            url,
            echo=echo,          # Set to True for SQL logging in development
            future=True
        )

        # Session factory for generating async database sessions
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False  # Prevents closing objects after commit
        )

    async def init_db(self) -> None:
        """Create all tables and indexes defined in models.py."""
        _ensure_sqlite_directory(self.url)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized", url=_redact(self.url))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provides a transactional scope around a series of operations.
        Usage:
            async with db.session() as session:
                result = await session.execute(...)
        Ensures sessions are closed properly even if exceptions occur.
        """
        session = self.session_factory()
        try:
            yield session
        finally:
            await session.close()

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()


def _ensure_sqlite_directory(url: str) -> None:
    """SQLite will not create missing parent directories on its own."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return
    database = parsed.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def _redact(url: str) -> str:
    return make_url(url).render_as_string(hide_password=True)
