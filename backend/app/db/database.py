"""
Database connection and session management using SQLAlchemy async.

The engine and its connection pool belong to a Database object that the
application opens at startup and closes at shutdown. Services receive the
object explicitly instead of importing a module-level engine.
"""
from typing import Optional
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool


# Base class for all models
Base = declarative_base()


class Database:
    """
    Owns the async engine (bounded connection pool) and the session factory.

    Usage:
        database = Database(settings.DATABASE_URL, pool_size=10)
        await database.open()
        async with database.session() as session:
            ...
        await database.close()
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 0,
        echo: bool = False
    ):
        self.url = url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    def _engine_options(self) -> dict:
        if self.url.startswith("sqlite"):
            # A single shared connection keeps in-memory databases alive across sessions
            return {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_pre_ping": True,  # Verify connections before using them
        }

    async def open(self) -> None:
        """Create the engine and session factory. Safe to call once per lifecycle."""
        if self._engine is not None:
            return
        self._engine = create_async_engine(self.url, echo=self.echo, **self._engine_options())
        self._sessionmaker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(f"Database engine created (pool_size={self.pool_size})")

    async def close(self) -> None:
        """Dispose the engine and release every pooled connection."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.info("Database engine disposed")

    def session(self) -> AsyncSession:
        """
        Return a new session bound to the pool.

        Each session checks a connection out on first use and returns it when
        the session is closed, so callers should keep sessions short-lived.
        """
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        return self._sessionmaker()

    async def create_all(self) -> None:
        """
        Create all tables.
        This should be called on application startup.
        """
        # Import all models here to ensure they are registered
        from app.models import user, conversation, message  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
