from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from config.settings import Settings

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./sql_app.db"

# Create declarative base for models
Base = declarative_base()


class Database:
    """
    Storage handle owned by the process.

    Created once by the application factory and handed to everything that
    needs a session; there is no module-level engine.
    """

    def __init__(self, url: str, echo: bool = False):
        engine_kwargs = {"echo": echo, "future": True}
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        url = settings.database_url or DEFAULT_DATABASE_URL
        # Validate production database configuration
        if settings.is_production and "sqlite" in url.lower():
            raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")
        # Async engine needs the asyncpg driver for plain postgres URLs
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return cls(url)

    async def create_all(self) -> None:
        """
        Initialize the database by creating all tables.
        This should be called on application startup.
        """
        async with self.engine.begin() as conn:
            # Import models here to ensure they're registered with Base
            import database_models  # noqa: F401
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function that yields a database session.
    Use this in FastAPI route dependencies to get a database session.

    Example:
        @router.get("/posts")
        async def list_posts(db: AsyncSession = Depends(get_db)):
            # Use db here
            pass
    """
    database: Optional[Database] = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not configured on the application")
    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
