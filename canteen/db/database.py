"""
Order Service: Async database engine and session factory

The engine is created at import time; its lifecycle (schema creation on
startup, pool disposal on shutdown) is driven by the application lifespan
through connect() / disconnect().
"""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from canteen.core.config import get_settings

settings = get_settings()

engine = create_async_engine(settings.database_url, pool_pre_ping=True, echo=settings.DEBUG)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def connect() -> None:
    # Alembic owns migrations in production; create_all covers fresh databases.
    import canteen.models.menu  # noqa: F401
    import canteen.models.order  # noqa: F401
    import canteen.models.user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def disconnect() -> None:
    await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session
