"""
Async database engine and session management.

Purpose:
- Create SQLAlchemy async engine (aiomysql in production, aiosqlite in tests)
- Provide async session factory for dependency injection
- Provide session_scope() for code running outside a request (reminder ticker)
- Provide Base declarative class for ORM models
"""
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from config.settings import settings
import logging
from typing import AsyncGenerator, Optional

logger = logging.getLogger(__name__)

Base = declarative_base()

# When DATABASE_URL is "disabled", do not create an engine at all.
engine = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None

if settings.DATABASE_URL and settings.DATABASE_URL != "disabled":
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        future=True,
    )
    async_session_maker = async_sessionmaker(
        engine, expire_on_commit=False, class_=AsyncSession
    )
    logger.info("Async DB engine created")
else:
    logger.info("DATABASE_URL is 'disabled' - DB engine will not be created; using in-memory store.")

def db_enabled() -> bool:
    return settings.USE_DB and async_session_maker is not None

async def get_db_session() -> AsyncGenerator[Optional[AsyncSession], None]:
    """
    Yield an AsyncSession when DB is enabled; otherwise yield None so callers can
    use the in-memory store.
    """
    if not db_enabled():
        yield None
        return

    async with async_session_maker() as session:
        yield session

@asynccontextmanager
async def session_scope():
    """Same contract as get_db_session, usable with `async with` outside FastAPI."""
    if not db_enabled():
        yield None
        return
    async with async_session_maker() as session:
        yield session
