"""
Database Connection and Session Management
Async SQLAlchemy engine for the synced document store and the command mailbox
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from vetbridge.config import settings


def async_database_url(url: str) -> str:
    """Select the asyncpg driver for plain postgres URLs (hosted providers hand out postgres://)"""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix) :]
    return url


DATABASE_URL = async_database_url(settings.DATABASE_URL)

# The connector polls every few minutes; idle connections may be dropped in between
engine = create_async_engine(DATABASE_URL, echo=False, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db():
    """
    Database session dependency for the bridge routes.

    Routes commit or roll back themselves; the session is closed here.

    Usage:
        @router.post("/patients")
        async def sync_patients(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
