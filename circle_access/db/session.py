from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from circle_access.core.config import settings


def async_db_url(url: str) -> str:
    # Deploy configs carry the sync driver name.
    return url.replace("postgresql+psycopg2", "postgresql+asyncpg").replace("postgres://", "postgresql+asyncpg://", 1)


# The expiry scheduler idles between ticks; stale pooled connections are replaced on checkout.
engine = create_async_engine(async_db_url(settings.DB_URL), pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    async with SessionLocal() as session:
        yield session
