from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from qrcheckin.db.models import Base


def make_engine(db_url: str) -> AsyncEngine:
    return create_async_engine(db_url, echo=False)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
