import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine

logger = structlog.get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./starlingpost.db")

engine: AsyncEngine = create_async_engine(DATABASE_URL, echo=False)


async def init_db():
    # register tables with the metadata
    from starlingpost.models.linked_account import LinkedAccount  # noqa: F401
    from starlingpost.models.post import Post  # noqa: F401

    async with engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)
    logger.info("db_initialized", url=engine.url.render_as_string(hide_password=True))


async def close_db():
    await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session
