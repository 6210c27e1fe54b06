"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
used by the server.
"""

from agentrelay.repos.models import Base
from agentrelay.repos.sql import create_engine, create_sessionmaker
from agentrelay.server.core.config import settings

"""
engine:
    The global SQLAlchemy AsyncEngine instance, configured from ``DATABASE_URL``.
"""
engine = create_engine(settings.database_url)

"""
async_session_maker:
    Factory for ``AsyncSession`` instances bound to ``engine``; objects do not
    expire on commit.
"""
async_session_maker = create_sessionmaker(engine)


async def init_db() -> None:
    """
    Create all tables of the ORM metadata.

    NOTE: In production, Alembic migrations should be used instead of this function.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
