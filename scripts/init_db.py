"""Initialize database tables."""
import asyncio

from stocktake.database import engine, Base

# Import all models to register them with Base
from stocktake.models import *  # noqa: F401,F403


async def init():
    """Create all tables."""
    print("Creating database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print("Database tables created successfully!")


if __name__ == "__main__":
    asyncio.run(init())
