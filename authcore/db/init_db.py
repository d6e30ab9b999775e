"""
Database initialization script.
Run this to (re)create all tables: ``python -m authcore.db.init_db [--drop]``.
"""
import argparse
import asyncio

from authcore.core.logging import get_logger, setup_logging
from authcore.db.database import engine
from authcore.models import Base

logger = get_logger(__name__)


async def init_db(drop: bool = False):
    """Initialize database with all tables."""
    async with engine.begin() as conn:
        if drop:
            # Drop all tables (be careful in production!)
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    await engine.dispose()
    logger.info(f"database_initialized | dropped={drop}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create authcore tables")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(init_db(drop=args.drop))
