"""
Periodic housekeeping: ``python -m authcore.db.maintenance``.

Marks expired, unused OTPs as used so they drop out of the pending set. Meant
to be run from cron; running it twice is harmless.
"""
import asyncio

from authcore.core.logging import get_logger, setup_logging
from authcore.db.database import async_session_maker, engine
from authcore.services.otp_engine import OTPEngine

logger = get_logger(__name__)


async def cleanup_expired_otps(session_maker=async_session_maker) -> int:
    async with session_maker() as session:
        try:
            swept = await OTPEngine(session).cleanup_expired()
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("maintenance_failed | task=otp_cleanup")
            raise
    return swept


async def main():
    try:
        swept = await cleanup_expired_otps()
        logger.info(f"maintenance_finished | task=otp_cleanup swept={swept}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
