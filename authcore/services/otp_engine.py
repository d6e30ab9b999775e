"""
One-time passcode engine.

Each OTP moves through a tiny state machine::

    pending (used=False, now < expires_at)
        -> consumed  (used=True, written exactly once)
        -> expired   (time passes; no write needed)

At most one pending OTP exists per (user, purpose): ``issue`` first marks
every pending OTP for the pair as used. Consumption is a conditional UPDATE
(``WHERE used = false``) whose affected-row count decides the winner, so two
requests racing on the same code cannot both succeed.
"""
import secrets
import string
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.config import settings
from authcore.core.logging import get_logger
from authcore.models.base import utcnow
from authcore.models.otp import OTP, OTPPurpose

logger = get_logger(__name__)

DEFAULT_EXPIRY_MINUTES = 15
ALPHANUMERIC_ALPHABET = string.ascii_uppercase + string.digits
MAX_NUMERIC_LENGTH = 9  # 10**9 < 2**32
MAX_CODE_LENGTH = 20

# Purposes where requests are throttled per trailing window
RATE_LIMITED_PURPOSES = (OTPPurpose.PASSWORD_RESET, OTPPurpose.EMAIL_VERIFICATION)


def generate_numeric_code(length: int = 6) -> str:
    if not 1 <= length <= MAX_NUMERIC_LENGTH:
        raise ValueError(f"numeric OTP length must be between 1 and {MAX_NUMERIC_LENGTH}")

    low = 10 ** (length - 1)
    high = 10 ** length - 1
    value = int.from_bytes(secrets.token_bytes(4), "big")
    # Modulo bias: 2**32 is not a multiple of the range, so low values are
    # very slightly favoured. Accepted for short-lived, rate-limited codes.
    return str(value % (high - low + 1) + low).zfill(length)


def generate_alphanumeric_code(length: int = 8) -> str:
    if not 1 <= length <= MAX_CODE_LENGTH:
        raise ValueError(f"alphanumeric OTP length must be between 1 and {MAX_CODE_LENGTH}")
    return "".join(secrets.choice(ALPHANUMERIC_ALPHABET) for _ in range(length))


def default_code_length(purpose: OTPPurpose) -> int:
    return 6 if purpose == OTPPurpose.TWO_FACTOR else 8


class OTPEngine:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def _pending(self, user_id: str, purpose: OTPPurpose, now: datetime):
        return (
            OTP.user_id == user_id,
            OTP.purpose == purpose,
            OTP.used.is_(False),
            OTP.expires_at > now,
            OTP.deleted_at.is_(None),
        )

    async def invalidate_pending(self, user_id: str, purpose: OTPPurpose, include_expired: bool = False) -> int:
        """Mark unused OTPs for (user, purpose) as used. Returns the number of rows touched."""
        now = self.clock()
        criteria = [OTP.user_id == user_id, OTP.purpose == purpose, OTP.used.is_(False)]
        if not include_expired:
            criteria.append(OTP.expires_at > now)

        result = await self.db.execute(
            update(OTP)
            .where(*criteria)
            .values(used=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def issue(
        self,
        user_id: str,
        purpose: OTPPurpose,
        expires_in_minutes: int = DEFAULT_EXPIRY_MINUTES,
        length: Optional[int] = None,
        alphanumeric: bool = False,
        metadata: Optional[dict] = None,
    ) -> OTP:
        """Invalidate the pair's pending OTPs, then persist a fresh one."""
        invalidated = await self.invalidate_pending(user_id, purpose)

        code_length = length or default_code_length(purpose)
        code = generate_alphanumeric_code(code_length) if alphanumeric else generate_numeric_code(code_length)

        now = self.clock()
        otp = OTP(
            user_id=user_id,
            code=code,
            purpose=purpose,
            expires_at=now + timedelta(minutes=expires_in_minutes),
            used=False,
            meta=metadata,
            created_at=now,
            updated_at=now,
        )
        self.db.add(otp)
        await self.db.flush()

        logger.info(
            f"otp_issued | user_id={user_id} purpose={purpose.value} otp_id={otp.id} "
            f"expires_in_minutes={expires_in_minutes} invalidated={invalidated}"
        )
        return otp

    async def verify(self, user_id: str, code: str, purpose: OTPPurpose) -> Optional[OTP]:
        """Return the matching pending OTP without changing it, or ``None``."""
        now = self.clock()
        result = await self.db.execute(
            select(OTP)
            .where(OTP.code == code, *self._pending(user_id, purpose, now))
            .order_by(OTP.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def verify_and_consume(self, user_id: str, code: str, purpose: OTPPurpose) -> Optional[OTP]:
        """Verify and flip ``used`` in one conditional UPDATE. Only one caller can win."""
        otp = await self.verify(user_id, code, purpose)
        if otp is None:
            return None

        now = self.clock()
        result = await self.db.execute(
            update(OTP)
            .where(OTP.id == otp.id, OTP.used.is_(False), OTP.expires_at > now)
            .values(used=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"otp_consume_lost_race | user_id={user_id} purpose={purpose.value} otp_id={otp.id}")
            return None

        await self.db.refresh(otp)
        logger.info(f"otp_consumed | user_id={user_id} purpose={purpose.value} otp_id={otp.id}")
        return otp

    async def count_recent(self, user_id: str, purpose: OTPPurpose, window_minutes: int) -> int:
        since = self.clock() - timedelta(minutes=window_minutes)
        result = await self.db.execute(
            select(func.count(OTP.id)).where(
                OTP.user_id == user_id,
                OTP.purpose == purpose,
                OTP.created_at > since,
                OTP.deleted_at.is_(None),
            )
        )
        return result.scalar_one()

    async def is_rate_limited(self, user_id: str, purpose: OTPPurpose) -> bool:
        """Soft limit: concurrent bursts may slightly overshoot the count."""
        if purpose not in RATE_LIMITED_PURPOSES:
            return False
        recent = await self.count_recent(user_id, purpose, settings.OTP_RATE_LIMIT_WINDOW_MINUTES)
        limited = recent >= settings.OTP_RATE_LIMIT_MAX
        if limited:
            logger.warning(f"otp_rate_limited | user_id={user_id} purpose={purpose.value} recent={recent}")
        return limited

    async def cleanup_expired(self) -> int:
        """Mark expired, unused OTPs as used. Safe to run repeatedly."""
        now = self.clock()
        result = await self.db.execute(
            update(OTP)
            .where(OTP.used.is_(False), OTP.expires_at <= now)
            .values(used=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"otp_cleanup | marked={result.rowcount}")
        return result.rowcount
