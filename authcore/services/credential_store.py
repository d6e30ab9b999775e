"""
Credential store: durable user records and password verification.

Hashing, id assignment and referral-code assignment happen explicitly in
``create_user`` / ``update_password`` so every call site shows the side effect.
"""
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.config import settings
from authcore.core.exceptions import ConflictError, ValidationError
from authcore.core.logging import get_logger
from authcore.core.security import (
    dummy_verify_async, get_password_hash_async, verify_password_async
)
from authcore.models.otp import OTP
from authcore.models.user import User, UserRole, UserStatus

logger = get_logger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_uppercase
REFERRAL_CODE_ATTEMPTS = 5


@dataclass
class UserCandidate:
    first_name: str
    last_name: str
    email: str
    password: str
    phone: Optional[str] = None
    referral_code: Optional[str] = None
    email_verified: bool = False
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE
    credits: Optional[int] = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def _random_base36(length: int) -> str:
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def generate_user_id() -> str:
    """``USR-<base36 millisecond timestamp>-<6 random chars>``."""
    timestamp = _to_base36(int(time.time() * 1000))
    return f"USR-{timestamp}-{_random_base36(6)}"


def generate_referral_code(first_name: str) -> Optional[str]:
    prefix = "".join(ch for ch in first_name if ch.isalpha())[:3].upper()
    if not prefix:
        return None
    return f"{prefix}-{_random_base36(6)}"


class CredentialStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: str, include_deleted: bool = False) -> Optional[User]:
        query = select(User).where(User.id == user_id)
        if not include_deleted:
            query = query.where(User.deleted_at.is_(None))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str, include_deleted: bool = False) -> Optional[User]:
        query = select(User).where(func.lower(User.email) == normalize_email(email))
        if not include_deleted:
            query = query.where(User.deleted_at.is_(None))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_referral_code(self, referral_code: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(
                User.referral_code == referral_code.strip().upper(),
                User.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def email_exists(self, email: str) -> bool:
        # Tombstoned accounts still own their address until purged
        return await self.get_by_email(email, include_deleted=True) is not None

    async def _unique_referral_code(self, first_name: str) -> Optional[str]:
        for _ in range(REFERRAL_CODE_ATTEMPTS):
            code = generate_referral_code(first_name)
            if code is None:
                return None
            result = await self.db.execute(select(User.id).where(User.referral_code == code))
            if result.scalar_one_or_none() is None:
                return code
        logger.warning(f"referral_code_exhausted | attempts={REFERRAL_CODE_ATTEMPTS}")
        return None

    async def create_user(self, candidate: UserCandidate) -> User:
        """Persist a new user. The plaintext password is hashed here and nowhere else."""
        email = normalize_email(candidate.email)
        if await self.email_exists(email):
            raise ConflictError("EMAIL_EXISTS")

        referred_by = None
        if candidate.referral_code:
            referrer = await self.get_by_referral_code(candidate.referral_code)
            if referrer is None:
                logger.info("referral_code_unknown | referral ignored")
            else:
                referred_by = referrer.id

        user = User(
            id=generate_user_id(),
            first_name=candidate.first_name.strip(),
            last_name=candidate.last_name.strip(),
            email=email,
            email_verified=candidate.email_verified,
            hashed_password=await get_password_hash_async(candidate.password),
            phone=candidate.phone,
            status=candidate.status,
            role=candidate.role,
            referral_code=await self._unique_referral_code(candidate.first_name),
            referred_by=referred_by,
            credits=settings.SIGNUP_BONUS_CREDITS if candidate.credits is None else candidate.credits,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            # A concurrent registration won the unique index on email
            raise ConflictError("EMAIL_EXISTS") from exc

        logger.info(f"user_created | user_id={user.id} referred={referred_by is not None}")
        return user

    async def verify_password(self, user: User, plaintext: str) -> bool:
        """Constant-time comparison against the stored hash; never raises on mismatch."""
        return await verify_password_async(plaintext, user.hashed_password)

    async def dummy_verify(self) -> None:
        await dummy_verify_async()

    async def update_password(self, user: User, new_plaintext: str) -> User:
        """Re-hash with a fresh salt. Every password mutation goes through here."""
        user.hashed_password = await get_password_hash_async(new_plaintext)
        await self.db.flush()
        logger.info(f"password_updated | user_id={user.id}")
        return user

    async def mark_email_verified(self, user: User) -> User:
        user.email_verified = True
        await self.db.flush()
        return user

    async def set_status(self, user: User, status: UserStatus) -> User:
        previous = user.status
        user.status = status
        await self.db.flush()
        logger.info(f"user_status_changed | user_id={user.id} from={previous.value} to={status.value}")
        return user

    async def add_credits(self, user: User, amount: int) -> User:
        if amount <= 0:
            raise ValidationError("INVALID_CREDIT_AMOUNT")
        user.credits += amount
        await self.db.flush()
        return user

    async def deduct_credits(self, user: User, amount: int) -> User:
        if amount <= 0:
            raise ValidationError("INVALID_CREDIT_AMOUNT")
        if user.credits < amount:
            raise ValidationError("INSUFFICIENT_CREDITS")
        user.credits -= amount
        await self.db.flush()
        return user

    async def soft_delete(self, user: User) -> User:
        user.deleted_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info(f"user_soft_deleted | user_id={user.id}")
        return user

    async def restore(self, user: User) -> User:
        user.deleted_at = None
        await self.db.flush()
        logger.info(f"user_restored | user_id={user.id}")
        return user

    async def purge(self, user: User) -> None:
        """Hard delete, together with the user's OTPs."""
        user_id = user.id
        await self.db.execute(delete(OTP).where(OTP.user_id == user_id))
        await self.db.delete(user)
        await self.db.flush()
        logger.info(f"user_purged | user_id={user_id}")
