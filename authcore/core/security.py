import secrets

from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPBearer
from passlib.context import CryptContext

from authcore.core.config import settings

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# Security scheme; missing credentials are reported by the auth dependency
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash. Malformed hashes count as a mismatch."""
    if not plain_password or not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    """Hash a password with a fresh salt."""
    return pwd_context.hash(password)


def dummy_verify() -> None:
    """Spend one hash comparison so a missing account costs the same as a wrong password."""
    pwd_context.dummy_verify()


async def verify_password_async(plain_password: str, hashed_password: str) -> bool:
    # bcrypt is CPU bound; keep it off the event loop
    return await run_in_threadpool(verify_password, plain_password, hashed_password)


async def get_password_hash_async(password: str) -> str:
    return await run_in_threadpool(get_password_hash, password)


async def dummy_verify_async() -> None:
    await run_in_threadpool(dummy_verify)


def generate_random_password() -> str:
    """Unusable password for accounts created through a federated login."""
    return secrets.token_urlsafe(32)
