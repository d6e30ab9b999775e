"""
Signed bearer tokens.

Tokens are self-contained JWTs tagged with a ``type`` (and, for continuation
tokens, a ``purpose``). Verification checks signature, expiry and that the tag
matches what the caller expects; every failure is reported as the same
``INVALID_TOKEN`` error so clients cannot tell an expired token from a forged
one.

Revocation is opt-in through ``TokenRevocationStore``: a Redis denylist of
token ids plus a per-user cut-off ("log out everywhere"). The cut-off is kept in
nanoseconds and compared against the ``iat_ns`` claim;
``iat`` alone only has whole-second resolution.
"""
import enum
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as redis
from jose import JWTError, jwt

from authcore.core.exceptions import InvalidTokenError
from authcore.core.logging import get_logger
from authcore.models.otp import OTPPurpose

logger = get_logger(__name__)


class TokenType(str, enum.Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"
    RESET_PASSWORD = "RESET_PASSWORD"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"


PURPOSE_TOKEN_TYPES = {
    OTPPurpose.PASSWORD_RESET: TokenType.RESET_PASSWORD,
    OTPPurpose.EMAIL_VERIFICATION: TokenType.EMAIL_VERIFICATION,
}


def issued_at_ns(claims: dict) -> int:
    if "iat_ns" in claims:
        return int(claims["iat_ns"])
    # Without the fine-grained claim a token counts as issued at the start of its second
    return int(claims.get("iat", 0)) * 1_000_000_000


class TokenRevocationStore:
    JTI_PREFIX = "auth:revoked:jti:"
    USER_PREFIX = "auth:revoked:user:"

    def __init__(self, redis_client: redis.Redis, max_ttl_seconds: int):
        self.redis = redis_client
        self.max_ttl_seconds = max_ttl_seconds

    async def revoke(self, jti: str, expires_at: int) -> bool:
        """Deny ``jti`` until the token would have expired anyway.

        Returns ``True`` only for the call that added the entry, which makes
        revocation usable as an atomic "use once" claim.
        """
        ttl = int(expires_at - time.time())
        if ttl <= 0:
            return False
        return bool(await self.redis.set(f"{self.JTI_PREFIX}{jti}", "1", ex=ttl, nx=True))

    async def is_revoked(self, jti: str) -> bool:
        return bool(await self.redis.exists(f"{self.JTI_PREFIX}{jti}"))

    async def release(self, jti: str) -> None:
        """Undo a ``revoke`` whose surrounding workflow was rolled back."""
        await self.redis.delete(f"{self.JTI_PREFIX}{jti}")

    async def revoke_all_for_user(self, user_id: str, at_ns: Optional[int] = None) -> int:
        """Reject every token for ``user_id`` issued up to ``at_ns`` (default: now)."""
        cutoff = at_ns if at_ns is not None else time.time_ns()
        await self.redis.set(f"{self.USER_PREFIX}{user_id}", str(cutoff), ex=self.max_ttl_seconds)
        return cutoff

    async def revoked_before(self, user_id: str) -> Optional[int]:
        value = await self.redis.get(f"{self.USER_PREFIX}{user_id}")
        return int(value) if value is not None else None

    async def is_token_revoked(self, claims: dict) -> bool:
        jti = claims.get("jti")
        if jti and await self.is_revoked(jti):
            return True

        user_id = claims.get("id") or claims.get("sub")
        if not user_id:
            return False
        cutoff = await self.revoked_before(user_id)
        if cutoff is None:
            return False
        return issued_at_ns(claims) <= cutoff


class TokenIssuer:
    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(days=360),
        refresh_ttl: timedelta = timedelta(days=7),
        revocations: Optional[TokenRevocationStore] = None,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.revocations = revocations

    def _encode(self, claims: dict, ttl: timedelta) -> str:
        issued_ns = time.time_ns()
        now = datetime.fromtimestamp(issued_ns // 1_000_000_000, tz=timezone.utc)
        to_encode = dict(claims)
        to_encode.update({"iat": now, "iat_ns": issued_ns, "exp": now + ttl, "jti": uuid.uuid4().hex})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def issue_access_and_refresh(self, user) -> dict:
        """Mint an access/refresh pair carrying ``{id, email, role, type}``."""
        claims = {
            "id": user.id,
            "email": user.email,
            "role": user.role.value if hasattr(user.role, "value") else user.role,
        }
        access_token = self._encode({**claims, "type": TokenType.ACCESS.value}, self.access_ttl)
        refresh_token = self._encode({**claims, "type": TokenType.REFRESH.value}, self.refresh_ttl)
        return {"accessToken": access_token, "refreshToken": refresh_token}

    def issue_purpose_token(self, user_id: str, purpose: OTPPurpose, ttl_seconds: int) -> str:
        """Mint a continuation token bound to one workflow."""
        claims = {
            "sub": user_id,
            "purpose": purpose.value,
            "type": PURPOSE_TOKEN_TYPES[purpose].value,
        }
        return self._encode(claims, timedelta(seconds=ttl_seconds))

    def decode(self, token: str, expected_type: TokenType, purpose: Optional[OTPPurpose] = None) -> dict:
        """Check signature, expiry, type and purpose. Does not consult the revocation set."""
        if not token:
            raise InvalidTokenError()

        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as exc:
            logger.debug(f"token_rejected | reason=decode expected_type={expected_type.value}")
            raise InvalidTokenError() from exc

        if payload.get("type") != expected_type.value:
            logger.debug(f"token_rejected | reason=type expected_type={expected_type.value}")
            raise InvalidTokenError()

        if purpose is not None and payload.get("purpose") != purpose.value:
            logger.debug(f"token_rejected | reason=purpose expected_purpose={purpose.value}")
            raise InvalidTokenError()

        return payload

    async def verify(self, token: str, expected_type: TokenType, purpose: Optional[OTPPurpose] = None) -> dict:
        payload = self.decode(token, expected_type, purpose)
        if self.revocations is not None and await self.revocations.is_token_revoked(payload):
            logger.debug(f"token_rejected | reason=revoked expected_type={expected_type.value}")
            raise InvalidTokenError()
        return payload

    async def revoke(self, claims: dict) -> None:
        if self.revocations is None or not claims.get("jti"):
            return
        await self.revocations.revoke(claims["jti"], int(claims["exp"]))

    async def consume(self, claims: dict) -> bool:
        """Spend a single-use token. ``False`` means another request already spent it."""
        if self.revocations is None:
            return True
        if not claims.get("jti"):
            return False
        return await self.revocations.revoke(claims["jti"], int(claims["exp"]))

    async def release(self, claims: dict) -> None:
        """Make a consumed token usable again."""
        if self.revocations is None or not claims.get("jti"):
            return
        await self.revocations.release(claims["jti"])

    async def revoke_all_for_user(self, user_id: str) -> None:
        if self.revocations is None:
            return
        await self.revocations.revoke_all_for_user(user_id)
