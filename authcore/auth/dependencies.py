"""FastAPI dependencies wiring request handlers to the auth service."""
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

import redis.asyncio as redis
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.auth.providers import IdentityProvider, default_identity_providers
from authcore.auth.service import AuthService
from authcore.core.config import settings
from authcore.core.email_utils import EmailManager, email_manager
from authcore.core.exceptions import ForbiddenError, UnauthorizedError
from authcore.core.security import security
from authcore.core.tokens import TokenIssuer, TokenRevocationStore
from authcore.db.database import get_async_session, get_redis
from authcore.models.user import User, UserRole

_identity_providers = default_identity_providers()


@dataclass
class CurrentUser:
    user: User
    claims: dict

    @property
    def id(self) -> str:
        return self.user.id

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN


def build_token_issuer(redis_client: Optional[redis.Redis] = None) -> TokenIssuer:
    access_ttl = timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    refresh_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    revocations = None
    if redis_client is not None:
        revocations = TokenRevocationStore(
            redis_client, max_ttl_seconds=int(max(access_ttl, refresh_ttl).total_seconds())
        )
    return TokenIssuer(
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        access_ttl=access_ttl,
        refresh_ttl=refresh_ttl,
        revocations=revocations,
    )


async def get_token_issuer(redis_client: redis.Redis = Depends(get_redis)) -> TokenIssuer:
    return build_token_issuer(redis_client)


def get_mailer() -> EmailManager:
    return email_manager


def get_identity_providers() -> Dict[str, IdentityProvider]:
    return _identity_providers


async def get_auth_service(
    db: AsyncSession = Depends(get_async_session),
    tokens: TokenIssuer = Depends(get_token_issuer),
    mailer: EmailManager = Depends(get_mailer),
    providers: Dict[str, IdentityProvider] = Depends(get_identity_providers),
) -> AuthService:
    return AuthService(db, tokens, mailer, providers)


def get_bearer_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("NO_TOKEN")
    return credentials.credentials


async def get_current_user(
    token: str = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> CurrentUser:
    """Get current authenticated user."""
    user, claims = await service.authenticate(token)
    return CurrentUser(user=user, claims=claims)


async def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_admin:
        raise ForbiddenError("FORBIDDEN")
    return current_user
