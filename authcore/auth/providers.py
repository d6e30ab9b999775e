"""
Federated identity providers.

Only token introspection is implemented: the client hands us a provider token,
the provider tells us who it belongs to. Every call is bounded by a timeout.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from authcore.core.config import settings
from authcore.core.logging import get_logger

logger = get_logger(__name__)


class IdentityProviderError(Exception):
    """The provider rejected the token, timed out, or returned an unusable profile."""


@dataclass
class FederatedIdentity:
    email: str
    name: Optional[str]
    subject: str


class IdentityProvider(ABC):
    """Resolves a provider-issued token to the identity it was minted for."""

    name: str = ""

    def __init__(self, timeout: float = None, transport: httpx.AsyncBaseTransport = None):
        self.timeout = httpx.Timeout(timeout if timeout is not None else settings.OAUTH_TIMEOUT_SECONDS)
        self.transport = transport

    async def _get_json(self, url: str, params: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, params=params, headers={"Accept": "application/json"})
        except httpx.TimeoutException as exc:
            logger.error(f"identity_provider_timeout | provider={self.name}")
            raise IdentityProviderError(f"{self.name} introspection timed out") from exc
        except httpx.HTTPError as exc:
            logger.error(f"identity_provider_unreachable | provider={self.name} error={type(exc).__name__}")
            raise IdentityProviderError(f"{self.name} introspection failed") from exc

        if response.status_code != 200:
            logger.warning(f"identity_provider_rejected | provider={self.name} status_code={response.status_code}")
            raise IdentityProviderError(f"{self.name} rejected the token")

        try:
            return response.json()
        except ValueError as exc:
            raise IdentityProviderError(f"{self.name} returned a malformed response") from exc

    @abstractmethod
    async def introspect(self, token: str) -> FederatedIdentity:
        """Raise ``IdentityProviderError`` when the token is not accepted."""

    @staticmethod
    def _identity(email: Optional[str], name: Optional[str], subject) -> FederatedIdentity:
        if not email or not subject:
            raise IdentityProviderError("provider profile has no email")
        return FederatedIdentity(email=email.strip().lower(), name=name, subject=str(subject))


class GoogleIdentityProvider(IdentityProvider):
    name = "google"

    def __init__(self, client_id: str = None, tokeninfo_url: str = None, **kwargs):
        super().__init__(**kwargs)
        self.client_id = settings.GOOGLE_CLIENT_ID if client_id is None else client_id
        self.tokeninfo_url = tokeninfo_url or settings.GOOGLE_TOKENINFO_URL

    async def introspect(self, token: str) -> FederatedIdentity:
        data = await self._get_json(self.tokeninfo_url, {"id_token": token})

        # Tokens minted for another client must not log anyone in here
        if self.client_id and data.get("aud") != self.client_id:
            logger.warning("identity_provider_rejected | provider=google reason=audience")
            raise IdentityProviderError("google token audience mismatch")

        return self._identity(data.get("email"), data.get("name"), data.get("sub"))


class FacebookIdentityProvider(IdentityProvider):
    name = "facebook"

    def __init__(self, graph_url: str = None, **kwargs):
        super().__init__(**kwargs)
        self.graph_url = graph_url or settings.FACEBOOK_GRAPH_URL

    async def introspect(self, token: str) -> FederatedIdentity:
        data = await self._get_json(self.graph_url, {"fields": "id,email,name", "access_token": token})
        return self._identity(data.get("email"), data.get("name"), data.get("id"))


def default_identity_providers() -> Dict[str, IdentityProvider]:
    return {
        GoogleIdentityProvider.name: GoogleIdentityProvider(),
        FacebookIdentityProvider.name: FacebookIdentityProvider(),
    }
