import httpx
import pytest

from authcore.auth.providers import (
    FacebookIdentityProvider, GoogleIdentityProvider, IdentityProvider, IdentityProviderError
)


def transport_returning(status_code=200, payload=None, captured=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        return httpx.Response(status_code, json=payload or {})

    return httpx.MockTransport(handler)


async def test_google_introspection_returns_identity():
    captured = []
    provider = GoogleIdentityProvider(
        client_id="client-123",
        transport=transport_returning(
            payload={"email": "Grace@Example.com", "name": "Grace Hopper", "sub": "42", "aud": "client-123"},
            captured=captured,
        ),
    )

    identity = await provider.introspect("id-token")

    assert identity.email == "grace@example.com"
    assert identity.name == "Grace Hopper"
    assert identity.subject == "42"
    assert captured[0].url.params["id_token"] == "id-token"


async def test_google_rejects_foreign_audience():
    provider = GoogleIdentityProvider(
        client_id="client-123",
        transport=transport_returning(payload={"email": "a@example.com", "sub": "1", "aud": "someone-else"}),
    )

    with pytest.raises(IdentityProviderError):
        await provider.introspect("id-token")


async def test_google_audience_check_is_skipped_without_client_id():
    provider = GoogleIdentityProvider(
        client_id="",
        transport=transport_returning(payload={"email": "a@example.com", "sub": "1", "aud": "anything"}),
    )

    assert (await provider.introspect("id-token")).email == "a@example.com"


async def test_rejected_token_raises():
    provider = GoogleIdentityProvider(
        client_id="", transport=transport_returning(status_code=400, payload={"error": "invalid_token"})
    )

    with pytest.raises(IdentityProviderError):
        await provider.introspect("bad-token")


async def test_timeout_raises_provider_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    provider = FacebookIdentityProvider(transport=httpx.MockTransport(handler), timeout=0.1)

    with pytest.raises(IdentityProviderError):
        await provider.introspect("token")


async def test_facebook_profile_without_email_raises():
    provider = FacebookIdentityProvider(transport=transport_returning(payload={"id": "7", "name": "No Mail"}))

    with pytest.raises(IdentityProviderError):
        await provider.introspect("token")


async def test_facebook_introspection_returns_identity():
    captured = []
    provider = FacebookIdentityProvider(
        transport=transport_returning(payload={"id": "7", "email": "linus@example.com", "name": "Linus"}, captured=captured)
    )

    identity = await provider.introspect("fb-token")

    assert identity.subject == "7"
    assert captured[0].url.params["access_token"] == "fb-token"
    assert captured[0].url.params["fields"] == "id,email,name"


def test_base_provider_cannot_be_instantiated():
    with pytest.raises(TypeError):
        IdentityProvider()

    class Incomplete(IdentityProvider):
        name = "incomplete"

    with pytest.raises(TypeError):
        Incomplete()
