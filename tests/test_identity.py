"""Tests for caller identity resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, UTC

import jwt
import pytest

from cookie_consent.constants import GOOGLE_ISSUER
from cookie_consent.consent.storage import InMemoryConsentStorage
from cookie_consent.crypto.jwt import create_jwt
from cookie_consent.identity.resolver import IdentityResolver, extract_bearer_token, is_api_auth


class CountingStorage(InMemoryConsentStorage):
    """Counts email lookups so issuer dispatch can be observed."""

    def __init__(self, config):
        super().__init__(config=config)
        self.lookups = []

    async def lookup_id_by_email(self, email):
        self.lookups.append(email)
        return await super().lookup_id_by_email(email)


def _google_token(email: str = "visitor@example.test", iss: str = GOOGLE_ISSUER, **claims) -> str:
    payload = {"iss": iss, "email": email, "exp": datetime.now(UTC) + timedelta(minutes=5), **claims}
    return jwt.encode(payload, "key-held-by-the-external-provider-only", algorithm="HS256")


@pytest.fixture
def counting_storage(config) -> CountingStorage:
    return CountingStorage(config)


@pytest.fixture
def resolver(counting_storage, config) -> IdentityResolver:
    return IdentityResolver(counting_storage, config)


class TestAuthorizationHeader:
    def test_extract_bearer_token(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"
        assert extract_bearer_token("bearer   abc") == "abc"
        assert extract_bearer_token("Basic dXNlcjpwYXNz") is None
        assert extract_bearer_token("Bearer") is None
        assert extract_bearer_token(None) is None

    def test_is_api_auth(self):
        assert is_api_auth("Basic dXNlcjpwYXNz")
        assert not is_api_auth("Bearer abc")
        assert not is_api_auth(None)


class TestResolveIdentity:
    @pytest.mark.asyncio
    async def test_anonymous_caller(self, resolver, counting_storage):
        assert await resolver.resolve_identity() is None
        assert counting_storage.lookups == []

    @pytest.mark.asyncio
    async def test_session_identity_wins(self, resolver, config):
        token = create_jwt(42, config)

        assert await resolver.resolve_identity(f"Bearer {token}", session_user_id=5) == 5

    @pytest.mark.asyncio
    async def test_local_token_needs_no_lookup(self, resolver, counting_storage, config):
        token = create_jwt(42, config)

        assert await resolver.resolve_identity(f"Bearer {token}") == 42
        assert counting_storage.lookups == []

    @pytest.mark.asyncio
    async def test_google_token_looks_up_email_once(self, resolver, counting_storage):
        user_id = await counting_storage.add_user_account("visitor@example.test")

        assert await resolver.resolve_identity(f"Bearer {_google_token()}") == user_id
        assert counting_storage.lookups == ["visitor@example.test"]

    @pytest.mark.asyncio
    async def test_google_token_for_unknown_email(self, resolver, counting_storage):
        assert await resolver.resolve_identity(f"Bearer {_google_token('new@example.test')}") is None
        assert counting_storage.lookups == ["new@example.test"]

    @pytest.mark.asyncio
    async def test_untrusted_issuer_is_ignored(self, resolver, counting_storage):
        await counting_storage.add_user_account("visitor@example.test")
        token = _google_token(iss="https://idp.other.test")

        assert await resolver.resolve_identity(f"Bearer {token}") is None
        assert counting_storage.lookups == []

    @pytest.mark.asyncio
    async def test_invalid_token_is_anonymous(self, resolver, config):
        expired = create_jwt(42, config, expires_in_minutes=-5)

        assert await resolver.resolve_identity(f"Bearer {expired}") is None
        assert await resolver.resolve_identity("Bearer not-a-token") is None

    @pytest.mark.asyncio
    async def test_basic_scheme_is_not_an_identity(self, resolver):
        assert await resolver.resolve_identity("Basic dXNlcjpwYXNz") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("claims", [{"name": 123}, {"picture": 5}, {"exp": 1e20}])
    async def test_badly_typed_external_claims_are_anonymous(self, resolver, counting_storage, claims):
        await counting_storage.add_user_account("visitor@example.test")

        assert await resolver.resolve_identity(f"Bearer {_google_token(**claims)}") is None
        assert counting_storage.lookups == []
