"""Tests for ConsentManager integration with consent engine and storage."""

from __future__ import annotations

from datetime import datetime, timedelta, UTC
from typing import Any, Dict

import pytest

from cookie_consent.constants import ChangeMethods
from cookie_consent.consent.engine import ConsentEngine
from cookie_consent.consent.manager import ConsentManager
from cookie_consent.consent.models import ConsentStatus
from cookie_consent.crypto.jwt import create_jwt
from cookie_consent.exceptions import ValidationError
from cookie_consent.identity.resolver import IdentityResolver

URL = "https://shop.example.test/basket"
IP = "198.51.100.20"


class TestConsentManager:
    """Test high-level consent manager behaviour."""

    @pytest.fixture(autouse=True)
    def _manager(self, memory_storage, config) -> None:
        self.storage = memory_storage
        self.config = config
        engine = ConsentEngine(memory_storage, config)
        self.manager = ConsentManager(engine, IdentityResolver(memory_storage, config), config)

    def _bearer(self, user_id: int) -> str:
        return f"Bearer {create_jwt(user_id, self.config)}"

    # handle_request

    @pytest.mark.asyncio
    async def test_anonymous_visit_without_cookie(self) -> None:
        outcome = await self.manager.handle_request(None, gpc_signal=False, ip_address=IP, url=URL)

        assert outcome.record is None
        assert outcome.set_cookie is False
        assert self.storage.records == {}

    @pytest.mark.asyncio
    async def test_gpc_signal_creates_record_and_cookie(self) -> None:
        outcome = await self.manager.handle_request(None, gpc_signal=True, ip_address=IP, url=URL)

        assert outcome.set_cookie is True
        assert outcome.uuid == outcome.record.uuid
        assert outcome.record.gpc is True
        assert outcome.record.ip_address == IP
        assert outcome.record.changes[0].url == URL

    @pytest.mark.asyncio
    async def test_gpc_signal_with_unrecognised_cookie(self) -> None:
        outcome = await self.manager.handle_request("not-a-uuid", gpc_signal=True)

        assert outcome.set_cookie is True
        assert outcome.record.url == "not supplied"
        assert outcome.record.ip_address == "not supplied"

    @pytest.mark.asyncio
    async def test_repeat_gpc_visit_renews_cookie(self) -> None:
        first = await self.manager.handle_request(None, gpc_signal=True)

        second = await self.manager.handle_request(first.uuid, gpc_signal=True)

        assert second.uuid == first.uuid
        assert len(second.record.changes) == 1
        assert second.set_cookie is True

    @pytest.mark.asyncio
    async def test_existing_cookie_near_expiry_is_left_alone(self) -> None:
        created = await self.manager.post_consent(None, {"accepted": ["functional"]})
        record = self.storage._find(None, created.uuid, None)
        expires = datetime.now(UTC) + timedelta(days=10)
        self.storage.records[record.id] = record.model_copy(update={"date_expires": expires})

        outcome = await self.manager.handle_request(created.uuid, gpc_signal=False)

        assert outcome.set_cookie is False
        assert outcome.record.date_expires == expires

    @pytest.mark.asyncio
    async def test_api_clients_bypass_consent_handling(self) -> None:
        outcome = await self.manager.handle_request(
            None, gpc_signal=True, authorization="Basic dXNlcjpwYXNz"
        )

        assert outcome.record is None
        assert outcome.set_cookie is False
        assert self.storage.records == {}

    @pytest.mark.asyncio
    async def test_authenticated_visit_binds_anonymous_record(self) -> None:
        created = await self.manager.post_consent(None, {"accepted": ["functional"]})
        assert created.record.user_id is None

        outcome = await self.manager.handle_request(
            created.uuid, gpc_signal=False, authorization=self._bearer(42)
        )

        assert outcome.record.user_id == 42
        assert (await self.manager.get_consent(created.uuid)).user_id == 42

    @pytest.mark.asyncio
    async def test_bound_record_keeps_its_user(self) -> None:
        created = await self.manager.post_consent(None, {"accepted": []}, session_user_id=3)

        outcome = await self.manager.handle_request(
            created.uuid, gpc_signal=False, authorization=self._bearer(42)
        )

        assert outcome.record.user_id == 3

    # post_consent

    @pytest.mark.asyncio
    async def test_post_consent_creates_acknowledged_record(self) -> None:
        payload: Dict[str, Any] = {
            "accepted": ["functional", "preferences", "analytics", "marketing"],
            "rejected": [],
            "method": ChangeMethods.GPC_HEADER,
        }

        outcome = await self.manager.post_consent(None, payload, ip_address=IP, url=URL)

        assert outcome.set_cookie is True
        assert outcome.record.ack is True
        assert outcome.record.status == ConsentStatus.ACCEPTED
        assert outcome.record.changes[0].method == ChangeMethods.POST

    @pytest.mark.asyncio
    async def test_post_consent_updates_cookie_record(self) -> None:
        created = await self.manager.post_consent(None, {"accepted": ["functional", "analytics"]})

        outcome = await self.manager.post_consent(created.uuid, {"accepted": []})

        assert outcome.uuid == created.uuid
        assert outcome.record.preferences.analytics is False
        assert len(outcome.record.changes) == 2

    @pytest.mark.asyncio
    async def test_post_consent_with_gpc_signal_marks_record(self) -> None:
        outcome = await self.manager.post_consent(None, {"accepted": ["functional"]}, gpc_signal=True)

        assert outcome.record.gpc is True

    @pytest.mark.asyncio
    async def test_post_consent_resolves_bearer_identity(self) -> None:
        outcome = await self.manager.post_consent(
            None, {"accepted": ["functional"]}, authorization=self._bearer(8)
        )

        assert outcome.record.user_id == 8

    @pytest.mark.asyncio
    async def test_invalid_payload_is_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await self.manager.post_consent(None, {"accepted": ["tracking"]})

        assert exc_info.value.details["errors"]
        assert self.storage.records == {}

    # get_consent

    @pytest.mark.asyncio
    async def test_get_consent_without_selectors(self) -> None:
        assert await self.manager.get_consent(None) is None

    @pytest.mark.asyncio
    async def test_get_consent_by_token_identity(self) -> None:
        created = await self.manager.post_consent(None, {"accepted": ["functional"]}, session_user_id=12)

        record = await self.manager.get_consent(None, authorization=self._bearer(12))

        assert record.uuid == created.uuid
