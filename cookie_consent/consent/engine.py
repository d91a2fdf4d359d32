"""
Consent reconciliation engine for the Cookie Consent Service
Merges consent decisions into the audit trail and manages record expiry
"""

from datetime import datetime, UTC
from typing import Optional
import structlog

from ..config import ConsentConfig
from ..constants import ChangeMethods, ConsentCategories
from .models import (
    ChangeEntry,
    ConsentAction,
    ConsentCategory,
    ConsentContext,
    ConsentPreferences,
    ConsentRecord,
    ConsentUpdate,
    preferences_from_accepted,
)
from .storage import ConsentStorage

logger = structlog.get_logger(__name__)


def should_extend(record: ConsentRecord, threshold_days: int,
                  now: Optional[datetime] = None) -> bool:
    """
    Checks whether a record's expiry should be pushed out again.

    Renewal happens while more than ``threshold_days`` whole days remain,
    so nearly every visit renews except one right after a renewal.
    """
    if record.date_expires is None:
        return False
    now = now or datetime.now(UTC)
    return (record.date_expires - now).days > threshold_days


class ConsentEngine:
    """Core consent reconciliation engine"""

    def __init__(self, storage: ConsentStorage, config: Optional[ConsentConfig] = None):
        self.storage = storage
        self.config = config or storage.config

    async def save_consent(self, action: ConsentAction,
                           context: ConsentContext) -> Optional[ConsentRecord]:
        """
        Saves a consent decision for the visitor
         - an existing record (by uuid or user id) is updated and its audit trail extended
         - otherwise a new record is created
        """
        existing: Optional[ConsentRecord] = None
        if context.uuid is not None or context.user_id is not None:
            existing = await self.storage.load(uuid=context.uuid, user_id=context.user_id)

        preferences = preferences_from_accepted(action.accepted)
        changes = list(existing.changes) if existing else []
        changes.append(ChangeEntry(
            accepted=tuple(action.accepted),
            rejected=tuple(action.rejected),
            url=action.url if action.url is not None else context.url,
            method=action.method,
        ))

        prior_gpc = existing.gpc if existing else False
        gpc = bool(context.gpc) or prior_gpc
        user_id = context.user_id
        if existing and existing.user_id is not None:
            user_id = existing.user_id
        ack = bool(context.ack)

        if existing:
            record = await self.storage.update(existing.uuid, ConsentUpdate(
                user_id=user_id,
                url=context.url,
                ip_address=context.ip_address,
                ack=ack,
                preferences=preferences,
                gpc=gpc,
                changes=changes,
            ))
        else:
            record = await self.storage.insert(ConsentRecord(
                user_id=user_id,
                url=context.url,
                ip_address=context.ip_address,
                ack=ack,
                preferences=preferences,
                gpc=gpc,
                changes=changes,
            ))

        if record is not None:
            logger.info("Saved consent", uuid=record.uuid, user_id=record.user_id,
                        status=record.status.value, method=action.method, created=existing is None)
        return record

    async def save_gpc_opt_out(self, context: ConsentContext) -> Optional[ConsentRecord]:
        """
        Saves an opt-out driven by a global privacy control signal
         - a record that already honours the signal is returned unchanged
         - without a record, one is created with analytics and marketing rejected
         - otherwise analytics and marketing are switched off and the change recorded
        """
        existing: Optional[ConsentRecord] = None
        if context.uuid is not None:
            existing = await self.storage.load(uuid=context.uuid)

        if existing and existing.gpc:
            return existing

        if existing is None:
            action = ConsentAction(
                accepted=list(ConsentCategories.GPC_ACCEPTED),
                rejected=list(ConsentCategories.GPC_REJECTED),
                url=context.url,
                method=ChangeMethods.GPC_HEADER,
            )
            return await self.save_consent(action, context.model_copy(update={"ack": False, "gpc": True}))

        preferences = ConsentPreferences(
            functional=existing.preferences.functional,
            preferences=existing.preferences.preferences,
            analytics=False,
            marketing=False,
        )
        change = ChangeEntry(
            accepted=tuple(preferences.enabled_categories()),
            rejected=(ConsentCategory.MARKETING, ConsentCategory.ANALYTICS),
            url=context.url,
            method=ChangeMethods.GPC_HEADER,
        )
        record = await self.storage.update(existing.uuid, ConsentUpdate(
            url=context.url,
            ip_address=context.ip_address,
            gpc=True,
            preferences=preferences,
            changes=[*existing.changes, change],
        ))
        logger.info("Honoured GPC opt-out", uuid=existing.uuid)
        return record

    def should_extend(self, record: ConsentRecord, now: Optional[datetime] = None) -> bool:
        return should_extend(record, self.config.renewal_threshold_days, now)

    async def extend_expiry(self, uuid: str) -> Optional[ConsentRecord]:
        """Updates the record to a current expiration date, regardless of its preferences"""
        record = await self.storage.extend_expiry(uuid)
        logger.debug("Extended consent expiry", uuid=uuid)
        return record

    async def bind_user_id(self, uuid: str, user_id: int) -> Optional[ConsentRecord]:
        return await self.storage.bind_user_id(uuid, user_id)

    async def get_consent(self, uuid: Optional[str] = None,
                          user_id: Optional[int] = None) -> Optional[ConsentRecord]:
        """Load a record by uuid and/or user id; no selector means no record"""
        if uuid is None and user_id is None:
            return None
        return await self.storage.load(uuid=uuid, user_id=user_id)
