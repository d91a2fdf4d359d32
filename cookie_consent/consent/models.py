"""
Consent data models for the Cookie Consent Service
Per-visitor consent record, audit-trail entries and reconciliation inputs
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Iterable, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..constants import ChangeMethods, NOT_SUPPLIED


class ConsentCategory(str, Enum):
    """Data-processing categories a visitor can accept or reject"""
    FUNCTIONAL = "functional"
    PREFERENCES = "preferences"
    ANALYTICS = "analytics"
    MARKETING = "marketing"


class ConsentStatus(str, Enum):
    """Summary status derived from the four preference flags"""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PARTIAL = "partial"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys at the HTTP boundary"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConsentPreferences(CamelModel):
    """The four independent preference flags"""
    functional: bool = True
    preferences: bool = False
    analytics: bool = False
    marketing: bool = False

    @property
    def status(self) -> ConsentStatus:
        return derive_status(self)

    def enabled_categories(self) -> List[ConsentCategory]:
        return [c for c in ConsentCategory if getattr(self, c.value)]


class ChangeEntry(CamelModel):
    """One immutable audit-trail item"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    accepted: Tuple[ConsentCategory, ...] = ()
    rejected: Tuple[ConsentCategory, ...] = ()
    url: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    method: str = ChangeMethods.POST


class ConsentAction(CamelModel):
    """An incoming consent decision"""
    accepted: List[ConsentCategory] = Field(default_factory=list)
    rejected: List[ConsentCategory] = Field(default_factory=list)
    url: Optional[str] = None
    method: str = ChangeMethods.POST


class ConsentContext(BaseModel):
    """Request context a consent decision is reconciled against"""
    uuid: Optional[str] = None
    user_id: Optional[int] = None
    url: str = NOT_SUPPLIED
    ip_address: str = NOT_SUPPLIED
    ack: Optional[bool] = None
    gpc: Optional[bool] = None


class ConsentRecord(CamelModel):
    """Durable per-visitor consent state"""
    id: Optional[int] = Field(default=None, exclude=True)
    # Assigned by the store on insert, immutable afterwards
    uuid: Optional[str] = None
    user_id: Optional[int] = None
    url: Optional[str] = None
    ip_address: Optional[str] = None
    ack: bool = False
    preferences: ConsentPreferences = Field(default_factory=ConsentPreferences)
    gpc: bool = False
    changes: List[ChangeEntry] = Field(default_factory=list)
    status: ConsentStatus = ConsentStatus.PARTIAL
    date_created: Optional[datetime] = None
    date_updated: Optional[datetime] = None
    date_expires: Optional[datetime] = None


class ConsentUpdate(BaseModel):
    """Fields replaced by a direct record update; unset fields are left alone.

    There is no status field: the store derives status from preferences.
    """
    user_id: Optional[int] = None
    url: Optional[str] = None
    ip_address: Optional[str] = None
    ack: Optional[bool] = None
    preferences: Optional[ConsentPreferences] = None
    gpc: Optional[bool] = None
    changes: Optional[List[ChangeEntry]] = None


def derive_status(preferences: ConsentPreferences) -> ConsentStatus:
    """
    Returns the status of the preferences
     - all four flags on: accepted
     - all four flags off: rejected
     - anything else: partial
    """
    flags = (preferences.functional, preferences.preferences,
             preferences.analytics, preferences.marketing)
    if all(flags):
        return ConsentStatus.ACCEPTED
    if not any(flags):
        return ConsentStatus.REJECTED
    return ConsentStatus.PARTIAL


def preferences_from_accepted(accepted: Iterable[ConsentCategory]) -> ConsentPreferences:
    """Build preference flags from an action's accepted categories"""
    accepted = set(accepted)
    return ConsentPreferences(
        functional=True,
        preferences=ConsentCategory.PREFERENCES in accepted,
        analytics=ConsentCategory.ANALYTICS in accepted,
        marketing=ConsentCategory.MARKETING in accepted,
    )
