"""
Consent management module for the Cookie Consent Service
Consent record storage, reconciliation and request handling
"""

from .models import (
    ChangeEntry,
    ConsentAction,
    ConsentCategory,
    ConsentContext,
    ConsentPreferences,
    ConsentRecord,
    ConsentStatus,
    ConsentUpdate,
    derive_status,
    preferences_from_accepted,
)
from .storage import ConsentStorage, InMemoryConsentStorage
from .engine import ConsentEngine, should_extend
from .manager import ConsentManager, ConsentOutcome

__all__ = [
    "ChangeEntry",
    "ConsentAction",
    "ConsentCategory",
    "ConsentContext",
    "ConsentPreferences",
    "ConsentRecord",
    "ConsentStatus",
    "ConsentUpdate",
    "derive_status",
    "preferences_from_accepted",
    "ConsentStorage",
    "InMemoryConsentStorage",
    "ConsentEngine",
    "should_extend",
    "ConsentManager",
    "ConsentOutcome",
]
