"""
ID generation and validation utilities for the Cookie Consent Service
"""

import uuid
from typing import Any, Optional


def generate_consent_uuid() -> str:
    """Generate the external handle for a new consent record"""
    return str(uuid.uuid4())


def validate_consent_uuid(value: Any) -> Optional[str]:
    """Return the canonical form of a consent uuid, or None if it is not one"""
    if not value or not isinstance(value, str):
        return None
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        return None
