"""
Utility functions for the Cookie Consent Service
"""

from .ids import generate_consent_uuid, validate_consent_uuid

__all__ = [
    "generate_consent_uuid",
    "validate_consent_uuid",
]
