"""
Token utilities for the Cookie Consent Service
"""

from .jwt import (
    create_jwt,
    validate_token,
    TokenValidator,
    TokenClaims,
    LocalClaims,
    ExternalClaims,
)

__all__ = [
    "create_jwt",
    "validate_token",
    "TokenValidator",
    "TokenClaims",
    "LocalClaims",
    "ExternalClaims",
]
