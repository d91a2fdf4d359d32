"""
Cookie Consent Service
Per-visitor consent records with an append-only audit trail, and caller
identity resolution from locally or externally issued bearer tokens
"""

__version__ = "0.1.0"

# Core exports
from .config import ConsentConfig, get_consent_config
from .exceptions import (
    ConsentServiceError,
    InvalidTokenError,
    InvalidSelectorError,
    StoreError,
    ValidationError,
)

# Consent management
from .consent import (
    ChangeEntry, ConsentAction, ConsentCategory, ConsentContext,
    ConsentPreferences, ConsentRecord, ConsentStatus,
    ConsentStorage, InMemoryConsentStorage,
    ConsentEngine, ConsentManager, ConsentOutcome,
)

# Identity
from .identity import IdentityResolver, extract_bearer_token, is_api_auth
from .crypto import TokenValidator, LocalClaims, ExternalClaims, create_jwt, validate_token

__all__ = [
    # Config
    "ConsentConfig",
    "get_consent_config",

    # Errors
    "ConsentServiceError",
    "InvalidTokenError",
    "InvalidSelectorError",
    "StoreError",
    "ValidationError",

    # Consent
    "ChangeEntry",
    "ConsentAction",
    "ConsentCategory",
    "ConsentContext",
    "ConsentPreferences",
    "ConsentRecord",
    "ConsentStatus",
    "ConsentStorage",
    "InMemoryConsentStorage",
    "ConsentEngine",
    "ConsentManager",
    "ConsentOutcome",

    # Identity
    "IdentityResolver",
    "extract_bearer_token",
    "is_api_auth",
    "TokenValidator",
    "LocalClaims",
    "ExternalClaims",
    "create_jwt",
    "validate_token",
]
