"""
Constants for the Cookie Consent Service

Centralized identifiers for consent categories, change provenance,
external token issuers and record lifetime defaults.
"""

from typing import Final, Tuple

# =============================================================================
# SERVICE IDENTIFICATION
# =============================================================================

SERVICE_NAME: Final[str] = "cookie-consent"
SERVICE_VERSION: Final[str] = "0.1.0"

# =============================================================================
# CONSENT CATEGORIES
# =============================================================================

class ConsentCategories:
    """Preference category tags carried by consent actions"""
    FUNCTIONAL: Final[str] = "functional"
    PREFERENCES: Final[str] = "preferences"
    ANALYTICS: Final[str] = "analytics"
    MARKETING: Final[str] = "marketing"

    ALL: Final[Tuple[str, ...]] = (FUNCTIONAL, PREFERENCES, ANALYTICS, MARKETING)

    # Applied when a global privacy control signal opts a new visitor out
    GPC_ACCEPTED: Final[Tuple[str, ...]] = (FUNCTIONAL, PREFERENCES)
    GPC_REJECTED: Final[Tuple[str, ...]] = (MARKETING, ANALYTICS)


# =============================================================================
# CHANGE PROVENANCE
# =============================================================================

class ChangeMethods:
    """Provenance tags recorded on every audit-trail entry"""
    POST: Final[str] = "POST"
    GPC_HEADER: Final[str] = "header:sec-gpc"


# =============================================================================
# TOKEN ISSUERS
# =============================================================================

GOOGLE_ISSUER: Final[str] = "https://accounts.google.com"

BEARER_SCHEME: Final[str] = "bearer"
BASIC_SCHEME: Final[str] = "basic"

# =============================================================================
# LIFETIMES
# =============================================================================

class ConsentDefaults:
    """Default record and cookie lifetimes"""
    RECORD_EXPIRY_DAYS: Final[int] = 365
    RENEWAL_THRESHOLD_DAYS: Final[int] = 30
    ACK_STALE_MONTHS: Final[int] = 6
    # 400 days is the longest cookie lifetime browsers honour
    COOKIE_MAX_AGE_DAYS: Final[int] = 400
    COOKIE_NAME: Final[str] = "cookie_consent"

# =============================================================================
# REQUEST DEFAULTS
# =============================================================================

GPC_HEADER: Final[str] = "sec-gpc"
NOT_SUPPLIED: Final[str] = "not supplied"
