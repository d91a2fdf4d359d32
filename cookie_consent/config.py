"""
Configuration for the Cookie Consent Service
Token issuers, signing secrets, storage and lifetime settings
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field

from .constants import ConsentDefaults, GOOGLE_ISSUER


class ConsentConfig(BaseSettings):
    """Consent service configuration settings

    The defaults for secrets and issuer are placeholders for local
    development only; production deployments set them via environment.
    """

    # Token settings
    jwt_secret: str = Field(default="NOT THE SECRET", description="Local token signing secret")
    jwt_issuer: str = Field(default="NOT THE ISSUER", description="Local issuer identifier")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiry_minutes: int = Field(default=60)
    trusted_external_issuers: List[str] = Field(
        default_factory=lambda: [GOOGLE_ISSUER],
        description="External issuers whose identities are resolved by email"
    )

    # Storage settings
    database_url: str = Field(default="sqlite+aiosqlite:///cookie_consent.db")

    # Cookie settings
    cookie_name: str = Field(default=ConsentDefaults.COOKIE_NAME)
    cookie_secret: str = Field(default="NOT THE COOKIE SECRET")
    cookie_max_age_days: int = Field(default=ConsentDefaults.COOKIE_MAX_AGE_DAYS)

    # Consent record lifetime settings
    record_expiry_days: int = Field(default=ConsentDefaults.RECORD_EXPIRY_DAYS)
    renewal_threshold_days: int = Field(default=ConsentDefaults.RENEWAL_THRESHOLD_DAYS)
    ack_stale_months: int = Field(default=ConsentDefaults.ACK_STALE_MONTHS)

    # Environment-specific overrides
    verbose: bool = Field(default=False, description="Log store arguments at debug level")
    debug_mode: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    model_config = {"env_prefix": "COOKIE_CONSENT_", "case_sensitive": False}


def get_consent_config(**overrides) -> ConsentConfig:
    """Build a configuration from the environment, with explicit overrides"""
    return ConsentConfig(**overrides)
