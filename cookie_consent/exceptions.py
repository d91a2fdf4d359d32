"""
Custom Exceptions for the Cookie Consent Service

Provides a unified exception hierarchy for token validation,
consent storage access and request validation.
"""

from typing import Optional, Dict, Any


class ConsentServiceError(Exception):
    """
    Base exception for all consent service errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONSENT_SERVICE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        result: Dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_payload(self) -> Dict[str, str]:
        """Boundary error payload: ``{"error": message, "name": kind}``"""
        return {"error": self.message, "name": self.name}


# =============================================================================
# TOKEN ERRORS
# =============================================================================

class InvalidTokenError(ConsentServiceError):
    """Raised when a bearer token cannot be accepted"""

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"

    def __init__(
        self,
        message: str = "Invalid token",
        kind: str = MALFORMED,
        issuer: Optional[str] = None
    ):
        details: Dict[str, Any] = {"kind": kind}
        if issuer:
            details["issuer"] = issuer
        self.kind = kind
        super().__init__(message, "INVALID_TOKEN", details)

    @property
    def is_expired(self) -> bool:
        return self.kind == self.EXPIRED


class TokenMalformedError(InvalidTokenError):
    """Raised when a token cannot be decoded or lacks required claims"""

    def __init__(self, reason: str = "token could not be decoded", issuer: Optional[str] = None):
        super().__init__(f"Malformed token: {reason}", InvalidTokenError.MALFORMED, issuer)


class TokenSignatureError(InvalidTokenError):
    """Raised when a locally issued token fails signature verification"""

    def __init__(self, reason: str = "signature verification failed", issuer: Optional[str] = None):
        super().__init__(f"Invalid token signature: {reason}", InvalidTokenError.BAD_SIGNATURE, issuer)


class TokenExpiredError(InvalidTokenError):
    """Raised when a token's expiry claim is in the past"""

    def __init__(self, issuer: Optional[str] = None):
        super().__init__("Token has expired", InvalidTokenError.EXPIRED, issuer)


# =============================================================================
# STORAGE ERRORS
# =============================================================================

class InvalidSelectorError(ConsentServiceError):
    """Raised when a consent record is loaded without any selector"""

    def __init__(self, message: str = "At least one of id, uuid or user_id is required"):
        super().__init__(message, "INVALID_SELECTOR")


class StoreError(ConsentServiceError):
    """Raised when the consent store fails to read or write"""

    def __init__(
        self,
        message: str = "Consent store operation failed",
        operation: Optional[str] = None,
        reason: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if reason:
            details["reason"] = reason
        super().__init__(message, "STORE_ERROR", details)


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(ConsentServiceError):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, "VALIDATION_ERROR", details)
