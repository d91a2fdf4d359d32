"""
Caller identity resolution for the Cookie Consent Service
"""

from .resolver import IdentityResolver, extract_bearer_token, is_api_auth

__all__ = [
    "IdentityResolver",
    "extract_bearer_token",
    "is_api_auth",
]
