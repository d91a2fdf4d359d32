"""
JWT utilities for the Cookie Consent Service
Token minting for the local issuer and issuer-aware token validation
"""

import jwt
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional, Union
import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..config import ConsentConfig
from ..exceptions import (
    InvalidTokenError,
    TokenExpiredError,
    TokenMalformedError,
    TokenSignatureError,
)

logger = structlog.get_logger(__name__)


class LocalClaims(BaseModel):
    """Claims of a token minted and signed by the local issuer"""
    issuer: str
    user_id: int
    email: Optional[str] = None
    expires_at: datetime
    raw: Dict[str, Any] = Field(default_factory=dict)


class ExternalClaims(BaseModel):
    """Claims of a token minted by a third-party identity provider

    The signature of these tokens is not verified locally; only the expiry
    is re-checked. Whether the issuer is trusted is up to the caller.
    """
    issuer: Optional[str] = None
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    expires_at: datetime
    raw: Dict[str, Any] = Field(default_factory=dict)


TokenClaims = Union[LocalClaims, ExternalClaims]


def create_jwt(user_id: int, config: ConsentConfig,
               email: Optional[str] = None,
               expires_in_minutes: Optional[int] = None) -> str:
    """
    Create a token as the local issuer

    Args:
        user_id: Numeric user id embedded in the ``user`` claim
        config: Service configuration holding the signing secret and issuer
        email: Optional email embedded in the ``user`` claim
        expires_in_minutes: Token expiry (default from config)

    Returns:
        Encoded JWT token string
    """
    expires_in_minutes = expires_in_minutes or config.jwt_expiry_minutes

    now = datetime.now(UTC)
    token_payload = {
        'user': {'id': user_id, 'email': email},
        'iat': now,
        'exp': now + timedelta(minutes=expires_in_minutes),
        'iss': config.jwt_issuer,
    }

    token = jwt.encode(token_payload, config.jwt_secret, algorithm=config.jwt_algorithm)
    logger.info("Created JWT token", user_id=user_id, expires_in=expires_in_minutes)
    return token


def _decode_unverified(token: str) -> Dict[str, Any]:
    if not token or not isinstance(token, str):
        raise TokenMalformedError("token is empty")
    try:
        payload = jwt.decode(token, options={'verify_signature': False})
    except jwt.InvalidTokenError as e:
        raise TokenMalformedError(str(e)) from e
    if not isinstance(payload, dict):
        raise TokenMalformedError("payload is not an object")
    return payload


def _expiry_from(payload: Dict[str, Any], issuer: Optional[str]) -> datetime:
    exp = payload.get('exp')
    if exp is None:
        raise TokenMalformedError("missing exp claim", issuer)
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise TokenMalformedError("exp claim is not numeric", issuer)
    try:
        return datetime.fromtimestamp(exp, UTC)
    except (OverflowError, OSError, ValueError) as e:
        raise TokenMalformedError("exp claim is out of range", issuer) from e


class TokenValidator:
    """Decodes bearer tokens and dispatches on their issuer"""

    def __init__(self, config: ConsentConfig):
        self.config = config

    def is_local_issuer(self, issuer: Optional[str]) -> bool:
        return bool(issuer) and issuer == self.config.jwt_issuer

    def validate(self, token: str) -> TokenClaims:
        """
        Validate a token and return its typed claims

        Raises:
            TokenExpiredError: If the token has expired
            TokenSignatureError: If a local token's signature does not verify
            TokenMalformedError: If the token cannot be decoded or lacks claims
        """
        try:
            payload = _decode_unverified(token)
            issuer = payload.get('iss')
            if self.is_local_issuer(issuer):
                return self._verify_local(token, issuer)
            return self._check_external(payload, issuer)
        except InvalidTokenError as e:
            if e.is_expired:
                logger.debug("JWT token expired", issuer=e.details.get("issuer"))
            else:
                logger.warning("JWT token invalid", kind=e.kind, error=e.message)
            raise

    def _verify_local(self, token: str, issuer: str) -> LocalClaims:
        try:
            payload = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=[self.config.jwt_algorithm],
                issuer=self.config.jwt_issuer,
                options={
                    'verify_signature': True,
                    'verify_exp': True,
                    'require': ['exp', 'iss'],
                }
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError(issuer) from None
        except jwt.InvalidSignatureError as e:
            raise TokenSignatureError(str(e), issuer) from e
        except jwt.InvalidTokenError as e:
            raise TokenMalformedError(str(e), issuer) from e

        user = payload.get('user')
        if not isinstance(user, dict):
            raise TokenMalformedError("missing user claim", issuer)
        user_id = user.get('id')
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise TokenMalformedError("user claim has no numeric id", issuer)

        try:
            return LocalClaims(
                issuer=issuer,
                user_id=user_id,
                email=user.get('email'),
                expires_at=_expiry_from(payload, issuer),
                raw=payload,
            )
        except PydanticValidationError as e:
            raise TokenMalformedError(f"invalid claims: {e.error_count()} errors", issuer) from e

    def _check_external(self, payload: Dict[str, Any], issuer: Optional[str]) -> ExternalClaims:
        expires_at = _expiry_from(payload, issuer)
        if expires_at <= datetime.now(UTC):
            raise TokenExpiredError(issuer)

        # Unsigned, so every claim is caller-controlled
        email = payload.get('email')
        try:
            return ExternalClaims(
                issuer=issuer,
                email=email if isinstance(email, str) else None,
                email_verified=payload.get('email_verified'),
                name=payload.get('name'),
                picture=payload.get('picture'),
                given_name=payload.get('given_name'),
                family_name=payload.get('family_name'),
                expires_at=expires_at,
                raw=payload,
            )
        except PydanticValidationError as e:
            raise TokenMalformedError(f"invalid claims: {e.error_count()} errors", issuer) from e


def validate_token(token: str, config: ConsentConfig) -> TokenClaims:
    """Validate a token with a one-off validator"""
    return TokenValidator(config).validate(token)
