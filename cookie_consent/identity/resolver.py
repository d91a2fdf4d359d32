"""
Identity resolution for the Cookie Consent Service
Maps a request's credentials to a numeric user id
"""

from typing import Optional
import structlog

from ..config import ConsentConfig
from ..constants import BASIC_SCHEME, BEARER_SCHEME
from ..consent.storage import ConsentStorage
from ..crypto.jwt import ExternalClaims, LocalClaims, TokenValidator
from ..exceptions import InvalidTokenError

logger = structlog.get_logger(__name__)


def _split_authorization(authorization: Optional[str]) -> tuple:
    if not authorization:
        return "", ""
    scheme, _, credentials = authorization.strip().partition(" ")
    return scheme.strip().lower(), credentials.strip()


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of a ``Bearer`` authorization header, if that is what it is"""
    scheme, credentials = _split_authorization(authorization)
    if scheme != BEARER_SCHEME or not credentials:
        return None
    return credentials


def is_api_auth(authorization: Optional[str]) -> bool:
    """Basic-scheme callers are API clients and bypass consent handling"""
    scheme, _ = _split_authorization(authorization)
    return scheme == BASIC_SCHEME


class IdentityResolver:
    """Resolves the caller's user id from session state or a bearer token"""

    def __init__(self, storage: ConsentStorage, config: ConsentConfig,
                 validator: Optional[TokenValidator] = None):
        self.storage = storage
        self.config = config
        self.validator = validator or TokenValidator(config)

    async def resolve_identity(self, authorization: Optional[str] = None,
                               session_user_id: Optional[int] = None) -> Optional[int]:
        """
        Resolve a numeric user id, or None for anonymous callers

        Args:
            authorization: Raw ``Authorization`` header value
            session_user_id: Identity already established by upstream authentication

        Returns:
            The user id, or None when no identity can be established
        """
        if session_user_id is not None:
            if self.config.verbose:
                logger.debug("Using session user id", user_id=session_user_id)
            return session_user_id

        token = extract_bearer_token(authorization)
        if not token:
            return None

        try:
            claims = self.validator.validate(token)
        except InvalidTokenError:
            return None

        if isinstance(claims, LocalClaims):
            if self.config.verbose:
                logger.debug("Using local token user id", user_id=claims.user_id)
            return claims.user_id

        if isinstance(claims, ExternalClaims):
            if claims.issuer not in self.config.trusted_external_issuers or not claims.email:
                logger.info("Ignoring token from untrusted issuer", issuer=claims.issuer)
                return None
            user_id = await self.storage.lookup_id_by_email(claims.email)
            if self.config.verbose:
                logger.debug("Resolved external identity", issuer=claims.issuer,
                             found=user_id is not None)
            return user_id

        return None
