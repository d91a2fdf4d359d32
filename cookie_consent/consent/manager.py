from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import ConsentConfig
from ..constants import ChangeMethods, NOT_SUPPLIED
from ..exceptions import ValidationError
from ..identity.resolver import IdentityResolver, is_api_auth
from ..utils.ids import validate_consent_uuid
from .engine import ConsentEngine
from .models import ConsentAction, ConsentContext, ConsentRecord


logger = structlog.get_logger(__name__)


class ConsentOutcome(BaseModel):
    """Result handed back to the HTTP boundary after a request is handled"""
    record: Optional[ConsentRecord] = None
    set_cookie: bool = False

    @property
    def uuid(self) -> Optional[str]:
        return self.record.uuid if self.record else None


class ConsentManager:
    def __init__(self, engine: ConsentEngine, resolver: IdentityResolver,
                 config: Optional[ConsentConfig] = None):
        self.engine = engine
        self.resolver = resolver
        self.config = config or engine.config

    async def handle_request(self, cookie_uuid: Optional[str], gpc_signal: bool,
                             ip_address: Optional[str] = None, url: Optional[str] = None,
                             authorization: Optional[str] = None,
                             session_user_id: Optional[int] = None) -> ConsentOutcome:
        """
        Runs on every request:
         - honours a global privacy control signal, creating a record if needed
         - binds an authenticated caller to an anonymous record
         - renews the record's expiry (and the cookie) when due
        """
        if is_api_auth(authorization):
            return ConsentOutcome()

        uuid = validate_consent_uuid(cookie_uuid)
        context = ConsentContext(
            uuid=uuid,
            url=url or NOT_SUPPLIED,
            ip_address=ip_address or NOT_SUPPLIED,
        )

        if gpc_signal:
            record = await self.engine.save_gpc_opt_out(context)
            if uuid is None or record is None or record.uuid != uuid:
                return ConsentOutcome(record=record, set_cookie=record is not None)
        elif uuid is None:
            return ConsentOutcome()
        else:
            record = await self.engine.get_consent(uuid=uuid)

        if record is None:
            return ConsentOutcome()

        if record.user_id is None and (authorization or session_user_id is not None):
            user_id = await self.resolver.resolve_identity(authorization, session_user_id)
            if user_id is not None:
                record = await self.engine.bind_user_id(record.uuid, user_id) or record
                logger.info("Bound consent record to user", uuid=record.uuid, user_id=user_id)

        if self.engine.should_extend(record):
            record = await self.engine.extend_expiry(record.uuid) or record
            return ConsentOutcome(record=record, set_cookie=True)

        return ConsentOutcome(record=record)

    async def post_consent(self, cookie_uuid: Optional[str], consent_data: Dict[str, Any],
                           ip_address: Optional[str] = None, url: Optional[str] = None,
                           authorization: Optional[str] = None, gpc_signal: bool = False,
                           session_user_id: Optional[int] = None) -> ConsentOutcome:
        try:
            action = ConsentAction.model_validate(consent_data)
        except PydanticValidationError as exc:
            logger.error("Invalid consent payload", error=str(exc))
            raise ValidationError("Invalid consent payload",
                                  details={"errors": exc.errors(include_url=False)}) from exc

        user_id = await self.resolver.resolve_identity(authorization, session_user_id)
        context = ConsentContext(
            uuid=validate_consent_uuid(cookie_uuid),
            user_id=user_id,
            url=url or NOT_SUPPLIED,
            ip_address=ip_address or NOT_SUPPLIED,
            ack=True,
            gpc=gpc_signal,
        )
        record = await self.engine.save_consent(
            action.model_copy(update={"method": ChangeMethods.POST}), context
        )
        return ConsentOutcome(record=record, set_cookie=record is not None)

    async def get_consent(self, cookie_uuid: Optional[str],
                          authorization: Optional[str] = None,
                          session_user_id: Optional[int] = None) -> Optional[ConsentRecord]:
        user_id = await self.resolver.resolve_identity(authorization, session_user_id)
        return await self.engine.get_consent(uuid=validate_consent_uuid(cookie_uuid), user_id=user_id)
