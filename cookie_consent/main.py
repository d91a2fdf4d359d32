"""
Cookie Consent Service - FastAPI Application
Consent cookie middleware and consent read/write endpoints
"""

from contextlib import asynccontextmanager
from collections.abc import Callable
from typing import Any, Dict, Optional
import logging
import structlog

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from itsdangerous import BadSignature, Signer
from starlette.middleware.base import BaseHTTPMiddleware

from .config import ConsentConfig, get_consent_config
from .constants import GPC_HEADER, NOT_SUPPLIED, SERVICE_NAME, SERVICE_VERSION
from .consent.engine import ConsentEngine
from .consent.manager import ConsentManager, ConsentOutcome
from .consent.models import ConsentRecord
from .consent.storage import ConsentStorage
from .exceptions import ConsentServiceError, InvalidSelectorError, StoreError, ValidationError
from .identity.resolver import IdentityResolver

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

COOKIE_SALT = "cookie-consent"


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def has_gpc_signal(request: Request) -> bool:
    return request.headers.get(GPC_HEADER) == "1"


def client_ip(request: Request) -> str:
    return request.client.host if request.client else NOT_SUPPLIED


def request_url(request: Request) -> str:
    return request.headers.get("referer") or str(request.url) or NOT_SUPPLIED


def session_user_id(request: Request) -> Optional[int]:
    """Identity placed on the request by upstream authentication, if any"""
    return getattr(request.state, "user_id", None)


def read_consent_cookie(request: Request) -> Optional[str]:
    """Return the consent uuid from the signed cookie; unsigned values are ignored"""
    state_uuid = getattr(request.state, "consent_uuid", None)
    if state_uuid:
        return state_uuid
    config: ConsentConfig = request.app.state.config
    value = request.cookies.get(config.cookie_name)
    if not value:
        return None
    try:
        return request.app.state.signer.unsign(value).decode("utf-8")
    except BadSignature:
        logger.info("Ignoring consent cookie with bad signature")
        return None


def set_consent_cookie(response: Response, uuid: str, config: ConsentConfig, signer: Signer) -> None:
    response.set_cookie(
        config.cookie_name,
        signer.sign(uuid).decode("utf-8"),
        max_age=config.cookie_max_age_days * 24 * 60 * 60,
        httponly=True,
        secure=True,
        samesite="strict",
    )


# =============================================================================
# MIDDLEWARE
# =============================================================================

class CookieConsentMiddleware(BaseHTTPMiddleware):
    """
    Runs consent handling for every request:
     - opts the visitor out of analytics and marketing on a Sec-GPC signal
     - sets the consent cookie when a record is created
     - renews the consent cookie when the record's expiry was extended
    Failures are logged and the request continues without a cookie.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        state = request.app.state
        outcome: Optional[ConsentOutcome] = None
        try:
            outcome = await state.manager.handle_request(
                cookie_uuid=read_consent_cookie(request),
                gpc_signal=has_gpc_signal(request),
                ip_address=client_ip(request),
                url=request_url(request),
                authorization=request.headers.get("authorization"),
                session_user_id=session_user_id(request),
            )
        except Exception as e:
            logger.error("Consent handling failed", error=str(e), name=type(e).__name__)

        if outcome is not None and outcome.uuid:
            request.state.consent_uuid = outcome.uuid

        response = await call_next(request)

        if outcome is not None and outcome.set_cookie and outcome.uuid:
            set_consent_cookie(response, outcome.uuid, state.config, state.signer)
        return response


# =============================================================================
# APPLICATION
# =============================================================================

def _error_status(exc: ConsentServiceError) -> int:
    if isinstance(exc, (ValidationError, InvalidSelectorError)):
        return 400
    if isinstance(exc, StoreError):
        return 503
    return 500


def create_app(config: Optional[ConsentConfig] = None,
               storage: Optional[ConsentStorage] = None) -> FastAPI:
    """Build the application with explicitly constructed services"""
    config = config or get_consent_config()
    storage = storage or ConsentStorage(config=config)
    engine = ConsentEngine(storage, config)
    resolver = IdentityResolver(storage, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logging.basicConfig(level=config.log_level.upper())
        logger.info("Starting Cookie Consent Service", version=SERVICE_VERSION)
        await storage.init_models()
        yield
        await storage.close()
        logger.info("Shutting down Cookie Consent Service")

    app = FastAPI(
        title="Cookie Consent Service",
        description="Consent records and caller identity resolution",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.storage = storage
    app.state.manager = ConsentManager(engine, resolver, config)
    app.state.signer = Signer(config.cookie_secret, salt=COOKIE_SALT)

    app.add_middleware(CookieConsentMiddleware)

    @app.exception_handler(ConsentServiceError)
    async def consent_error_handler(request: Request, exc: ConsentServiceError):
        logger.error("Consent request failed", error=exc.message, name=exc.name)
        return JSONResponse(status_code=_error_status(exc), content=exc.to_payload())

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": SERVICE_NAME, "version": SERVICE_VERSION}

    @app.get("/cookie-consent", response_model=Optional[ConsentRecord])
    async def get_cookie_consent(request: Request):
        """Get the visitor's consent record, by cookie or authenticated user"""
        return await request.app.state.manager.get_consent(
            read_consent_cookie(request),
            authorization=request.headers.get("authorization"),
            session_user_id=session_user_id(request),
        )

    @app.post("/cookie-consent", response_model=Optional[ConsentRecord])
    async def post_cookie_consent(request: Request, response: Response, consent_data: Dict[str, Any]):
        """Save the visitor's explicit consent decision"""
        outcome = await request.app.state.manager.post_consent(
            read_consent_cookie(request),
            consent_data,
            ip_address=client_ip(request),
            url=request_url(request),
            authorization=request.headers.get("authorization"),
            gpc_signal=has_gpc_signal(request),
            session_user_id=session_user_id(request),
        )
        if outcome.set_cookie and outcome.uuid:
            set_consent_cookie(response, outcome.uuid, config, request.app.state.signer)
        logger.info("Consent updated", uuid=outcome.uuid)
        return outcome.record

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
