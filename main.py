import logging
import logging.config
import json
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from social_connect.application.services.service_registry import build_service_registry
from social_connect.core.config import settings
from social_connect.domain import models  # noqa: F401
from social_connect.integrations.platform_clients import (
    ConfigurationError,
    IdentityResolutionError,
    NotConnectedError,
    PlatformError,
    PlatformResolutionError,
    RateLimitError,
    TransientNetworkError,
)
from social_connect.interfaces.api.router import api_router
from social_connect.interfaces.http.middleware import (
    MetricsMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    SessionContextMiddleware,
)

logging_config_path = Path(__file__).with_name("logging.json")
if logging_config_path.exists():
    logging.config.dictConfig(json.loads(logging_config_path.read_text(encoding="utf-8")))
else:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("social_connect")


def validate_platform_settings() -> None:
    missing = settings.missing_enabled_platform_settings()
    if missing:
        raise ConfigurationError(f"Missing environment variables: {', '.join(missing)}", missing=missing)


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_platform_settings()
    if getattr(app.state, "services", None) is None:
        app.state.services = build_service_registry(settings)
    logger.info("application_started platforms=%s", ",".join(settings.enabled_platform_list))
    try:
        yield
    finally:
        await app.state.services.close()
        logger.info("application_stopped")


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(SessionContextMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(MetricsMiddleware)

_PLATFORM_ERROR_STATUS = (
    (IdentityResolutionError, 401),
    (NotConnectedError, 409),
    (PlatformResolutionError, 404),
    (RateLimitError, 429),
    (TransientNetworkError, 503),
    (ConfigurationError, 500),
)


def _error_payload(*, request: Request, error_code: str, message: str) -> dict:
    trace_id = getattr(request.state, "request_id", None)
    return {
        "error_code": error_code,
        "message": message,
        "trace_id": trace_id,
    }


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error_code" in exc.detail and "message" in exc.detail:
        error_code = str(exc.detail["error_code"])
        detail = str(exc.detail["message"])
    else:
        error_code = str(exc.status_code)
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(request=request, error_code=error_code, message=detail),
    )


@app.exception_handler(PlatformError)
async def platform_error_handler(request: Request, exc: PlatformError) -> JSONResponse:
    status_code = next((code for error_type, code in _PLATFORM_ERROR_STATUS if isinstance(exc, error_type)), 502)
    logger.warning(
        "platform_error path=%s error_code=%s platform=%s error=%s",
        request.url.path,
        exc.error_code,
        exc.platform,
        exc,
    )
    return JSONResponse(
        status_code=status_code,
        content=_error_payload(request=request, error_code=exc.error_code, message=str(exc)),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_error_payload(
            request=request,
            error_code="validation_error",
            message="Request validation failed",
        ),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s method=%s", request.url.path, request.method)
    return JSONResponse(
        status_code=500,
        content=_error_payload(
            request=request,
            error_code="internal_server_error",
            message="Internal server error",
        ),
    )

app.include_router(api_router)
