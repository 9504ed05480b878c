from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from starlette.requests import Request
from ..logging_util import get_logger
import time


logger = get_logger(__name__)


class ConfigurationError(RuntimeError):
    """Raised at startup when the server cannot run with the given settings."""


class GatewayError(Exception):
    """
    Base class for per-request failures of the gateway.

    `message` is returned to the browser, so it must never carry tokens,
    authorization codes or client secrets.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "gateway_error"
    message: str = "The gateway could not complete the request."

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MissingAuthorizationCode(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "missing_code"
    message = "Missing code"


class AuthExchangeFailure(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "oauth_failed"
    message = "OAuth failed: the authorization server did not issue an access token."


class Unauthenticated(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "not_logged_in"
    message = "Not logged in"


class ProxyPathForbidden(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "path_not_allowed"
    message = "This upstream path is not available through the gateway."


class UpstreamUnavailable(GatewayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "upstream_unavailable"
    message = "Could not reach the Canvas server."


def error_response(exc: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_code": exc.error_code,
            "message": exc.message,
            "timestamp": time.time()
        },
    )


async def gateway_exception_handler(request: Request, exc: GatewayError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{exc.error_code} for {request.method} {request.url.path}: {exc.message}")
    return error_response(exc)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_exception_handler)
