from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.requests import Request
from ..logging_util import get_logger
from .exceptions import Unauthenticated, error_response

logger = get_logger(__name__)


PROTECTED_PREFIXES = (
    "/api/",
)


class SessionAuthMiddleware:
    """
    Fails closed on proxied routes.

    Resolves the session cookie through `app.state.session_binder` and
    rejects the request with 401 before it reaches the proxy route when the
    cookie is missing, unknown, cleared or expired. On success the resolved
    token is left on `request.state.access_token` for the route.
    """

    def __init__(
        self,
        app: ASGIApp,
        cookie_name: str = "canvas_session",
        protected_prefixes: tuple[str, ...] = PROTECTED_PREFIXES,
    ):
        self.app = app
        self.cookie_name = cookie_name
        self.protected_prefixes = protected_prefixes

    def _is_protected(self, path: str) -> bool:
        return path == "/api" or path.startswith(self.protected_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self._is_protected(scope["path"]):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        binder = getattr(request.app.state, "session_binder", None)
        if binder is None:
            logger.error("session_binder not found in app.state")
            response = error_response(Unauthenticated())
            await response(scope, receive, send)
            return

        token = await binder.resolve(request.cookies.get(self.cookie_name))
        if token is None:
            logger.warning(f"Rejected unauthenticated proxy call: {request.method} {scope['path']}")
            response = error_response(Unauthenticated())
            await response(scope, receive, send)
            return

        request.state.access_token = token
        await self.app(scope, receive, send)
