"""
HTTP surface of the gateway.

`authRouter` runs the OAuth dance and the session lifecycle, `proxyRouter`
tunnels `/api/*` to Canvas. Collaborators (settings, exchanger, binder,
forwarder) are taken from `app.state`, populated by the application
factory, so nothing here holds credentials in module globals.
"""

from pathlib import Path
from urllib.parse import quote
from fastapi import APIRouter, Query, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from .config import Settings
from .logging_util import get_logger
from .models import ProxyRequest
from .oauth import TokenExchanger
from .proxy import ProxyForwarder
from .sessions import SessionBinder
from .utils.exceptions import MissingAuthorizationCode, Unauthenticated


logger = get_logger(__name__)

authRouter = APIRouter()
proxyRouter = APIRouter()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _binder(request: Request) -> SessionBinder:
    return request.app.state.session_binder


@authRouter.get("/")
async def index(request: Request):
    return RedirectResponse(url=_settings(request).APP_ENTRY_PATH, status_code=status.HTTP_302_FOUND)


@authRouter.get("/login")
async def login(request: Request):
    """
    ## Entry Redirect

    Sends the browser to the Canvas authorize endpoint. Nothing from the
    incoming request goes into the URL.
    """
    logger.info("Redirecting browser to the Canvas authorization endpoint")
    return RedirectResponse(url=request.app.state.authorization_url, status_code=status.HTTP_302_FOUND)


@authRouter.get("/oauth/callback")
async def oauth_callback(
    request: Request,
    code: str | None = Query(None),
    error: str | None = Query(None),
):
    """
    ## OAuth Callback

    Exchanges the authorization code once, binds the token to a new session
    and hands the browser only the session cookie.
    """
    if not code:
        if error:
            logger.warning(f"Authorization not granted by Canvas: {error}")
        raise MissingAuthorizationCode()

    settings = _settings(request)
    binder = _binder(request)
    exchanger: TokenExchanger = request.app.state.token_exchanger

    result = await exchanger.exchange(code)

    # A browser logging in again must not keep the previous session alive.
    await binder.clear(request.cookies.get(settings.SESSION_COOKIE_NAME))
    credential = await binder.bind(result)

    response = RedirectResponse(url=settings.APP_ENTRY_PATH, status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=credential,
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
        path="/",
        max_age=settings.SESSION_TTL_SECONDS,
    )
    return response


@authRouter.api_route("/logout", methods=["GET", "POST"])
async def logout(request: Request):
    settings = _settings(request)
    await _binder(request).clear(request.cookies.get(settings.SESSION_COOKIE_NAME))

    response = RedirectResponse(url=settings.APP_ENTRY_PATH, status_code=status.HTTP_302_FOUND)
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
    )
    return response


@authRouter.get("/app", response_class=HTMLResponse)
async def app_page(request: Request):
    settings = _settings(request)
    token = await _binder(request).resolve(request.cookies.get(settings.SESSION_COOKIE_NAME))
    return templates.TemplateResponse(
        request,
        "app.html",
        {
            "logged_in": token is not None,
            "canvas_url": settings.canvas_base_url,
        },
    )


API_PREFIX = "/api/"


def _upstream_path(request: Request, path: str) -> str:
    """The path after `/api/`, still percent-encoded the way the browser sent it."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        raw = raw_path.split(b"?", 1)[0].decode("latin-1")
        if raw.startswith(API_PREFIX):
            return raw[len(API_PREFIX):]
    return quote(path, safe="/:@!$&'()*+,;=~")


@proxyRouter.get("/api/{path:path}")
async def proxy(request: Request, path: str):
    """
    ## Canvas API Tunnel

    `GET /api/<path>?<query>` becomes `GET <CANVAS_URL>/<path>?<query>` with
    the session's bearer token. Path and query are passed on as received,
    percent-escapes included.
    """
    token = getattr(request.state, "access_token", None)
    if not token:
        raise Unauthenticated()

    forwarder: ProxyForwarder = request.app.state.proxy_forwarder
    upstream = await forwarder.forward(ProxyRequest(path=_upstream_path(request, path), query=request.url.query), token)
    return forwarder.relay(upstream)
