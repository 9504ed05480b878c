"""
===========================================================================
CANVAS OAUTH2: AUTHORIZATION-CODE FLOW FOR A BROWSER CLIENT
===========================================================================

The browser never sees the OAuth client secret nor the access token.

1.  Entry Redirect: `/login` sends the browser to the Canvas authorize
    endpoint with the statically registered client id and redirect URI.

2.  Code Exchange: Canvas redirects back to `/oauth/callback?code=...`.
    The code is exchanged exactly once, on the back channel, using the
    client secret.

3.  Binding: the resulting access token is handed to the Session Binder
    and the browser receives only an opaque HTTP-only session cookie.
"""

from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl
import httpx
from pydantic import ValidationError

from .config import Settings
from .logging_util import get_logger
from .models import TokenExchangeResult
from .utils.exceptions import AuthExchangeFailure, MissingAuthorizationCode, UpstreamUnavailable


logger = get_logger(__name__)

AUTHORIZE_PATH = "/login/oauth2/auth"
TOKEN_PATH = "/login/oauth2/token"


def build_url_with_params(base_uri: str, params: dict[str, str | None]) -> str:
    """
    Append or merge query parameters into base_uri.
    """
    url = urlparse(base_uri)
    query = dict(parse_qsl(url.query))
    query.update({k: v for k, v in params.items() if v is not None})
    new_query = urlencode(query)
    new_url = url._replace(query=new_query)
    return urlunparse(new_url)


def build_authorization_url(settings: Settings) -> str:
    """The upstream authorize URL. Built from configuration only."""
    return build_url_with_params(settings.canvas_base_url + AUTHORIZE_PATH, {
        "client_id": settings.CLIENT_ID,
        "response_type": "code",
        "redirect_uri": settings.REDIRECT_URI,
    })


class TokenExchanger:
    """
    ## Upstream Token Exchange

    Trades a single-use authorization code for an access token at the Canvas
    token endpoint, using the statically registered client credentials.

    Failures come out two ways, so callers can tell them apart:

    - `AuthExchangeFailure`: Canvas answered, but without a usable token
      (rejected or reused code, bad client secret, malformed body).
    - `UpstreamUnavailable`: Canvas could not be reached at all.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client
        self.token_endpoint = settings.canvas_base_url + TOKEN_PATH

    async def exchange(self, code: str) -> TokenExchangeResult:
        if not code:
            raise MissingAuthorizationCode()

        data = {
            "grant_type": "authorization_code",
            "client_id": self.settings.CLIENT_ID,
            "client_secret": self.settings.CLIENT_SECRET,
            "redirect_uri": self.settings.REDIRECT_URI,
            "code": code,
        }

        try:
            response = await self.client.post(
                self.token_endpoint,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"}
            )
        except httpx.RequestError as e:
            logger.error(f"Token endpoint unreachable: {type(e).__name__}")
            raise UpstreamUnavailable("Could not reach the Canvas authorization server.") from e

        if response.is_error:
            # Body is Canvas's own error description, e.g. invalid_grant for a reused code.
            logger.warning(f"Token endpoint rejected the authorization code with status {response.status_code}")
            raise AuthExchangeFailure()

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Token endpoint returned a non-JSON body")
            raise AuthExchangeFailure()

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            logger.warning("Token endpoint response carried no access_token")
            raise AuthExchangeFailure()

        try:
            result = TokenExchangeResult.model_validate(payload)
        except ValidationError:
            logger.warning("Token endpoint response did not match the expected token shape")
            raise AuthExchangeFailure()

        logger.info(f"Authorization code exchanged (token_type={result.token_type}, expires_in={result.expires_in})")
        return result
