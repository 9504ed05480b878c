from urllib.parse import parse_qs
from typing import Callable, Optional
import httpx
import pytest
from fastapi.testclient import TestClient

from canvas_gateway.config import Settings
from canvas_gateway.http_server import create_app


CANVAS_URL = "https://canvas.instructure.com"
TOKEN_PATH = "/login/oauth2/token"


class StubCanvas:
    """
    Test double for the Canvas server, plugged in through httpx.MockTransport.

    Every request that reaches it is recorded, so tests can assert that the
    gateway did (or did not) talk to the upstream. Authorization codes are
    single use, like the real token endpoint.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_payload: dict = {"access_token": "t1", "token_type": "Bearer"}
        self.used_codes: set[str] = set()
        self.api_handler: Callable[[httpx.Request], httpx.Response] = self.default_api_handler
        self.fail_with: Optional[Exception] = None

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == TOKEN_PATH]

    @property
    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != TOKEN_PATH]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    @staticmethod
    def default_api_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"id": 1, "name": "Intro to Testing"}])

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with

        if request.url.path == TOKEN_PATH:
            code = self.form(request).get("code")
            if not code or code in self.used_codes:
                return httpx.Response(400, json={"error": "invalid_grant"})
            self.used_codes.add(code)
            return httpx.Response(200, json=self.token_payload)

        return self.api_handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_settings(**overrides) -> Settings:
    values = dict(
        CANVAS_URL=CANVAS_URL,
        CLIENT_ID="abc",
        CLIENT_SECRET="s3cret",
        REDIRECT_URI="http://localhost:3000/oauth/callback",
        STORAGE_BACKEND="memory",
        SESSION_COOKIE_NAME="canvas_session",
        SESSION_COOKIE_SECURE=False,
        SESSION_TTL_SECONDS=None,
        PROXY_ALLOWED_PATH_PREFIXES=[],
        LOG_LEVEL="DEBUG",
        LOG_FILE=None,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def canvas() -> StubCanvas:
    return StubCanvas()


@pytest.fixture
def app(settings, canvas):
    return create_app(settings, transport=canvas.transport())


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def login(client: TestClient, code: str = "xyz") -> httpx.Response:
    return client.get("/oauth/callback", params={"code": code}, follow_redirects=False)
