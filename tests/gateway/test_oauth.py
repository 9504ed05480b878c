import httpx
import pytest

from canvas_gateway.models import TokenExchangeResult
from canvas_gateway.oauth import TokenExchanger, build_authorization_url, build_url_with_params
from canvas_gateway.utils.exceptions import AuthExchangeFailure, MissingAuthorizationCode, UpstreamUnavailable
from conftest import StubCanvas, make_settings


class TestAuthorizationUrl:

    def test_default_instance(self):
        settings = make_settings(CLIENT_ID="abc")

        assert build_authorization_url(settings) == (
            "https://canvas.instructure.com/login/oauth2/auth"
            "?client_id=abc&response_type=code"
            "&redirect_uri=http%3A%2F%2Flocalhost%3A3000%2Foauth%2Fcallback"
        )

    def test_trailing_slash_on_base_url(self):
        settings = make_settings(CANVAS_URL="https://school.instructure.com/", CLIENT_ID="10000000000001")

        assert build_authorization_url(settings).startswith(
            "https://school.instructure.com/login/oauth2/auth?client_id=10000000000001&"
        )

    def test_build_url_with_params_merges_and_drops_none(self):
        url = build_url_with_params("https://example.com/cb?keep=1", {"code": "c", "state": None})

        assert url == "https://example.com/cb?keep=1&code=c"


class TestTokenExchanger:

    def make_exchanger(self, canvas: StubCanvas, **overrides):
        client = httpx.AsyncClient(transport=canvas.transport())
        return TokenExchanger(make_settings(**overrides), client)

    async def test_posts_form_encoded_grant(self):
        canvas = StubCanvas()
        exchanger = self.make_exchanger(canvas)

        result = await exchanger.exchange("xyz")

        assert result.access_token == "t1"
        assert len(canvas.requests) == 1
        request = canvas.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://canvas.instructure.com/login/oauth2/token"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert canvas.form(request)["grant_type"] == "authorization_code"
        assert canvas.form(request)["code"] == "xyz"

    async def test_extra_upstream_fields_are_ignored(self):
        canvas = StubCanvas()
        canvas.token_payload = {
            "access_token": "t1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "r1",
            "user": {"id": 42, "name": "Student"},
        }

        result = await self.make_exchanger(canvas).exchange("xyz")

        assert result.expires_in == 3600
        assert not hasattr(result, "refresh_token")

    @pytest.mark.parametrize("code", ["", None])
    async def test_missing_code_never_contacts_upstream(self, code):
        canvas = StubCanvas()

        with pytest.raises(MissingAuthorizationCode):
            await self.make_exchanger(canvas).exchange(code)
        assert canvas.requests == []

    @pytest.mark.parametrize("payload", [
        {},
        {"access_token": ""},
        {"access_token": None},
        {"error": "invalid_client"},
    ])
    async def test_missing_access_token_is_an_auth_failure(self, payload):
        canvas = StubCanvas()
        canvas.token_payload = payload

        with pytest.raises(AuthExchangeFailure):
            await self.make_exchanger(canvas).exchange("xyz")

    async def test_non_json_body_is_an_auth_failure(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, content=b"<html>oops</html>", headers={"Content-Type": "text/html"})
        ))

        with pytest.raises(AuthExchangeFailure):
            await TokenExchanger(make_settings(), client).exchange("xyz")

    async def test_code_is_single_use(self):
        canvas = StubCanvas()
        exchanger = self.make_exchanger(canvas)
        await exchanger.exchange("once")

        with pytest.raises(AuthExchangeFailure):
            await exchanger.exchange("once")

    async def test_transport_failure_is_upstream_unavailable(self):
        canvas = StubCanvas()
        canvas.fail_with = httpx.ConnectError("connection refused")

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await self.make_exchanger(canvas).exchange("xyz")
        assert exc_info.value.status_code == 502

    async def test_undecodable_token_response_is_upstream_unavailable(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, content=b"not gzip", headers={"Content-Encoding": "gzip"})
        ))

        with pytest.raises(UpstreamUnavailable):
            await TokenExchanger(make_settings(), client).exchange("xyz")


def test_token_is_hidden_from_repr():
    result = TokenExchangeResult(access_token="super-secret", token_type="Bearer")

    assert "super-secret" not in repr(result)
