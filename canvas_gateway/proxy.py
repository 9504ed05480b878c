"""
## Proxy Forwarder

Transparent tunnel from `/api/<path>` to `<CANVAS_URL>/<path>`.

Any upstream path is forwarded verbatim unless `PROXY_ALLOWED_PATH_PREFIXES`
narrows it. The bound access token is added as a bearer credential; the
upstream status, content type and body come back untouched, the body
streamed chunk by chunk.
"""

from typing import AsyncIterator, Sequence
from urllib.parse import unquote
import posixpath
import httpx
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from .logging_util import get_logger
from .models import ProxyRequest
from .utils.exceptions import ProxyPathForbidden, UpstreamUnavailable


logger = get_logger(__name__)

# Besides Content-Type: Canvas paginates through Link, file downloads name themselves
# through Content-Disposition.
RELAYED_HEADERS = ("link", "content-disposition")


class ProxyForwarder:

    def __init__(self, base_url: str, client: httpx.AsyncClient, allowed_prefixes: Sequence[str] = ()):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.allowed_prefixes = tuple(p.lstrip("/") for p in allowed_prefixes)

    def is_allowed(self, path: str) -> bool:
        if not self.allowed_prefixes:
            return True
        # Match on what Canvas will resolve, so escapes and dot segments cannot slip past a prefix.
        resolved = posixpath.normpath("/" + unquote(path)).lstrip("/")
        return resolved.startswith(self.allowed_prefixes)

    def build_url(self, request: ProxyRequest) -> str:
        # `path` keeps its percent-escapes; httpx leaves existing escapes alone.
        url = f"{self.base_url}/{request.path.lstrip('/')}"
        if request.query:
            url = f"{url}?{request.query}"
        return url

    async def forward(self, request: ProxyRequest, token: str) -> httpx.Response:
        """
        Open the upstream response in streaming mode.

        The caller owns the returned response and must close it, which the
        response built by `relay` does once it has been sent or abandoned.
        """
        if not self.is_allowed(request.path):
            logger.warning(f"Rejected proxy call outside the allow-list: /{request.path.lstrip('/')}")
            raise ProxyPathForbidden()

        upstream_request = self.client.build_request(
            "GET",
            self.build_url(request),
            headers={"Authorization": f"Bearer {token}"},
        )

        try:
            response = await self.client.send(upstream_request, stream=True, follow_redirects=True)
        except httpx.RequestError as e:
            # Covers connection failures as well as redirect loops.
            logger.error(f"Upstream unreachable for /{request.path.lstrip('/')}: {type(e).__name__}")
            raise UpstreamUnavailable() from e

        logger.debug(f"Upstream answered {response.status_code} for /{request.path.lstrip('/')}")
        return response

    def relay(self, upstream: httpx.Response) -> "UpstreamStreamingResponse":
        headers = {
            name: upstream.headers[name]
            for name in RELAYED_HEADERS
            if name in upstream.headers
        }
        response = UpstreamStreamingResponse(upstream, headers=headers)
        content_type = upstream.headers.get("content-type")
        if content_type:
            response.headers["content-type"] = content_type
        return response


class UpstreamStreamingResponse(StreamingResponse):
    """
    Streams an upstream body and releases the upstream connection however
    the send ends, including when the browser is gone before the first byte.
    """

    def __init__(self, upstream: httpx.Response, headers: dict[str, str]):
        super().__init__(_stream_body(upstream), status_code=upstream.status_code, headers=headers)
        self.upstream = upstream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.upstream.aclose()


async def _stream_body(upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in upstream.aiter_bytes():
            yield chunk
    except httpx.RequestError:
        # Status line is already out; re-raising aborts the browser connection mid-body.
        logger.error("Upstream connection dropped while relaying the body")
        raise
    finally:
        await upstream.aclose()
