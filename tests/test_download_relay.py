"""Tests for the download relay."""

import httpx
import pytest

from seashare.api.raw import RelayedContentResponse
from seashare.core.download import DownloadRelay, DownloadStream
from seashare.errors import (
    BackendTransportError,
    MalformedRedirect,
    NotFound,
    UnexpectedBackendStatus,
)


@pytest.fixture
def relay(seafile_client):
    return DownloadRelay(seafile_client)


@pytest.mark.asyncio
async def test_follows_redirect_to_exact_location(relay, fake_seafile):
    """Test that the Location header is fetched verbatim and streamed through."""
    stream = await relay.open("SHAREID")
    body = b"".join([chunk async for chunk in stream.iter_bytes()])

    assert stream.status_code == 200
    assert body == b"\x00\x01report-bytes\xff"
    assert stream.relayed_bytes == len(body)

    resolve_request, content_request = fake_seafile.requests
    assert resolve_request.method == "GET"
    assert resolve_request.url.path == "/f/SHAREID/"
    assert resolve_request.url.params["dl"] == "1"
    assert str(content_request.url) == "https://backend/files/xyz"


@pytest.mark.asyncio
async def test_content_status_is_passed_through(relay, fake_seafile):
    """Test that the content response's status is preserved."""
    fake_seafile.content_response = httpx.Response(403, content=b"forbidden")

    stream = await relay.open("SHAREID")
    body = b"".join([chunk async for chunk in stream.iter_bytes()])

    assert stream.status_code == 403
    assert body == b"forbidden"


@pytest.mark.asyncio
async def test_unknown_share_is_not_found(relay, fake_seafile):
    """Test that a 404 resolution makes no second backend call."""
    fake_seafile.resolve_response = httpx.Response(404)

    with pytest.raises(NotFound):
        await relay.open("MISSING")

    assert fake_seafile.paths == ["/f/MISSING/"]


@pytest.mark.asyncio
async def test_redirect_without_location(relay, fake_seafile):
    """Test that a 302 without Location is an internal failure."""
    fake_seafile.resolve_response = httpx.Response(302)

    with pytest.raises(MalformedRedirect):
        await relay.open("SHAREID")

    assert len(fake_seafile.requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [200, 301, 500])
async def test_unexpected_resolution_status(relay, fake_seafile, status_code):
    """Test that anything but 302 or 404 is an internal failure."""
    fake_seafile.resolve_response = httpx.Response(status_code, text="unexpected")

    with pytest.raises(UnexpectedBackendStatus):
        await relay.open("SHAREID")

    assert len(fake_seafile.requests) == 1


@pytest.mark.asyncio
async def test_share_id_is_path_escaped(relay, fake_seafile):
    """Test that a share id cannot escape its path segment."""
    fake_seafile.resolve_response = httpx.Response(404)

    with pytest.raises(NotFound):
        await relay.open("../api2")

    assert fake_seafile.requests[0].url.raw_path == b"/f/..%2Fapi2/?dl=1"


class TrackingStream(httpx.AsyncByteStream):
    def __init__(self, data: bytes):
        self.data = data
        self.closed = False

    async def __aiter__(self):
        yield self.data

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_content_closed_when_client_gone_before_headers():
    """Test that the backend response is closed even if streaming never starts."""
    content = TrackingStream(b"never delivered")
    stream = DownloadStream(
        status_code=200,
        response=httpx.Response(200, stream=content),
    )
    response = RelayedContentResponse(stream)

    scope = {"type": "http", "asgi": {"version": "3.0", "spec_version": "2.4"}}

    async def receive():
        return {"type": "http.disconnect"}

    async def send(message):
        raise OSError("connection reset by peer")

    with pytest.raises(Exception):
        await response(scope, receive, send)

    assert content.closed
    assert stream.relayed_bytes == 0


@pytest.mark.asyncio
async def test_resolution_transport_failure(relay, fake_seafile):
    """Test that a transport failure while resolving is an internal failure."""
    fake_seafile.errors["/f/SHAREID/"] = httpx.ConnectError("connection refused")

    with pytest.raises(BackendTransportError) as exc_info:
        await relay.open("SHAREID")

    assert exc_info.value.context["operation"] == "resolve_share"
