"""Shared fixtures: a scripted Seafile backend and inbound form builders."""

from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from seashare.backend_client import SeafileClient
from seashare.core.upload.channel import RelayAborted

LIBRARY = "11111111-1111-4111-8111-111111111111"
BOUNDARY = "seashareboundary"
FORM_CONTENT_TYPE = f"multipart/form-data; boundary={BOUNDARY}"


def form_part(name: str, filename: str | None = None) -> bytes:
    """Opening delimiter and headers of one inbound form part."""
    disposition = f'form-data; name="{name}"'
    if filename is not None:
        disposition += f'; filename="{filename}"'
    return f"--{BOUNDARY}\r\nContent-Disposition: {disposition}\r\n\r\n".encode()


def form_end() -> bytes:
    return f"\r\n--{BOUNDARY}--\r\n".encode()


def build_form(fields: list[tuple[str, str | None, bytes]]) -> bytes:
    """Encode ``(name, filename, data)`` triples as a multipart body."""
    body = b""
    for i, (name, filename, data) in enumerate(fields):
        if i:
            body += b"\r\n"
        body += form_part(name, filename) + data
    return body + form_end()


async def stream_bytes(data: bytes, chunk_size: int = 1024) -> AsyncIterator[bytes]:
    for start in range(0, len(data), chunk_size):
        yield data[start : start + chunk_size]


class FakeSeafile(httpx.AsyncBaseTransport):
    """Scripted Seafile server plugged in as the client transport.

    Unlike ``httpx.MockTransport`` it does not read request bodies up front,
    so upload bodies arrive chunk by chunk as the relay produces them.
    Records every request it receives; responses can be swapped per test.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.upload_link_response = httpx.Response(200, text='"https://backend/upload/xyz"')
        self.upload_status = 200
        self.upload_body = "fileid123"
        self.share_link_response = httpx.Response(
            200, json={"link": "https://backend/f/SHAREID/"}
        )
        self.resolve_response = httpx.Response(
            302, headers={"Location": "https://backend/files/xyz"}
        )
        self.content_response = httpx.Response(200, content=b"\x00\x01report-bytes\xff")

        # Transport failures raised instead of answering, keyed by path
        self.errors: dict[str, httpx.HTTPError] = {}
        # Raised after the first upload chunk has arrived
        self.upload_error: httpx.HTTPError | None = None
        self.on_upload_chunk: Callable[[bytes], None] | None = None
        self.read_upload_body = True
        self.uploaded = b""
        self.upload_aborted = False
        self.upload_finished = False

    @property
    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def find(self, path: str) -> httpx.Request:
        return next(r for r in self.requests if r.url.path == path)

    async def _upload(self, request: httpx.Request) -> httpx.Response:
        try:
            if self.read_upload_body:
                async for chunk in request.stream:
                    self.uploaded += chunk
                    if self.on_upload_chunk is not None:
                        self.on_upload_chunk(chunk)
                    if self.upload_error is not None:
                        raise self.upload_error
        except RelayAborted:
            self.upload_aborted = True
            raise
        finally:
            self.upload_finished = True
        return httpx.Response(self.upload_status, text=self.upload_body)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.errors:
            raise self.errors[path]

        if path.startswith("/api2/repos/") and path.endswith("/upload-link/"):
            return self.upload_link_response
        if path == "/upload/xyz":
            return await self._upload(request)
        if path == "/api/v2.1/share-links/":
            await request.aread()
            return self.share_link_response
        if path.startswith("/f/"):
            return self.resolve_response
        if path.startswith("/files/"):
            return self.content_response
        return httpx.Response(418, text=f"unexpected request {request.method} {path}")


@pytest.fixture
def fake_seafile():
    return FakeSeafile()


@pytest.fixture
async def seafile_client(fake_seafile):
    client = SeafileClient(
        base_url="https://backend",
        transport=fake_seafile,
    )
    yield client
    await client.close()
