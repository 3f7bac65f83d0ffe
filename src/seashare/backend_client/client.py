"""HTTP client for the Seafile backend.

Redirect following is disabled: the download relay interprets the backend's
302 responses itself. Callers get raw ``httpx.Response`` objects and map
status codes to outcomes; this module only turns transport failures into
``BackendTransportError``.
"""

import secrets
from collections.abc import AsyncIterable, AsyncIterator
from urllib.parse import quote

import httpx

from seashare.config import BackendConfig
from seashare.core.credentials import SeafileToken
from seashare.errors import BackendTransportError, BrokenUploadLink
from seashare.observability.logging import get_logger

logger = get_logger(__name__)


def _form_param(value: str) -> str:
    """Escape a value for use inside a quoted Content-Disposition parameter."""
    return value.replace("\\", "\\\\").replace('"', "%22").replace("\r", "").replace("\n", "")


async def multipart_upload_body(
    boundary: str,
    object_name: str,
    chunks: AsyncIterable[bytes],
    parent_dir: str = "/",
) -> AsyncIterator[bytes]:
    """Frame streamed file chunks as a Seafile upload form.

    The ``parent_dir`` field precedes the ``file`` field so the backend
    knows the destination before the content starts arriving.
    """
    yield (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="parent_dir"\r\n'
        f"\r\n"
        f"{parent_dir}\r\n"
    ).encode()
    yield (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="file"; filename="{_form_param(object_name)}"\r\n'
        f"Content-Type: application/octet-stream\r\n"
        f"\r\n"
    ).encode()
    async for chunk in chunks:
        yield chunk
    yield f"\r\n--{boundary}--\r\n".encode()


class SeafileClient:
    """Client for a single Seafile server.

    One instance is shared by every request handler for the lifetime of the
    process; its connection pool is the only state requests share.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        max_connections: int = 100,
        max_keepalive_connections: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            follow_redirects=False,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def close(self) -> None:
        """Close the HTTP client and its connection pool."""
        await self._client.aclose()

    async def _send(
        self,
        operation: str,
        request: httpx.Request,
        *,
        stream: bool = False,
    ) -> httpx.Response:
        try:
            response = await self._client.send(request, stream=stream)
        except httpx.HTTPError as e:
            raise BackendTransportError(
                f"{operation} failed: {e!r}",
                operation=operation,
                url=str(request.url),
            ) from e

        logger.debug(
            "Backend responded",
            operation=operation,
            url=str(request.url),
            status_code=response.status_code,
        )
        return response

    async def get_upload_link(self, library: str, token: SeafileToken) -> httpx.Response:
        """Ask the backend for a one-time upload link into ``library``."""
        request = self._client.build_request(
            "GET",
            f"/api2/repos/{library}/upload-link/",
            headers={"Authorization": token.authorization},
        )
        return await self._send("upload_link", request)

    def build_upload_request(
        self,
        upload_link: str,
        token: SeafileToken,
        object_name: str,
        chunks: AsyncIterable[bytes],
    ) -> httpx.Request:
        """Build the multipart POST that streams ``chunks`` to ``upload_link``.

        Raises:
            BrokenUploadLink: If the link cannot be turned into a request
        """
        try:
            url = httpx.URL(upload_link)
        except httpx.InvalidURL as e:
            raise BrokenUploadLink(
                f"unable to upload file to link: {upload_link!r}",
                upload_link=upload_link,
                error=str(e),
            ) from e

        if url.scheme not in ("http", "https") or not url.host:
            raise BrokenUploadLink(
                f"unable to upload file to link: {upload_link!r}",
                upload_link=upload_link,
            )

        boundary = secrets.token_hex(16)
        return self._client.build_request(
            "POST",
            url,
            headers={
                "Authorization": token.authorization,
                "Content-Type": f"multipart/form-data; boundary={boundary}",
            },
            content=multipart_upload_body(boundary, object_name, chunks),
        )

    async def send_upload(self, request: httpx.Request) -> httpx.Response:
        """Send a request built by ``build_upload_request``.

        Exceptions raised by the body iterator (such as an aborted relay)
        propagate unchanged; the partially sent request is abandoned.
        """
        return await self._send("upload", request)

    async def create_share_link(
        self,
        library: str,
        path: str,
        token: SeafileToken,
    ) -> httpx.Response:
        """Create a public share link for ``path`` inside ``library``."""
        request = self._client.build_request(
            "POST",
            "/api/v2.1/share-links/",
            headers={
                "Authorization": token.authorization,
                "Accept": "application/json",
            },
            data={"repo_id": library, "path": path},
        )
        return await self._send("share_link", request)

    async def resolve_share_link(self, share_id: str) -> httpx.Response:
        """Request the download redirect for a public share link."""
        request = self._client.build_request(
            "GET",
            f"/f/{quote(share_id, safe='')}/",
            params={"dl": "1"},
        )
        return await self._send("resolve_share", request)

    async def open_content_stream(self, url: str) -> httpx.Response:
        """Open a streamed GET on a resolved content URL.

        The caller owns the returned response and must ``aclose`` it.
        """
        try:
            request = self._client.build_request("GET", url)
        except httpx.InvalidURL as e:
            raise BackendTransportError(
                f"invalid content url: {url!r}",
                operation="content",
                url=url,
            ) from e
        return await self._send("content", request, stream=True)


def create_seafile_client(
    config: BackendConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SeafileClient:
    """Factory function to create a SeafileClient from config."""
    return SeafileClient(
        base_url=config.base_url,
        timeout=config.timeout,
        max_connections=config.max_connections,
        max_keepalive_connections=config.max_keepalive_connections,
        transport=transport,
    )
