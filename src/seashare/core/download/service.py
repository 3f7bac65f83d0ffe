"""Download relay: resolve a share link and stream its content through."""

from collections.abc import AsyncIterator
from dataclasses import dataclass

import httpx

from seashare.backend_client.client import SeafileClient
from seashare.errors import (
    MalformedRedirect,
    NotFound,
    UnexpectedBackendStatus,
    body_excerpt,
)
from seashare.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DownloadStream:
    """An open backend content response.

    The caller must iterate ``iter_bytes`` to completion or call ``aclose``.
    """

    status_code: int
    response: httpx.Response
    relayed_bytes: int = 0

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.response.aiter_bytes():
                self.relayed_bytes += len(chunk)
                yield chunk
        finally:
            await self.response.aclose()

    async def aclose(self) -> None:
        await self.response.aclose()


class DownloadRelay:
    """Relays shared file content from Seafile to the requester."""

    def __init__(self, client: SeafileClient):
        self._client = client

    async def resolve(self, share_id: str) -> str:
        """Resolve a share id to the backing content URL.

        The mapping is not stable between calls and is never cached.

        Raises:
            NotFound: If the backend does not know the share link
            InternalError: For any other backend behaviour
        """
        response = await self._client.resolve_share_link(share_id)

        match response.status_code:
            case httpx.codes.FOUND:
                location = response.headers.get("location")
                if not location:
                    raise MalformedRedirect(
                        "share redirect without location",
                        operation="resolve_share",
                        share_id=share_id,
                    )
            case httpx.codes.NOT_FOUND:
                raise NotFound()
            case _:
                raise UnexpectedBackendStatus(
                    "unexpected share resolution response",
                    operation="resolve_share",
                    share_id=share_id,
                    status_code=response.status_code,
                    body=body_excerpt(response.content),
                )

        logger.debug("Resolved share link", share_id=share_id, location=location)
        return location

    async def open(self, share_id: str) -> DownloadStream:
        """Resolve ``share_id`` and open a streamed GET on its content."""
        logger.debug("Raw file requested", share_id=share_id)
        location = await self.resolve(share_id)
        response = await self._client.open_content_stream(location)
        return DownloadStream(status_code=response.status_code, response=response)
