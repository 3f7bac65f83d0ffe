"""Upload relay: stream a client's file into Seafile and share it.

The client's multipart body and the backend upload are two independent
HTTP streams. The request task reads the client's ``file`` part chunk by
chunk and pushes each chunk through a single-slot ``RelayChannel``; a
separate task drives the backend POST whose body drains that channel.
Both sides are joined before the request finishes, whatever the outcome.
"""

import asyncio
import uuid
from collections.abc import AsyncIterable
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from seashare.backend_client.client import SeafileClient
from seashare.core.credentials import SeafileToken
from seashare.core.upload.channel import ChannelClosed, RelayChannel
from seashare.core.upload.multipart import MultipartReader, MultipartReadError, Part
from seashare.errors import (
    BackendTransportError,
    ConnectionDropped,
    FilenameNotSpecified,
    GatewayError,
    InvalidCredential,
    MalformedShareLink,
    MissingHostHeader,
    MultipartError,
    NoFileSubmitted,
    PermissionDenied,
    QuotaExceeded,
    RelayInvariantViolation,
    UnexpectedBackendStatus,
    body_excerpt,
)
from seashare.observability.logging import get_logger

logger = get_logger(__name__)

FILE_FIELD = "file"


@dataclass
class UploadRequest:
    """Everything the relay needs from one inbound upload."""

    library: str
    token: SeafileToken
    host: str | None
    content_type: str | None
    body: AsyncIterable[bytes]
    filename: str | None = None


@dataclass
class UploadResult:
    """Outcome of a successful relay."""

    public_url: str
    share_link: str
    object_name: str
    file_id: str
    relayed_bytes: int


def generate_object_name(filename: str) -> str:
    """Random storage name keeping the extension of ``filename``.

    Only the final path component is considered, so ``dir.v2/notes`` has no
    extension. A trailing dot yields no extension either.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    _, dot, extension = basename.rpartition(".")
    name = str(uuid.uuid4())
    if dot and extension:
        return f"{name}.{extension}"
    return name


def unquote_upload_link(body: str) -> str:
    """Strip the JSON-style quotes Seafile wraps the upload link in."""
    return body.removeprefix('"').removesuffix('"')


def share_id_from_link(link: str) -> str:
    """Last path segment of a share link such as ``https://host/f/abc123/``."""
    share_id = link.removesuffix("/").rsplit("/", 1)[-1]
    if not share_id or "/" not in link:
        raise MalformedShareLink(
            f"share link has no identifier: {link!r}",
            link=link,
        )
    return share_id


def compose_public_url(scheme: str, host: str, share_id: str, filename: str) -> str:
    return f"{scheme}://{host}/raw/{quote(share_id, safe='')}/{quote(filename, safe='')}"


class UploadRelay:
    """Relays client uploads into a Seafile library."""

    def __init__(
        self,
        client: SeafileClient,
        public_scheme: str = "https",
        channel_capacity: int = 1,
    ):
        self._client = client
        self._public_scheme = public_scheme
        self._channel_capacity = channel_capacity

    async def relay(self, request: UploadRequest) -> UploadResult:
        """Stream the request's file into the backend and share it.

        Raises:
            UserError: For failures attributable to the client or its token
            InternalError: For backend or protocol failures
        """
        if not request.host:
            raise MissingHostHeader()

        logger.debug("Client uploading to library", library=request.library)

        reader, filename = await self._open_file_part(request)
        object_name = generate_object_name(filename)

        upload_link = await self._acquire_upload_link(request.library, request.token)
        file_id, relayed_bytes = await self._relay_file(
            reader, upload_link, request.token, object_name
        )
        logger.debug(
            "Uploaded file",
            filename=filename,
            object_name=object_name,
            file_id=file_id,
            relayed_bytes=relayed_bytes,
        )

        try:
            share_link = await self._create_share_link(
                request.library, object_name, request.token
            )
            share_id = share_id_from_link(share_link)
        except GatewayError:
            logger.warning(
                "Uploaded object left without a share link",
                library=request.library,
                object_name=object_name,
            )
            raise
        logger.debug("Created share link", filename=filename, share_link=share_link)

        return UploadResult(
            public_url=compose_public_url(
                self._public_scheme, request.host, share_id, filename
            ),
            share_link=share_link,
            object_name=object_name,
            file_id=file_id,
            relayed_bytes=relayed_bytes,
        )

    async def _open_file_part(self, request: UploadRequest) -> tuple[MultipartReader, str]:
        """Position a reader at the first ``file`` part and resolve the filename."""
        try:
            reader = MultipartReader(request.content_type, request.body)
            part: Part | None = None
            while (candidate := await reader.next_part()) is not None:
                if candidate.name == FILE_FIELD:
                    part = candidate
                    break
        except MultipartReadError as e:
            logger.debug("Unreadable multipart form", error=str(e))
            raise MultipartError() from e

        if part is None:
            raise NoFileSubmitted()

        filename = request.filename or part.filename
        if not filename:
            raise FilenameNotSpecified()
        return reader, filename

    async def _acquire_upload_link(self, library: str, token: SeafileToken) -> str:
        logger.debug("Querying upload link", library=library)
        response = await self._client.get_upload_link(library, token)

        match response.status_code:
            case httpx.codes.OK:
                pass
            case httpx.codes.UNAUTHORIZED:
                raise InvalidCredential()
            case httpx.codes.FORBIDDEN:
                raise PermissionDenied()
            case httpx.codes.INTERNAL_SERVER_ERROR:
                # Seafile has no distinct status for a full library
                raise QuotaExceeded()
            case _:
                raise UnexpectedBackendStatus(
                    "unexpected upload-link response",
                    operation="upload_link",
                    library=library,
                    status_code=response.status_code,
                    body=body_excerpt(response.content),
                )

        upload_link = unquote_upload_link(response.text)
        logger.debug("Upload link acquired", library=library, upload_link=upload_link)
        return upload_link

    async def _relay_file(
        self,
        reader: MultipartReader,
        upload_link: str,
        token: SeafileToken,
        object_name: str,
    ) -> tuple[str, int]:
        """Pump the client's file part into the backend upload.

        Returns:
            Backend object id and number of bytes relayed
        """
        channel = RelayChannel(capacity=self._channel_capacity)
        upload_request = self._client.build_upload_request(
            upload_link, token, object_name, channel.chunks()
        )

        send_task = asyncio.create_task(self._client.send_upload(upload_request))
        # Release a blocked sender even if httpx never starts reading the body
        send_task.add_done_callback(lambda _: channel.close_receiver())

        try:
            while True:
                try:
                    chunk = await reader.read_chunk()
                except MultipartReadError as e:
                    logger.debug("Client stream failed mid-transfer", error=str(e))
                    await self._abort(channel, send_task)
                    raise ConnectionDropped() from e

                if chunk is None:
                    await channel.close()
                    response = await self._join(send_task)
                    if response.status_code != httpx.codes.OK:
                        raise UnexpectedBackendStatus(
                            "backend rejected upload",
                            operation="upload",
                            status_code=response.status_code,
                            body=body_excerpt(response.content),
                        )
                    logger.debug(
                        "Relay finished",
                        relayed_bytes=channel.bytes_relayed,
                        peak_buffered_bytes=channel.peak_buffered_bytes,
                    )
                    return response.text, channel.bytes_relayed

                try:
                    await channel.send(chunk)
                except ChannelClosed:
                    # Only a failure can end the upload before the channel is closed
                    response = await self._join(send_task)
                    raise RelayInvariantViolation(
                        "backend upload completed before the file was fully relayed",
                        operation="upload",
                        status_code=response.status_code,
                        body=body_excerpt(response.content),
                    )
        finally:
            if not send_task.done():
                send_task.cancel()
                await asyncio.wait({send_task})

    async def _join(self, send_task: asyncio.Task) -> httpx.Response:
        """Wait for the backend upload and return its response.

        Raises:
            InternalError: If the upload failed
        """
        try:
            return await send_task
        except GatewayError:
            raise
        except Exception as e:
            raise BackendTransportError(
                f"upload task failed: {e!r}",
                operation="upload",
            ) from e

    async def _abort(self, channel: RelayChannel, send_task: asyncio.Task) -> None:
        """Make the backend abandon the upload, then wait for the task."""
        try:
            await channel.abort(ConnectionDropped())
        except ChannelClosed:
            logger.debug("Backend upload already finished before abort")
        await channel.close()

        await asyncio.wait({send_task})
        if not send_task.cancelled() and send_task.exception() is not None:
            logger.debug(
                "Backend upload abandoned",
                error=repr(send_task.exception()),
            )
        elif not send_task.cancelled():
            logger.warning(
                "Backend upload completed despite abort",
                status_code=send_task.result().status_code,
            )

    async def _create_share_link(
        self,
        library: str,
        object_name: str,
        token: SeafileToken,
    ) -> str:
        response = await self._client.create_share_link(library, f"/{object_name}", token)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        link = payload.get("link") if isinstance(payload, dict) else None
        if not isinstance(link, str) or not link:
            raise MalformedShareLink(
                "malformed share link response",
                operation="share_link",
                status_code=response.status_code,
                body=body_excerpt(response.content),
            )
        return link
