"""Raw download router - GET /raw/{share_id}/{filename}."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from seashare.core.download import DownloadRelay, DownloadStream
from seashare.errors import UserError
from seashare.observability.metrics import metrics_registry

router = APIRouter(tags=["raw"])


def get_download_relay(request: Request) -> DownloadRelay:
    """Get DownloadRelay from app state."""
    return request.app.state.download_relay


DownloadRelayDep = Annotated[DownloadRelay, Depends(get_download_relay)]


def _record_download_bytes(stream: DownloadStream) -> None:
    metrics_registry.record_download_bytes(stream.relayed_bytes)


class RelayedContentResponse(StreamingResponse):
    """Streams a backend content response and always closes it.

    The body iterator never starts if the client is gone before the
    response headers are sent, so closing cannot be left to it.
    """

    def __init__(self, stream: DownloadStream):
        super().__init__(
            stream.iter_bytes(),
            status_code=stream.status_code,
            media_type="application/octet-stream",
            background=BackgroundTask(_record_download_bytes, stream),
        )
        self.stream = stream

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.stream.aclose()


@router.get("/raw/{share_id}/{filename}")
async def get_raw(
    share_id: str,
    filename: str,
    relay: DownloadRelayDep,
) -> RelayedContentResponse:
    """Stream a shared file's content.

    ``filename`` is only there so clients see a sensible name and extension.
    """
    try:
        stream = await relay.open(share_id)
    except UserError:
        metrics_registry.record_download("user_error")
        raise
    except Exception:
        metrics_registry.record_download("internal_error")
        raise

    metrics_registry.record_download("success")
    return RelayedContentResponse(stream)
