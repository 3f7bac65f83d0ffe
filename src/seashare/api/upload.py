"""Upload router - POST /upload/{library}."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from starlette.convertors import Convertor, register_url_convertor

from seashare.core.credentials import SeafileToken, get_seafile_token
from seashare.core.upload import UploadRelay, UploadRequest
from seashare.errors import UserError
from seashare.observability.metrics import metrics_registry

router = APIRouter(tags=["upload"])


class LibraryIdConvertor(Convertor[str]):
    """Seafile library ids; anything else does not match the route (404)."""

    regex = "[0-9a-f]{8}-[0-9a-f]{4}-[0-5][0-9a-f]{3}-[089ab][0-9a-f]{3}-[0-9a-f]{12}"

    def convert(self, value: str) -> str:
        return value

    def to_string(self, value: str) -> str:
        return value


register_url_convertor("library", LibraryIdConvertor())


# -----------------------------------------------------------------------------
# Dependency Injection
# -----------------------------------------------------------------------------


def get_upload_relay(request: Request) -> UploadRelay:
    """Get UploadRelay from app state."""
    return request.app.state.upload_relay


UploadRelayDep = Annotated[UploadRelay, Depends(get_upload_relay)]
SeafileTokenDep = Annotated[SeafileToken, Depends(get_seafile_token)]


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@router.post("/upload/{library:library}", response_class=PlainTextResponse)
async def upload(
    library: str,
    request: Request,
    relay: UploadRelayDep,
    token: SeafileTokenDep,
    filename: str | None = None,
) -> PlainTextResponse:
    """Relay a multipart ``file`` part into a library and return its public URL."""
    upload_request = UploadRequest(
        library=library,
        token=token,
        host=request.headers.get("host"),
        content_type=request.headers.get("content-type"),
        body=request.stream(),
        filename=filename or None,
    )

    try:
        result = await relay.relay(upload_request)
    except UserError:
        metrics_registry.record_upload("user_error")
        raise
    except Exception:
        metrics_registry.record_upload("internal_error")
        raise

    metrics_registry.record_upload("success", result.relayed_bytes)
    return PlainTextResponse(result.public_url)
