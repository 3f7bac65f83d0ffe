"""Upload relay core logic."""

from seashare.core.upload.channel import ChannelClosed, RelayAborted, RelayChannel
from seashare.core.upload.multipart import MultipartReader, MultipartReadError
from seashare.core.upload.service import UploadRelay, UploadRequest, UploadResult

__all__ = [
    "ChannelClosed",
    "MultipartReadError",
    "MultipartReader",
    "RelayAborted",
    "RelayChannel",
    "UploadRelay",
    "UploadRequest",
    "UploadResult",
]
