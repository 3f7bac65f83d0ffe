"""Download relay core logic."""

from seashare.core.download.service import DownloadRelay, DownloadStream

__all__ = [
    "DownloadRelay",
    "DownloadStream",
]
