"""API routers for seashare."""

from seashare.api.raw import router as raw_router
from seashare.api.upload import router as upload_router

__all__ = [
    "raw_router",
    "upload_router",
]
