"""ASGI middleware."""

from seashare.middleware.paths import TrimTrailingSlashMiddleware

__all__ = ["TrimTrailingSlashMiddleware"]
