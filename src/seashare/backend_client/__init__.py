"""Seafile backend client."""

from seashare.backend_client.client import SeafileClient, create_seafile_client

__all__ = [
    "SeafileClient",
    "create_seafile_client",
]
