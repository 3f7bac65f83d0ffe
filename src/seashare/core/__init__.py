"""Relay engines and the request-scoped types they operate on."""
