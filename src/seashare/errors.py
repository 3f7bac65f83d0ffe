"""Error taxonomy for the gateway.

User errors carry a status code and a short reason that is safe to return
to the client. Internal errors carry diagnostic context that is logged
server-side and never leaves the process; clients only see a generic 500.
"""

from typing import Any


class GatewayError(Exception):
    """Base class for all classified gateway failures."""

    status_code: int = 500
    reason: str = "internal server error"

    def __init__(self, reason: str | None = None):
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


# -----------------------------------------------------------------------------
# User-facing errors
# -----------------------------------------------------------------------------


class UserError(GatewayError):
    """Failure attributable to the client; reason is returned verbatim."""

    status_code = 400


class MissingCredential(UserError):
    reason = "invalid seafile-token header"


class InvalidCredential(UserError):
    status_code = 401
    reason = "invalid seafile-token header"


class PermissionDenied(UserError):
    status_code = 403
    reason = "permission denied"


class QuotaExceeded(UserError):
    status_code = 507
    reason = "no storage remaining"


class NoFileSubmitted(UserError):
    reason = "no file submitted"


class FilenameNotSpecified(UserError):
    reason = "filename not specified"


class MissingHostHeader(UserError):
    reason = "missing host header"


class MultipartError(UserError):
    reason = "error reading multipart form"


class ConnectionDropped(UserError):
    reason = "connection dropped"


class NotFound(UserError):
    status_code = 404
    reason = "file not found"


# -----------------------------------------------------------------------------
# Internal errors
# -----------------------------------------------------------------------------


class InternalError(GatewayError):
    """Failure that is not the client's fault.

    ``context`` holds whatever helps diagnose the failure (operation,
    backend status, response excerpt, URL) and is only ever logged.
    """

    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__()
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class BackendTransportError(InternalError):
    """DNS, TCP, TLS, protocol or timeout failure talking to the backend."""


class UnexpectedBackendStatus(InternalError):
    """Backend answered with a status the gateway has no mapping for."""


class MalformedRedirect(InternalError):
    """Share resolution answered 302 without a usable Location header."""


class MalformedShareLink(InternalError):
    """Share-link creation returned something without a ``link`` field."""


class BrokenUploadLink(InternalError):
    """Upload link handed out by the backend cannot be requested."""


class RelayInvariantViolation(InternalError):
    """Upload relay reached a state its protocol rules out."""


def body_excerpt(body: bytes | str, limit: int = 512) -> str:
    """Shorten a backend response body for log context."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if len(body) > limit:
        return body[:limit] + "..."
    return body
