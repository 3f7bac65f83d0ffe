"""Per-request Seafile credential carried through to the backend."""

from dataclasses import dataclass, field

from fastapi import Request

from seashare.errors import MissingCredential

TOKEN_HEADER = "seafile-token"


def _is_header_text(value: str) -> bool:
    # Visible ASCII plus space and horizontal tab
    return all(c == "\t" or " " <= c <= "~" for c in value)


@dataclass(frozen=True)
class SeafileToken:
    """Opaque API token supplied by the caller.

    The gateway never inspects the value; it is only forwarded as an
    ``Authorization`` header.
    """

    value: str = field(repr=False)

    @property
    def authorization(self) -> str:
        return f"Token {self.value}"

    @classmethod
    def parse(cls, raw: str | None) -> "SeafileToken":
        """Validate a raw header value.

        Raises:
            MissingCredential: If the header is absent, empty or not text
        """
        if not raw or not _is_header_text(raw):
            raise MissingCredential()
        return cls(raw)


def get_seafile_token(request: Request) -> SeafileToken:
    """FastAPI dependency extracting the ``seafile-token`` header."""
    return SeafileToken.parse(request.headers.get(TOKEN_HEADER))
