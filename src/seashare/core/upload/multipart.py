"""Incremental reader for an inbound ``multipart/form-data`` body.

Starlette's form parsing spools uploaded files before the handler runs; the
relay instead needs to pull the file part's bytes one network chunk at a
time. The push-style ``python_multipart`` parser is fed from the request
stream and its callbacks are queued as events, so at most one network
chunk's worth of parsed data is held at any moment.
"""

from collections import deque
from collections.abc import AsyncIterable
from dataclasses import dataclass, field

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect


class MultipartReadError(Exception):
    """The body could not be read as multipart (framing, truncation, disconnect)."""


@dataclass
class Part:
    """Headers of one multipart part."""

    headers: list[tuple[str, str]] = field(default_factory=list)
    name: str | None = None
    filename: str | None = None


def _decode(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


def boundary_from_content_type(content_type: str | None) -> bytes:
    """Extract the multipart boundary from a Content-Type header.

    Raises:
        MultipartReadError: If the header is missing or not multipart/form-data
    """
    if not content_type:
        raise MultipartReadError("missing content-type header")
    media_type, options = parse_options_header(content_type)
    if media_type.strip().lower() != b"multipart/form-data":
        raise MultipartReadError(f"unsupported content-type {media_type!r}")
    boundary = options.get(b"boundary")
    if not boundary:
        raise MultipartReadError("multipart boundary not specified")
    return boundary


class MultipartReader:
    """Pull-based view over a streamed multipart body.

    Usage: call ``next_part`` until it returns the wanted part (or None at
    the end of the form), then ``read_chunk`` until it returns None.
    """

    def __init__(self, content_type: str | None, stream: AsyncIterable[bytes]):
        self._content_type = content_type
        self._stream = aiter(stream)
        self._events: deque[tuple] = deque()
        self._eof = False
        self._header_field = b""
        self._header_value = b""
        self._headers: list[tuple[bytes, bytes]] = []
        self._parser: MultipartParser | None = None

    def _create_parser(self) -> MultipartParser:
        return MultipartParser(
            boundary_from_content_type(self._content_type),
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_end": self._on_end,
            },
        )

    # -- parser callbacks

    def _on_part_begin(self) -> None:
        self._headers = []

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if start == end:
            return
        chunk = data[start:end]
        if self._events and self._events[-1][0] == "data":
            self._events[-1] = ("data", self._events[-1][1] + chunk)
        else:
            self._events.append(("data", chunk))

    def _on_part_end(self) -> None:
        self._events.append(("part_end",))

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers.append((self._header_field.lower(), self._header_value))
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        self._events.append(("headers", self._headers))

    def _on_end(self) -> None:
        self._events.append(("end",))

    # -- event pump

    async def _next_event(self) -> tuple | None:
        """Next parser event, or None if the body ended without a final boundary."""
        while not self._events:
            if self._eof:
                return None
            try:
                chunk = await anext(self._stream)
            except StopAsyncIteration:
                self._eof = True
                continue
            except ClientDisconnect as e:
                raise MultipartReadError("client disconnected") from e
            if not chunk:
                continue
            # The content type is only checked once the body has data
            if self._parser is None:
                self._parser = self._create_parser()
            try:
                self._parser.write(chunk)
            except MultipartParseError as e:
                raise MultipartReadError(f"malformed multipart body: {e}") from e
        return self._events.popleft()

    async def next_part(self) -> Part | None:
        """Advance to the headers of the next part.

        Remaining data of the current part is skipped. Returns None once the
        form (or the body) ends.

        Raises:
            MultipartReadError: On framing errors or a client disconnect
        """
        while True:
            event = await self._next_event()
            if event is None or event[0] == "end":
                return None
            if event[0] != "headers":
                continue

            part = Part(headers=[(_decode(k), _decode(v)) for k, v in event[1]])
            for name, value in event[1]:
                if name != b"content-disposition":
                    continue
                _, options = parse_options_header(value)
                if b"name" in options:
                    part.name = _decode(options[b"name"])
                if options.get(b"filename"):
                    part.filename = _decode(options[b"filename"])
            return part

    async def read_chunk(self) -> bytes | None:
        """Next data chunk of the current part, or None when the part ends.

        Raises:
            MultipartReadError: On framing errors, a client disconnect or a
                body that ends inside the part
        """
        while True:
            event = await self._next_event()
            if event is None:
                raise MultipartReadError("body ended inside a part")
            kind = event[0]
            if kind == "data":
                return event[1]
            if kind == "part_end":
                return None
            raise MultipartReadError(f"unexpected {kind} event inside a part")
