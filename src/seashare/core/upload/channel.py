"""Bounded conduit between the client reader and the backend upload task.

The sending side pushes file chunks and finishes with either ``close`` (all
data delivered) or ``abort`` (the client stream failed). The receiving side
is an async iterator handed to httpx as the upload body; an abort makes it
raise so the backend request is abandoned instead of silently truncated.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass

_END = object()


class ChannelClosed(Exception):
    """The receiving side stopped consuming."""


class RelayAborted(Exception):
    """Raised on the receiving side when the sender aborted the relay."""

    def __init__(self, reason: BaseException):
        super().__init__(str(reason))
        self.reason = reason


@dataclass(frozen=True)
class _Abort:
    reason: BaseException


class RelayChannel:
    """Single-producer, single-consumer channel with blocking bounded capacity.

    ``send`` suspends while ``capacity`` chunks are waiting, so the reader can
    never get more than ``capacity`` chunks ahead of the backend upload.
    """

    def __init__(self, capacity: int = 1):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._receiver_closed = asyncio.Event()
        self._sender_closed = False

        self.buffered_bytes = 0
        self.peak_buffered_bytes = 0
        self.bytes_relayed = 0

    @property
    def is_closed(self) -> bool:
        """Whether the receiving side has gone away."""
        return self._receiver_closed.is_set()

    async def _put(self, item: object) -> None:
        if self._receiver_closed.is_set():
            raise ChannelClosed()

        if not self._queue.full():
            self._queue.put_nowait(item)
            return

        put = asyncio.ensure_future(self._queue.put(item))
        closed = asyncio.ensure_future(self._receiver_closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not put.done():
                put.cancel()

        if put.cancelled() or not put.done():
            raise ChannelClosed()

    async def send(self, chunk: bytes) -> None:
        """Queue a chunk, waiting while the channel is full.

        Raises:
            ChannelClosed: If the receiving side has gone away
        """
        if self._sender_closed:
            raise RuntimeError("send on a closed relay channel")
        await self._put(chunk)
        self.buffered_bytes += len(chunk)
        self.peak_buffered_bytes = max(self.peak_buffered_bytes, self.buffered_bytes)

    async def abort(self, reason: BaseException) -> None:
        """Tell the receiving side to fail instead of finishing the body.

        Raises:
            ChannelClosed: If the receiving side has already gone away
        """
        self._sender_closed = True
        await self._put(_Abort(reason))

    async def close(self) -> None:
        """Signal end of data. A no-op after ``abort`` or a second call."""
        if self._sender_closed:
            return
        self._sender_closed = True
        try:
            await self._put(_END)
        except ChannelClosed:
            pass

    def close_receiver(self) -> None:
        """Mark the receiving side as gone and release a blocked sender."""
        self._receiver_closed.set()

    async def receive(self) -> bytes | None:
        """Next chunk, or None once the sender closed the channel.

        Raises:
            RelayAborted: If the sender aborted the relay
        """
        item = await self._queue.get()
        if item is _END:
            return None
        if isinstance(item, _Abort):
            raise RelayAborted(item.reason)
        self.buffered_bytes -= len(item)
        return item

    async def chunks(self) -> AsyncIterator[bytes]:
        """Iterate received chunks; closes the receiving side when done."""
        try:
            while (chunk := await self.receive()) is not None:
                self.bytes_relayed += len(chunk)
                yield chunk
        finally:
            self.close_receiver()
