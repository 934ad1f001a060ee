"""
Incremental removal of non-protocol output from a language server's stdout.

Some servers print diagnostics straight to stdout between LSP messages. The
``StreamSanitizer`` state machine consumes the raw pipe chunk by chunk and
emits only the bytes of complete ``Content-Length`` framed messages, in order
and unmodified, whatever the chunk boundaries are.

State is two fields:

- ``pending``: unclassified bytes since the last extraction (scanning).
- ``waiting_for``: payload bytes still owed to the message in flight.

When ``waiting_for`` is non-zero the pending buffer is always empty, because
every byte of the in-flight message seen so far has already been emitted.
"""

from __future__ import annotations

import io
import logging
from collections import deque
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from typing import Any, BinaryIO

from .diagnostics import DiagnosticsSink
from .framing import find_header

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 65536


class StreamSanitizer:
    """Chunk-driven extractor of framed LSP messages."""

    def __init__(self, diagnostics: DiagnosticsSink | None = None) -> None:
        self._diagnostics = diagnostics
        self._pending = b""
        self._waiting_for = 0
        self.messages_emitted = 0
        self.bytes_discarded = 0

    @property
    def pending(self) -> bytes:
        return self._pending

    @property
    def waiting_for(self) -> int:
        return self._waiting_for

    @property
    def scanning(self) -> bool:
        """True when no message is in flight."""
        return self._waiting_for == 0

    def on_chunk(self, chunk: bytes | bytearray | memoryview) -> list[bytes]:
        """Consume one raw chunk and return the message bytes it completes or continues."""
        # The source may reuse its buffer; never keep a view into it.
        data = bytes(chunk)
        emitted: list[bytes] = []

        if self._waiting_for > 0:
            if len(data) <= self._waiting_for:
                self._waiting_for -= len(data)
                if data:
                    emitted.append(data)
                if self._waiting_for == 0:
                    self.messages_emitted += 1
                return emitted

            emitted.append(data[: self._waiting_for])
            data = data[self._waiting_for :]
            self._waiting_for = 0
            self.messages_emitted += 1

        self._pending += data
        emitted.extend(self._extract())
        return emitted

    def on_end(self) -> list[bytes]:
        """Handle end of the source stream.

        Leftover noise and a truncated final message are dropped silently;
        the server most likely died mid-write.
        """
        if self._pending:
            logger.debug(
                "Source ended with %d unframed byte(s) pending; dropping them",
                len(self._pending),
            )
            self._discard(self._pending)
        if self._waiting_for > 0:
            logger.debug(
                "Source ended %d byte(s) short of a complete message",
                self._waiting_for,
            )
        self._pending = b""
        self._waiting_for = 0
        return []

    def _extract(self) -> Iterator[bytes]:
        while self._pending:
            pending = self._pending
            header = find_header(pending)
            if header is None:
                # Keep the concatenation; it is rescanned with the next chunk.
                return

            if header.begin > 0:
                self._discard(pending[: header.begin])

            message_end = header.end + header.content_length
            message = pending[header.begin : message_end]
            missing = header.message_length - len(message)
            if missing > 0:
                self._waiting_for = missing
                self._pending = b""
            else:
                self._pending = pending[message_end:]
                self.messages_emitted += 1
            yield message

    def _discard(self, data: bytes) -> None:
        self.bytes_discarded += len(data)
        if self._diagnostics is not None:
            self._diagnostics.discarded(data)


def sanitize(
    chunks: Iterable[bytes],
    diagnostics: DiagnosticsSink | None = None,
) -> Iterator[bytes]:
    """Lazily sanitize an iterable of raw chunks."""
    sanitizer = StreamSanitizer(diagnostics)
    for chunk in chunks:
        yield from sanitizer.on_chunk(chunk)
    yield from sanitizer.on_end()


async def sanitize_async(
    chunks: AsyncIterable[bytes],
    diagnostics: DiagnosticsSink | None = None,
) -> AsyncIterator[bytes]:
    """Async counterpart of :func:`sanitize` for anyio byte streams.

    Errors raised by *chunks* propagate to the consumer unchanged.
    """
    sanitizer = StreamSanitizer(diagnostics)
    async for chunk in chunks:
        for message in sanitizer.on_chunk(chunk):
            yield message
    for message in sanitizer.on_end():
        yield message


class SanitizedReader(io.RawIOBase):
    """Raw binary reader serving only the framed messages of *source*.

    Each refill reads one chunk from *source* (``read1`` when available, so a
    pipe returns whatever is ready) and passes it through a
    :class:`StreamSanitizer`.
    """

    def __init__(
        self,
        source: BinaryIO,
        *,
        diagnostics: DiagnosticsSink | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        super().__init__()
        self._source = source
        self._chunk_size = chunk_size
        self._sanitizer = StreamSanitizer(diagnostics)
        self._ready: deque[bytes] = deque()
        self._eof = False

    @property
    def sanitizer(self) -> StreamSanitizer:
        return self._sanitizer

    def readable(self) -> bool:
        return True

    def _read_chunk(self) -> bytes:
        read1 = getattr(self._source, "read1", None)
        if read1 is not None:
            return read1(self._chunk_size)
        return self._source.read(self._chunk_size)

    def _fill(self) -> bool:
        """Pull chunks until something is ready; False once the source is exhausted."""
        while not self._ready:
            if self._eof:
                return False
            chunk = self._read_chunk()
            if not chunk:
                self._eof = True
                self._ready.extend(self._sanitizer.on_end())
                continue
            self._ready.extend(self._sanitizer.on_chunk(chunk))
        return True

    def readinto(self, buffer: Any) -> int:
        if not self._fill():
            return 0

        head = self._ready[0]
        size = min(len(buffer), len(head))
        buffer[:size] = head[:size]
        if size == len(head):
            self._ready.popleft()
        else:
            self._ready[0] = head[size:]
        return size

    def close(self) -> None:
        self._ready.clear()
        super().close()


def open_sanitized(
    source: BinaryIO,
    *,
    diagnostics: DiagnosticsSink | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> io.BufferedReader:
    """Wrap *source* so ``readline``/``read`` see only well-formed LSP messages."""
    raw = SanitizedReader(source, diagnostics=diagnostics, chunk_size=chunk_size)
    return io.BufferedReader(raw)
