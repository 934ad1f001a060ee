"""Passive sinks for server output that is not protocol traffic.

Two kinds of text end up here: bytes the sanitizer dropped from the server's
stdout, and everything the server wrote to stderr. Nothing written to a sink
ever feeds back into the message stream.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Protocol, TextIO

logger = logging.getLogger(__name__)

_TEXT_ENCODING = "utf-8"


class DiagnosticsSink(Protocol):
    """Receiver for non-protocol server output."""

    def discarded(self, data: bytes) -> None:
        """Bytes removed from stdout because they were not part of a message."""
        ...

    def stderr(self, data: bytes) -> None:
        """Raw bytes the server wrote to stderr."""
        ...


class DebugChannel:
    """Operator-facing channel mirroring the editor's server output pane.

    Discarded stdout is bracketed with ``> STDOUT`` / ``< STDOUT`` lines so it
    can be told apart from stderr text in the same file.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def _write(self, text: str) -> None:
        if self._stream is None:
            return
        with self._lock:
            self._stream.write(text)
            self._stream.flush()

    def discarded(self, data: bytes) -> None:
        if not data:
            return
        text = data.decode(_TEXT_ENCODING, errors="replace")
        logger.debug("Discarded %d non-protocol byte(s) from server stdout", len(data))
        self._write("> STDOUT\n" + text + "\n< STDOUT\n")

    def stderr(self, data: bytes) -> None:
        if not data:
            return
        text = data.decode(_TEXT_ENCODING, errors="replace")
        logger.debug("server stderr: %s", text.rstrip("\n"))
        self._write(text)

    def close(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.close()
                self._stream = None


class MemoryDiagnostics:
    """Sink that keeps everything in memory (tests, ``filter --stats``)."""

    def __init__(self) -> None:
        self.discarded_chunks: list[bytes] = []
        self.stderr_chunks: list[bytes] = []
        self._lock = threading.Lock()

    def discarded(self, data: bytes) -> None:
        with self._lock:
            self.discarded_chunks.append(bytes(data))

    def stderr(self, data: bytes) -> None:
        with self._lock:
            self.stderr_chunks.append(bytes(data))

    @property
    def discarded_bytes(self) -> bytes:
        return b"".join(self.discarded_chunks)

    @property
    def stderr_bytes(self) -> bytes:
        return b"".join(self.stderr_chunks)


def open_debug_channel(path: str | None) -> DebugChannel:
    """Create a channel appending to *path*, or a log-only channel when unset."""
    if not path:
        return DebugChannel()
    return DebugChannel(open(Path(path).expanduser(), "a", encoding=_TEXT_ENCODING))
