"""
LSP base-protocol framing helpers.

Wire format handled here::

    Content-Length: <digits>\\r\\n
    \\r\\n
    <payload bytes>

``find_header`` is the frame locator used by the stream sanitizer. It only
recognizes the exact single-header form above; anything else on the stream is
noise.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

HEADER_PREFIX = b"Content-Length: "
SEPARATOR = b"\r\n\r\n"
HEADER_ENCODING = "ascii"
CONTENT_ENCODING = "utf-8"

EXIT_NOTIFICATION: dict[str, Any] = {"jsonrpc": "2.0", "method": "exit"}


@dataclass(frozen=True)
class ContentHeader:
    """Location of a ``Content-Length`` header inside a buffer.

    ``begin`` is the offset of the header prefix, ``end`` the offset just past
    the blank-line separator, so the full message spans
    ``[begin, end + content_length)``.
    """

    begin: int
    end: int
    content_length: int

    @property
    def header_length(self) -> int:
        return self.end - self.begin

    @property
    def message_length(self) -> int:
        """Header plus payload byte count."""
        return self.header_length + self.content_length


def find_header(buffer: bytes | bytearray) -> ContentHeader | None:
    """Return the first well-formed ``Content-Length`` header in *buffer*.

    A prefix occurrence only counts when the next separator after it is
    preceded by a non-empty run of ASCII digits. Occurrences embedded in
    unrelated text are skipped. ``None`` means no complete header is visible
    yet; the caller should wait for more bytes.
    """
    prefix_len = len(HEADER_PREFIX)
    search_index = 0
    while search_index < len(buffer):
        begin = buffer.find(HEADER_PREFIX, search_index)
        if begin < 0:
            break

        length_begin = begin + prefix_len
        separator_index = buffer.find(SEPARATOR, length_begin)
        if separator_index < 0:
            # Later occurrences cannot have a separator either.
            break

        if separator_index > length_begin:
            digits = buffer[length_begin:separator_index]
            if digits.isdigit():
                return ContentHeader(
                    begin=begin,
                    end=separator_index + len(SEPARATOR),
                    content_length=int(digits),
                )

        search_index = length_begin
    return None


def encode_message(payload: dict[str, Any]) -> bytes:
    """Serialize a JSON-RPC payload with Content-Length framing."""
    body = json.dumps(payload, separators=(",", ":")).encode(CONTENT_ENCODING)
    header = f"Content-Length: {len(body)}\r\n\r\n".encode(HEADER_ENCODING)
    return header + body


def exit_message() -> bytes:
    """Framed ``exit`` notification used to stop a server we launched."""
    return encode_message(EXIT_NOTIFICATION)
