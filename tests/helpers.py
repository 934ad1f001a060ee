"""Shared test utilities."""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Any

_MESSAGE_RE = re.compile(rb"Content-Length: (\d+)\r\n\r\n")


def frame(body: bytes | str | dict[str, Any]) -> bytes:
    """Frame *body* as one LSP wire message."""
    if isinstance(body, dict):
        body = json.dumps(body)
    if isinstance(body, str):
        body = body.encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


def split_messages(data: bytes) -> list[dict[str, Any]]:
    """Parse a stream that must consist of back-to-back framed JSON messages only."""
    messages: list[dict[str, Any]] = []
    pos = 0
    while pos < len(data):
        match = _MESSAGE_RE.match(data, pos)
        assert match is not None, f"unframed bytes at offset {pos}: {data[pos:pos + 40]!r}"
        body_start = match.end()
        body_end = body_start + int(match.group(1))
        assert body_end <= len(data), "truncated message body"
        messages.append(json.loads(data[body_start:body_end]))
        pos = body_end
    return messages


# Language server double that interleaves compiler-style chatter with its
# replies, and writes each header and body with separate flushes.
FAKE_NOISY_SERVER = r"""
import json
import sys

stdin = sys.stdin.buffer
stdout = sys.stdout.buffer


def read_message():
    headers = {}
    while True:
        raw = stdin.readline()
        if not raw:
            return None
        line = raw.decode("ascii", errors="replace").strip()
        if not line:
            break
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    length = int(headers.get("content-length", "0"))
    return json.loads(stdin.read(length).decode("utf-8"))


def write_message(payload):
    body = json.dumps(payload).encode("utf-8")
    stdout.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii"))
    stdout.flush()
    stdout.write(body)
    stdout.flush()


def noise(text):
    stdout.write(text.encode("utf-8"))
    stdout.flush()


sys.stderr.write("fake server started\n")
sys.stderr.flush()
noise("Welcome to the fake server\n")

while True:
    message = read_message()
    if message is None:
        break

    method = message.get("method")
    if method == "initialize":
        noise("Loading prelude...\nContent-Length: lots\r\n\r\n")
        write_message(
            {
                "jsonrpc": "2.0",
                "method": "window/logMessage",
                "params": {"type": 3, "message": "prelude loaded"},
            }
        )
        write_message(
            {
                "jsonrpc": "2.0",
                "id": message["id"],
                "result": {
                    "capabilities": {"executeCommandProvider": {"commands": ["repl"]}},
                    "serverInfo": {"name": "fake-idris"},
                },
            }
        )
    elif method == "workspace/executeCommand":
        code = message["params"]["arguments"][0]
        noise("Error: stray output from the compiler\n")
        if code == "fail":
            write_message(
                {
                    "jsonrpc": "2.0",
                    "id": message["id"],
                    "error": {"code": -32603, "message": "boom"},
                }
            )
        elif code == "multi":
            write_message({"jsonrpc": "2.0", "id": message["id"], "result": "first\nsecond"})
        else:
            write_message({"jsonrpc": "2.0", "id": message["id"], "result": code + " : Integer"})
    elif method == "shutdown":
        write_message({"jsonrpc": "2.0", "id": message["id"], "result": None})
    elif method == "exit":
        break

sys.exit(0)
"""


# Accepts one request and never answers it.
SILENT_SERVER = r"""
import sys
import time

sys.stdin.buffer.readline()
time.sleep(30)
"""


def write_script(directory: Path, name: str, source: str) -> list[str]:
    """Write a Python script and return the argv that runs it."""
    path = directory / name
    path.write_text(source)
    return [sys.executable, str(path)]
