"""Minimal synchronous LSP client talking to a supervised server process."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import queue
import re
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

from . import __version__
from .diagnostics import DiagnosticsSink
from .errors import LSPRequestError, ServerNotRunningError
from .framing import encode_message
from .process import ServerProcess

logger = logging.getLogger(__name__)

MAX_PREVIEW_LENGTH = 80
ELLIPSIS = "…"

_LINE_BREAK = re.compile(r"\r?\n")


@dataclass(frozen=True)
class ReplResult:
    """Outcome of evaluating code through the server's ``repl`` command."""

    text: str
    ok: bool

    @property
    def preview(self) -> str:
        return inline_preview(self.text)


def inline_preview(text: str, max_length: int = MAX_PREVIEW_LENGTH) -> str:
    """First line of *text*, shortened for display next to the evaluated code."""
    lines = _LINE_BREAK.split(text, maxsplit=1)
    first_line = lines[0]
    if len(lines) > 1:
        return first_line[:max_length] + ELLIPSIS
    if len(first_line) > max_length:
        return first_line[:max_length] + ELLIPSIS
    return first_line


class LSPClient:
    """Sequential JSON-RPC client over a sanitized server stdout.

    Every message read here has already been through the stream sanitizer, so
    header parsing can assume clean framing. A reader thread parses incoming
    messages into a queue; requests wait on the queue with their timeout.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        workspace: str | Path | None = None,
        request_timeout: float = 5.0,
        initialization_options: dict[str, Any] | None = None,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        self._workspace = Path(workspace) if workspace is not None else None
        self._request_timeout = request_timeout
        self._initialization_options = initialization_options or {}
        self._process = ServerProcess(command, cwd=self._workspace, diagnostics=diagnostics)

        self._initialized = False
        self._server_name: str | None = None
        self._capabilities: dict[str, Any] = {}
        self._next_id = 1
        self._lock = threading.RLock()
        self._messages: queue.Queue[dict[str, Any] | None] = queue.Queue()
        self._reader_thread: threading.Thread | None = None

    @property
    def process(self) -> ServerProcess:
        return self._process

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def server_name(self) -> str | None:
        """The server name from ``serverInfo.name`` in the initialize response."""
        return self._server_name

    @property
    def capabilities(self) -> dict[str, Any]:
        return self._capabilities

    def start(self) -> None:
        with self._lock:
            self._process.start()
            self._initialized = False
            self._next_id = 1

            if self._reader_thread is not None and self._reader_thread.is_alive():
                return
            self._messages = queue.Queue()
            self._reader_thread = threading.Thread(
                target=self._pump_messages,
                args=(self._process.reader(), self._messages),
                name=f"lspguard-reader-{self._process.pid}",
                daemon=True,
            )
            self._reader_thread.start()

    def _send_message(self, payload: dict[str, Any]) -> None:
        if not self._process.running:
            raise ServerNotRunningError("Language server is not running")
        writer = self._process.writer
        writer.write(encode_message(payload))
        writer.flush()

    def _pump_messages(
        self,
        stdout: BinaryIO,
        messages: queue.Queue[dict[str, Any] | None],
    ) -> None:
        """Parse server messages into *messages*; ``None`` marks end of stream."""
        try:
            while True:
                message = self._read_frame(stdout)
                if message is None:
                    break
                messages.put(message)
        except (OSError, ValueError) as exc:
            # Reader closed underneath us during shutdown.
            logger.debug("Stopped reading server messages: %s", exc)
        messages.put(None)

    def _read_message(self, timeout: float) -> dict[str, Any] | None:
        """Next queued message, or None once the server's stdout has ended."""
        try:
            message = self._messages.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"No message from LSP server within {timeout:.1f}s") from None
        if message is None:
            # Leave the marker for later readers.
            self._messages.put(None)
        return message

    @staticmethod
    def _read_frame(stdout: BinaryIO) -> dict[str, Any] | None:
        headers: dict[str, str] = {}
        while True:
            raw = stdout.readline()
            if not raw:
                return None

            line = raw.decode("ascii", errors="replace").strip()
            if not line:
                break

            name, _, value = line.partition(":")
            headers[name.strip().lower()] = value.strip()

        try:
            content_length = int(headers.get("content-length", "0"))
        except (ValueError, TypeError):
            return None

        payload = stdout.read(content_length)
        if len(payload) != content_length:
            return None

        try:
            decoded = json.loads(payload.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("Dropping undecodable message body (%d bytes)", content_length)
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def request(
        self,
        method: str,
        params: dict[str, Any] | list[Any] | None = None,
        *,
        timeout: float | None = None,
        allow_uninitialized: bool = False,
    ) -> Any:
        """Send a request and block until its response arrives."""
        with self._lock:
            if not allow_uninitialized and not self._initialized:
                raise RuntimeError("LSP client is not initialized")

            request_id = self._next_id
            self._next_id += 1

            payload: dict[str, Any] = {
                "jsonrpc": "2.0",
                "id": request_id,
                "method": method,
            }
            if params is not None:
                payload["params"] = params

            self._send_message(payload)

            effective_timeout = timeout if timeout is not None else self._request_timeout
            deadline = time.monotonic() + effective_timeout

            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"Timed out waiting for LSP response to {method}")

                try:
                    message = self._read_message(remaining)
                except TimeoutError:
                    raise TimeoutError(
                        f"Timed out waiting for LSP response to {method}"
                    ) from None
                if message is None:
                    raise TimeoutError(f"No response from LSP server for {method}")

                if "id" not in message or "method" in message:
                    # Notification or server-initiated request; ignore.
                    continue

                if message.get("id") != request_id:
                    # Unrelated response; this client is strictly sequential.
                    continue

                if "error" in message:
                    raise LSPRequestError(method, message["error"])
                return message.get("result")

    def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": method,
        }
        if params is not None:
            payload["params"] = params

        with self._lock:
            self._send_message(payload)

    def initialize(self) -> dict[str, Any]:
        """Run the ``initialize``/``initialized`` handshake and return the result."""
        if not self._process.running:
            self.start()

        root = (self._workspace or Path.cwd()).resolve()
        init_params = {
            "processId": os.getpid(),
            "rootUri": root.as_uri(),
            "capabilities": {},
            "initializationOptions": self._initialization_options,
            "clientInfo": {
                "name": "lspguard",
                "version": __version__,
            },
        }

        result = self.request("initialize", init_params, allow_uninitialized=True)
        self.notify("initialized", {})

        self._server_name = None
        self._capabilities = {}
        if isinstance(result, dict):
            server_info = result.get("serverInfo")
            if isinstance(server_info, dict):
                self._server_name = server_info.get("name")
            capabilities = result.get("capabilities")
            if isinstance(capabilities, dict):
                self._capabilities = capabilities

        self._initialized = True
        return result if isinstance(result, dict) else {}

    def execute_command(self, command: str, arguments: list[Any] | None = None) -> Any:
        return self.request(
            "workspace/executeCommand",
            {"command": command, "arguments": arguments or []},
        )

    def repl_eval(self, code: str) -> ReplResult:
        """Evaluate *code* with the server's ``repl`` command.

        Server-side failures are reported in the result, not raised.
        """
        try:
            result = self.execute_command("repl", [code])
        except (LSPRequestError, TimeoutError) as exc:
            return ReplResult(text=str(exc), ok=False)
        return ReplResult(text=result if isinstance(result, str) else json.dumps(result), ok=True)

    def shutdown(self) -> None:
        """Polite ``shutdown`` request; the ``exit`` notification is sent by close()."""
        if not self._initialized:
            return
        with contextlib.suppress(Exception):
            self.request("shutdown", None, timeout=min(self._request_timeout, 1.0))
        self._initialized = False

    def close(self) -> int | None:
        with self._lock:
            self.shutdown()
            returncode = self._process.close()
            if self._reader_thread is not None:
                self._reader_thread.join(timeout=1.0)
                self._reader_thread = None
            return returncode

    def __enter__(self) -> LSPClient:
        self.start()
        return self

    def __exit__(self, _exc_type: Any, _exc: Any, _tb: Any) -> None:
        self.close()
