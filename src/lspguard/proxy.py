"""
Sanitizing stdio proxy.

Sits between an editor and a language server::

    editor stdin  --------------------------------> server stdin
    editor stdout <-- sanitize_async <------------- server stdout
    diagnostics   <-------------------------------- server stderr

The editor sees only well-formed LSP messages no matter what else the server
prints. When the editor closes its side, the server is sent an ``exit``
notification and its stdin is closed.
"""

from __future__ import annotations

import logging
import math
import subprocess
import sys
from collections.abc import Sequence
from pathlib import Path

import anyio
import anyio.to_thread
from anyio.abc import ByteReceiveStream, ByteSendStream
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .diagnostics import DebugChannel, DiagnosticsSink
from .errors import ServerLaunchError
from .framing import exit_message
from .sanitizer import DEFAULT_CHUNK_SIZE, sanitize_async
from .settings import format_command

logger = logging.getLogger(__name__)


class _DeferredDiagnostics:
    """Sink that queues calls for a worker so file I/O never runs on the event loop."""

    def __init__(self, send: MemoryObjectSendStream[tuple[str, bytes]]) -> None:
        self._send = send

    def discarded(self, data: bytes) -> None:
        self._send.send_nowait(("discarded", data))

    def stderr(self, data: bytes) -> None:
        self._send.send_nowait(("stderr", data))


async def _drain_diagnostics(
    receive: MemoryObjectReceiveStream[tuple[str, bytes]],
    sink: DiagnosticsSink,
) -> None:
    async with receive:
        async for kind, data in receive:
            await anyio.to_thread.run_sync(getattr(sink, kind), data)


async def _forward_client_input(
    client_in: anyio.AsyncFile[bytes],
    server_stdin: ByteSendStream,
    scope: anyio.CancelScope,
    chunk_size: int,
) -> None:
    """Copy editor input to the server until either side goes away."""
    with scope:
        while True:
            # Blocking read in a worker thread; abandoned if the server exits first.
            chunk = await anyio.to_thread.run_sync(
                client_in.wrapped.read1, chunk_size, abandon_on_cancel=True
            )
            try:
                if not chunk:
                    logger.debug("Client input closed; asking server to exit")
                    await server_stdin.send(exit_message())
                    await server_stdin.aclose()
                    return
                await server_stdin.send(chunk)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError) as exc:
                logger.debug("Server stdin closed: %r", exc)
                return


async def _forward_server_output(
    server_stdout: ByteReceiveStream,
    client_out: anyio.AsyncFile[bytes],
    diagnostics: DiagnosticsSink,
) -> int:
    """Copy sanitized server output to the editor; returns bytes forwarded."""
    forwarded = 0
    async for message in sanitize_async(server_stdout, diagnostics):
        await client_out.write(message)
        await client_out.flush()
        forwarded += len(message)
    return forwarded


async def _forward_stderr(server_stderr: ByteReceiveStream, diagnostics: DiagnosticsSink) -> None:
    async for data in server_stderr:
        diagnostics.stderr(data)


async def run_proxy(
    command: Sequence[str],
    *,
    client_in: anyio.AsyncFile[bytes],
    client_out: anyio.AsyncFile[bytes],
    diagnostics: DiagnosticsSink | None = None,
    cwd: str | Path | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Run the server behind the proxy and return its exit code."""
    sink: DiagnosticsSink = diagnostics or DebugChannel()
    if not command:
        raise ServerLaunchError("Launching server failed: empty command.")

    try:
        process = await anyio.open_process(
            list(command),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
        )
    except OSError as exc:
        raise ServerLaunchError(
            f"Launching server using command {format_command(command)} failed."
        ) from exc

    logger.info("Proxying language server %s (pid %d)", command[0], process.pid)
    assert process.stdin is not None
    assert process.stdout is not None
    assert process.stderr is not None

    send, receive = anyio.create_memory_object_stream(math.inf)
    async with process:
        async with anyio.create_task_group() as tg:
            input_scope = anyio.CancelScope()
            tg.start_soon(_forward_client_input, client_in, process.stdin, input_scope, chunk_size)
            tg.start_soon(_drain_diagnostics, receive, sink)

            async with send:
                deferred = _DeferredDiagnostics(send)
                async with anyio.create_task_group() as pumps:
                    pumps.start_soon(_forward_stderr, process.stderr, deferred)
                    forwarded = await _forward_server_output(process.stdout, client_out, deferred)

            returncode = await process.wait()
            # Server is gone; stop waiting on the editor.
            input_scope.cancel()

    logger.info(
        "Language server exited with code %s after %d protocol byte(s)", returncode, forwarded
    )
    return returncode


async def serve_stdio(
    command: Sequence[str],
    *,
    diagnostics: DiagnosticsSink | None = None,
    cwd: str | Path | None = None,
) -> int:
    """Bind :func:`run_proxy` to this process's own stdin/stdout."""
    stdin = anyio.wrap_file(sys.stdin.buffer)
    stdout = anyio.wrap_file(sys.stdout.buffer)
    return await run_proxy(
        command,
        client_in=stdin,
        client_out=stdout,
        diagnostics=diagnostics,
        cwd=cwd,
    )
