"""Language server process supervision."""

from __future__ import annotations

import contextlib
import io
import logging
import subprocess
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any, BinaryIO

from .diagnostics import DebugChannel, DiagnosticsSink
from .errors import ServerLaunchError, ServerNotRunningError
from .framing import exit_message
from .sanitizer import DEFAULT_CHUNK_SIZE, open_sanitized
from .settings import format_command

logger = logging.getLogger(__name__)


class ServerProcess:
    """A spawned language server whose stdout is only read through a sanitizer.

    Stderr is drained on a background thread into the diagnostics sink.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: str | Path | None = None,
        diagnostics: DiagnosticsSink | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._command = tuple(command)
        self._cwd = str(cwd) if cwd is not None else None
        self._diagnostics: DiagnosticsSink = diagnostics or DebugChannel()
        self._chunk_size = chunk_size

        self._proc: subprocess.Popen[bytes] | None = None
        self._reader: io.BufferedReader | None = None
        self._stderr_thread: threading.Thread | None = None
        self._lock = threading.RLock()

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> int | None:
        return self._proc.poll() if self._proc is not None else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def start(self) -> None:
        """Spawn the server; raises :class:`ServerLaunchError` on failure."""
        with self._lock:
            if self.running:
                return

            if not self._command:
                raise ServerLaunchError("Launching server failed: empty command.")

            try:
                proc = subprocess.Popen(
                    list(self._command),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    cwd=self._cwd,
                )
            except OSError as exc:
                raise ServerLaunchError(
                    f"Launching server using command {format_command(self._command)} failed."
                ) from exc

            if not proc.pid:
                raise ServerLaunchError(
                    f"Launching server using command {format_command(self._command)} failed."
                )

            logger.info("Started language server %s (pid %d)", self._command[0], proc.pid)
            self._proc = proc
            self._reader = None
            self._stderr_thread = threading.Thread(
                target=self._pump_stderr,
                args=(proc.stderr,),
                name=f"lspguard-stderr-{proc.pid}",
                daemon=True,
            )
            self._stderr_thread.start()

    def _pump_stderr(self, stream: BinaryIO | None) -> None:
        if stream is None:
            return
        read1 = getattr(stream, "read1", stream.read)
        try:
            while True:
                data = read1(self._chunk_size)
                if not data:
                    break
                self._diagnostics.stderr(data)
        except (OSError, ValueError) as exc:
            # Pipe closed underneath us during shutdown.
            logger.debug("Stopped reading server stderr: %s", exc)

    def _require_proc(self) -> subprocess.Popen[bytes]:
        if self._proc is None:
            raise ServerNotRunningError("Language server has not been started")
        return self._proc

    @property
    def writer(self) -> BinaryIO:
        """The server's stdin pipe."""
        proc = self._require_proc()
        if proc.stdin is None:
            raise ServerNotRunningError("Language server stdin is not available")
        return proc.stdin

    def reader(self) -> io.BufferedReader:
        """Sanitized view of the server's stdout; created once per process."""
        with self._lock:
            proc = self._require_proc()
            if proc.stdout is None:
                raise ServerNotRunningError("Language server stdout is not available")
            if self._reader is None:
                self._reader = open_sanitized(
                    proc.stdout,
                    diagnostics=self._diagnostics,
                    chunk_size=self._chunk_size,
                )
            return self._reader

    def send_exit(self) -> bool:
        """Ask the server to exit with a protocol ``exit`` notification.

        Returns False when stdin is already gone.
        """
        proc = self._proc
        if proc is None or proc.stdin is None or proc.stdin.closed:
            return False
        try:
            proc.stdin.write(exit_message())
            proc.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            logger.debug("Could not send exit notification: %s", exc)
            return False
        return True

    def wait(self, timeout: float | None = None) -> int:
        return self._require_proc().wait(timeout=timeout)

    def _close_quietly(self, resource: Any) -> None:
        if resource is None:
            return
        with contextlib.suppress(Exception):
            resource.close()

    def _terminate(self, proc: subprocess.Popen[bytes], timeout: float) -> None:
        if proc.poll() is not None:
            return

        proc.terminate()
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            with contextlib.suppress(subprocess.TimeoutExpired):
                proc.wait(timeout=timeout)

    def close(self, *, timeout: float = 1.0) -> int | None:
        """Stop the server: exit notification first, then terminate, then kill."""
        with self._lock:
            proc = self._proc
            if proc is None:
                return None

            self.send_exit()
            self._close_quietly(proc.stdin)
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.debug("Server ignored exit notification; terminating")
                self._terminate(proc, timeout)

            self._close_quietly(self._reader)
            self._close_quietly(proc.stdout)
            if self._stderr_thread is not None:
                self._stderr_thread.join(timeout=timeout)
            self._close_quietly(proc.stderr)

            self._proc = None
            self._reader = None
            self._stderr_thread = None
            logger.info("Language server exited with code %s", proc.returncode)
            return proc.returncode

    def __enter__(self) -> ServerProcess:
        self.start()
        return self

    def __exit__(self, _exc_type: Any, _exc: Any, _tb: Any) -> None:
        self.close()
