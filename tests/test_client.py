"""Tests for the synchronous LSP client against a noisy fake server."""

from __future__ import annotations

import time

import pytest

from lspguard.client import LSPClient, ReplResult, inline_preview
from lspguard.diagnostics import MemoryDiagnostics
from lspguard.errors import LSPRequestError, ServerNotRunningError
from tests.helpers import SILENT_SERVER, write_script


class TestInlinePreview:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("", ""),
            ("2 : Integer", "2 : Integer"),
            ("first\nsecond", "first…"),
            ("x" * 80, "x" * 80),
            ("x" * 81, "x" * 80 + "…"),
            ("2 : Integer\n", "2 : Integer…"),
            ("a\r\nb", "a…"),
            ("a\rb", "a\rb"),
            ("a\u2028b", "a\u2028b"),
        ],
    )
    def test_preview(self, text, expected):
        assert inline_preview(text) == expected

    def test_custom_length(self):
        assert inline_preview("abcdef", max_length=3) == "abc…"

    def test_repl_result_preview(self):
        assert ReplResult(text="a\nb", ok=True).preview == "a…"


class TestLSPClient:
    @pytest.fixture
    def diagnostics(self):
        return MemoryDiagnostics()

    @pytest.fixture
    def client(self, noisy_server, workspace, diagnostics):
        client = LSPClient(
            noisy_server,
            workspace=workspace,
            request_timeout=10.0,
            diagnostics=diagnostics,
        )
        yield client
        client.close()

    def test_initialize_through_noise(self, client):
        result = client.initialize()
        assert client.initialized
        assert client.server_name == "fake-idris"
        assert client.capabilities == {"executeCommandProvider": {"commands": ["repl"]}}
        assert result["serverInfo"]["name"] == "fake-idris"

    def test_repl_eval(self, client):
        client.initialize()
        result = client.repl_eval("1 + 1")
        assert result == ReplResult(text="1 + 1 : Integer", ok=True)

    def test_repl_eval_reports_server_errors(self, client):
        client.initialize()
        result = client.repl_eval("fail")
        assert not result.ok
        assert "boom" in result.text

    def test_execute_command_raises_server_errors(self, client):
        client.initialize()
        with pytest.raises(LSPRequestError, match="boom") as excinfo:
            client.execute_command("repl", ["fail"])
        assert excinfo.value.method == "workspace/executeCommand"
        assert excinfo.value.error["code"] == -32603

    def test_repl_eval_preview(self, client):
        client.initialize()
        assert client.repl_eval("multi").preview == "first…"

    def test_requests_in_sequence(self, client):
        client.initialize()
        texts = [client.repl_eval(str(n)).text for n in range(3)]
        assert texts == ["0 : Integer", "1 : Integer", "2 : Integer"]

    def test_request_before_initialize(self, client):
        client.start()
        with pytest.raises(RuntimeError, match="not initialized"):
            client.request("workspace/executeCommand", {})

    def test_noise_and_stderr_reach_diagnostics(self, client, diagnostics):
        client.initialize()
        client.repl_eval("1")
        client.close()
        assert b"Welcome to the fake server\n" in diagnostics.discarded_bytes
        assert b"Loading prelude" in diagnostics.discarded_bytes
        assert b"stray output from the compiler" in diagnostics.discarded_bytes
        assert b"fake server started" in diagnostics.stderr_bytes

    def test_close_returns_exit_code(self, client):
        client.initialize()
        assert client.close() == 0
        assert not client.initialized

    def test_send_after_close(self, client):
        client.initialize()
        client.close()
        with pytest.raises(ServerNotRunningError):
            client.notify("initialized", {})

    def test_context_manager(self, noisy_server, workspace):
        with LSPClient(noisy_server, workspace=workspace, request_timeout=10.0) as client:
            client.initialize()
            assert client.process.running
        assert not client.process.running


class TestRequestTimeout:
    def test_unanswered_request_times_out(self, tmp_path, workspace):
        client = LSPClient(
            write_script(tmp_path, "silent.py", SILENT_SERVER),
            workspace=workspace,
            request_timeout=1.0,
        )
        client.start()
        try:
            started = time.monotonic()
            with pytest.raises(TimeoutError, match="initialize"):
                client.request("initialize", {}, allow_uninitialized=True)
            assert time.monotonic() - started < 5.0
        finally:
            client.close()

    def test_server_exit_ends_pending_request(self, tmp_path, workspace):
        quitter = write_script(tmp_path, "quitter.py", "import sys\nsys.stdin.buffer.readline()\n")
        client = LSPClient(quitter, workspace=workspace, request_timeout=10.0)
        client.start()
        try:
            started = time.monotonic()
            with pytest.raises(TimeoutError, match="No response"):
                client.request("initialize", {}, allow_uninitialized=True)
            assert time.monotonic() - started < 5.0
        finally:
            client.close()
