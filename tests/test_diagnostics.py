"""Tests for diagnostics sinks."""

from __future__ import annotations

import io
import logging

from lspguard.diagnostics import DebugChannel, MemoryDiagnostics, open_debug_channel


class TestDebugChannel:
    def test_discarded_stdout_is_bracketed(self):
        stream = io.StringIO()
        channel = DebugChannel(stream)
        channel.discarded(b"Loading prelude...")
        assert stream.getvalue() == "> STDOUT\nLoading prelude...\n< STDOUT\n"

    def test_stderr_is_written_verbatim(self):
        stream = io.StringIO()
        channel = DebugChannel(stream)
        channel.stderr(b"warning: unused\n")
        channel.stderr(b"done\n")
        assert stream.getvalue() == "warning: unused\ndone\n"

    def test_invalid_utf8_is_replaced(self):
        stream = io.StringIO()
        DebugChannel(stream).stderr(b"bad \xff byte")
        assert stream.getvalue() == "bad � byte"

    def test_empty_data_is_ignored(self):
        stream = io.StringIO()
        channel = DebugChannel(stream)
        channel.discarded(b"")
        channel.stderr(b"")
        assert stream.getvalue() == ""

    def test_log_only_channel_logs_discards(self, caplog):
        caplog.set_level(logging.DEBUG, logger="lspguard.diagnostics")
        DebugChannel().discarded(b"noise")
        assert "Discarded 5 non-protocol byte(s)" in caplog.text

    def test_close_is_idempotent_and_stops_writes(self):
        stream = io.StringIO()
        channel = DebugChannel(stream)
        channel.close()
        channel.close()
        assert stream.closed
        channel.stderr(b"ignored")


def test_memory_diagnostics_keeps_order():
    sink = MemoryDiagnostics()
    sink.discarded(b"a")
    sink.stderr(b"x")
    sink.discarded(bytearray(b"b"))
    assert sink.discarded_chunks == [b"a", b"b"]
    assert sink.discarded_bytes == b"ab"
    assert sink.stderr_bytes == b"x"


def test_open_debug_channel_appends_to_file(tmp_path):
    path = tmp_path / "server.log"
    path.write_text("earlier\n")

    channel = open_debug_channel(str(path))
    channel.discarded(b"junk")
    channel.stderr(b"oops\n")
    channel.close()

    assert path.read_text() == "earlier\n> STDOUT\njunk\n< STDOUT\noops\n"


def test_open_debug_channel_without_path():
    channel = open_debug_channel(None)
    channel.stderr(b"nowhere")
    channel.close()
