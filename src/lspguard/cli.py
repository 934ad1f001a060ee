#!/usr/bin/env python3
"""CLI for running and inspecting sanitized language servers."""

from __future__ import annotations

import argparse
import functools
import json
import sys
from dataclasses import dataclass
from typing import BinaryIO

import anyio

from .client import LSPClient
from .diagnostics import DebugChannel, MemoryDiagnostics, open_debug_channel
from .errors import LSPGuardError, ServerLaunchError, SettingsError
from .log_config import setup_logging
from .proxy import serve_stdio
from .sanitizer import DEFAULT_CHUNK_SIZE, StreamSanitizer
from .settings import (
    COMMAND_ENV_VAR,
    ServerSettings,
    format_command,
    load_server_settings,
    probe_command,
    set_command,
    unset_command,
)


@dataclass
class ServerStatus:
    """Resolved command and availability of the configured server."""

    command: list[str]
    command_source: str  # "argument", "settings", "env", or "default"
    executable: str | None
    available: bool
    workspace: str
    reason: str | None = None


def _server_status(settings: ServerSettings) -> ServerStatus:
    """Probe the effective server command."""
    if not settings.command:
        return ServerStatus(
            command=[],
            command_source=settings.command_source,
            executable=None,
            available=False,
            workspace=str(settings.workspace),
            reason=f"{COMMAND_ENV_VAR} resolved to an empty command",
        )

    probe = probe_command(settings.command)
    available = bool(probe["available"])
    reason: str | None = None
    if not available:
        if settings.command_source == "default":
            reason = "default server is not on PATH; run `lspguard bind <command>`"
        else:
            reason = f"{settings.command[0]} was not found on PATH"

    executable = probe.get("executable")
    return ServerStatus(
        command=settings.command,
        command_source=settings.command_source,
        executable=executable if isinstance(executable, str) else None,
        available=available,
        workspace=str(settings.workspace),
        reason=reason,
    )


def _print_doctor(status: ServerStatus, as_json: bool) -> None:
    """Render `doctor` command output."""
    if as_json:
        payload = {
            "ready": status.available,
            "command": status.command,
            "command_source": status.command_source,
            "executable": status.executable,
            "workspace": status.workspace,
            "reason": status.reason,
        }
        print(json.dumps(payload, indent=2))
        return

    state = "OK" if status.available else "MISSING"
    command = format_command(status.command) if status.command else "<empty>"
    print("lspguard doctor")
    print(f"[{state}] {command} ({status.command_source})")
    print(f"      workspace: {status.workspace}")
    if status.executable:
        print(f"      executable: {status.executable}")
    elif status.reason:
        print(f"      note: {status.reason}")


def _filter_stream(
    source: BinaryIO,
    sink: BinaryIO,
    diagnostics: MemoryDiagnostics,
) -> StreamSanitizer:
    """Copy the framed messages of *source* to *sink*."""
    sanitizer = StreamSanitizer(diagnostics)
    read1 = getattr(source, "read1", source.read)
    while True:
        chunk = read1(DEFAULT_CHUNK_SIZE)
        if not chunk:
            break
        for message in sanitizer.on_chunk(chunk):
            sink.write(message)
    sanitizer.on_end()
    sink.flush()
    return sanitizer


def _run_filter(args: argparse.Namespace) -> int:
    diagnostics = MemoryDiagnostics()
    if args.input in (None, "-"):
        sanitizer = _filter_stream(sys.stdin.buffer, sys.stdout.buffer, diagnostics)
    else:
        with open(args.input, "rb") as source:
            sanitizer = _filter_stream(source, sys.stdout.buffer, diagnostics)

    if args.stats:
        print(
            f"messages: {sanitizer.messages_emitted} "
            f"discarded_bytes: {sanitizer.bytes_discarded}",
            file=sys.stderr,
        )
    return 0


def _run_proxy(args: argparse.Namespace) -> int:
    settings = load_server_settings(args.workspace, command=args.server_command)
    channel = open_debug_channel(args.diagnostics_file or settings.diagnostics_file)
    try:
        return anyio.run(
            functools.partial(
                serve_stdio,
                settings.command,
                diagnostics=channel,
                cwd=settings.workspace,
            )
        )
    finally:
        channel.close()


def _run_repl(args: argparse.Namespace) -> int:
    settings = load_server_settings(args.workspace, command=args.server_command)
    channel = DebugChannel(sys.stderr) if args.show_diagnostics else DebugChannel()
    client = LSPClient(
        settings.command,
        workspace=settings.workspace,
        request_timeout=settings.request_timeout,
        initialization_options=settings.initialization_options,
        diagnostics=channel,
    )
    with client:
        client.initialize()
        result = client.repl_eval(args.code)

    print(result.preview if args.preview else result.text)
    return 0 if result.ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run a language server behind a filter that keeps only LSP messages on stdout"
    )
    parser.add_argument("-v", "--verbose", action="count", default=None, help="More logging")
    parser.add_argument("--log-file", help="Write logs to this file instead of stderr")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    proxy_parser = subparsers.add_parser("proxy", help="Serve LSP on stdio through the filter")
    proxy_parser.add_argument("--workspace", help="Workspace root (server working directory)")
    proxy_parser.add_argument(
        "--diagnostics-file", help="Append discarded stdout and server stderr to this file"
    )
    proxy_parser.add_argument(
        "server_command", nargs=argparse.REMAINDER, help="Server command (after --)"
    )

    filter_parser = subparsers.add_parser("filter", help="Sanitize a captured server stdout")
    filter_parser.add_argument("input", nargs="?", help="Input file (default: stdin)")
    filter_parser.add_argument(
        "--stats", action="store_true", help="Print message/discard counts to stderr"
    )

    doctor_parser = subparsers.add_parser("doctor", help="Check the configured server command")
    doctor_parser.add_argument("--workspace", help="Workspace root")
    doctor_parser.add_argument("--json", action="store_true", help="Output as JSON")

    bind_parser = subparsers.add_parser("bind", help="Persist the server command for a workspace")
    bind_parser.add_argument("--workspace", help="Workspace root")
    bind_parser.add_argument("server_command", nargs=argparse.REMAINDER, help="Server command")

    unbind_parser = subparsers.add_parser("unbind", help="Remove the persisted server command")
    unbind_parser.add_argument("--workspace", help="Workspace root")

    repl_parser = subparsers.add_parser("repl", help="Evaluate code with the server's repl command")
    repl_parser.add_argument("code", help="Code to evaluate")
    repl_parser.add_argument("--workspace", help="Workspace root")
    repl_parser.add_argument("--server-command", help="Override the server command")
    repl_parser.add_argument(
        "--preview", action="store_true", help="Print a one-line preview only"
    )
    repl_parser.add_argument(
        "--show-diagnostics", action="store_true", help="Echo server diagnostics to stderr"
    )

    args = parser.parse_args(argv)
    verbose = None if args.verbose is None else min(args.verbose + 1, 4)
    setup_logging(verbose=verbose, log_file=args.log_file)

    if args.command in ("proxy", "bind"):
        command = list(args.server_command)
        if command and command[0] == "--":
            command = command[1:]
        args.server_command = command

    try:
        if args.command == "proxy":
            return _run_proxy(args)

        elif args.command == "filter":
            return _run_filter(args)

        elif args.command == "doctor":
            status = _server_status(load_server_settings(args.workspace))
            _print_doctor(status, as_json=args.json)
            return 0 if status.available else 1

        elif args.command == "bind":
            parsed, path = set_command(args.server_command, workspace=args.workspace)
            print(f"Bound {format_command(parsed)} in {path}")
            return 0

        elif args.command == "unbind":
            removed, path = unset_command(workspace=args.workspace)
            print(f"Removed server command from {path}" if removed else "No server command bound.")
            return 0

        elif args.command == "repl":
            return _run_repl(args)

    except ServerLaunchError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 127
    except SettingsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except LSPGuardError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except TimeoutError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
