"""Workspace settings and server command resolution."""

from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import SettingsError

logger = logging.getLogger(__name__)

SETTINGS_DIR = ".lspguard"
SETTINGS_FILENAME = "settings.json"

WORKSPACE_ENV_VAR = "LSPGUARD_WORKSPACE"
COMMAND_ENV_VAR = "LSPGUARD_SERVER_COMMAND"
TIMEOUT_ENV_VAR = "LSPGUARD_REQUEST_TIMEOUT"

DEFAULT_COMMAND: tuple[str, ...] = ("idris2-lsp",)
DEFAULT_REQUEST_TIMEOUT = 5.0
MIN_REQUEST_TIMEOUT = 0.1

DEFAULT_INITIALIZATION_OPTIONS: dict[str, Any] = {
    "logSeverity": "debug",
    "logFile": "stderr",
    "longActionTimeout": 5000,
    "maxCodeActionResults": 5,
    "showImplicits": False,
    "showMachineNames": False,
    "fullNamespace": False,
    "briefCompletions": False,
}


@dataclass
class ServerSettings:
    """Effective settings for launching and talking to one server."""

    command: list[str]
    command_source: str  # "argument", "settings", "env", or "default"
    workspace: Path
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    initialization_options: dict[str, Any] = field(
        default_factory=lambda: dict(DEFAULT_INITIALIZATION_OPTIONS)
    )
    diagnostics_file: str | None = None


def parse_command(command: Sequence[str] | str | None) -> list[str]:
    """Normalize command input into a tokenized argv list."""
    if command is None:
        return []

    if isinstance(command, str):
        return [part for part in shlex.split(command) if part]

    parsed: list[str] = []
    for part in command:
        text = str(part).strip()
        if text:
            parsed.append(text)
    return parsed


def format_command(command: Sequence[str]) -> str:
    """Return shell-safe command rendering for user-facing output."""
    return " ".join(shlex.quote(part) for part in parse_command(command))


def _normalize_root(path: str | Path) -> Path:
    root = Path(path).expanduser()
    if root.exists():
        root = root.resolve()
    return root.parent if root.is_file() else root


def workspace_root(workspace: str | Path | None = None) -> Path:
    """Workspace root from the argument, ``LSPGUARD_WORKSPACE``, or the cwd."""
    if workspace is not None:
        return _normalize_root(workspace)

    env_workspace = os.getenv(WORKSPACE_ENV_VAR, "")
    if env_workspace.strip():
        return _normalize_root(env_workspace)

    return Path.cwd().resolve()


def settings_path(workspace: str | Path | None = None) -> Path:
    """Path to the persisted settings file."""
    return workspace_root(workspace) / SETTINGS_DIR / SETTINGS_FILENAME


def load_settings(workspace: str | Path | None = None) -> dict[str, Any]:
    """Load the raw settings object from disk; an unusable file reads as empty."""
    path = settings_path(workspace)
    if not path.exists():
        return {}

    try:
        payload = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return {}

    if not isinstance(payload, dict):
        logger.warning("Ignoring settings file %s: expected a JSON object", path)
        return {}
    return payload


def save_settings(
    settings: Mapping[str, Any],
    workspace: str | Path | None = None,
) -> Path:
    """Persist the raw settings object, normalizing the command when present."""
    normalized = dict(settings)
    if "command" in normalized:
        command = parse_command(normalized["command"])
        if command:
            normalized["command"] = command
        else:
            normalized.pop("command")

    path = settings_path(workspace)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(normalized, indent=2, sort_keys=True) + "\n")
    return path


def set_command(
    command: Sequence[str] | str,
    workspace: str | Path | None = None,
) -> tuple[list[str], Path]:
    """Persist the server command for a workspace."""
    parsed = parse_command(command)
    if not parsed:
        raise SettingsError("command cannot be empty")

    settings = load_settings(workspace)
    settings["command"] = parsed
    path = save_settings(settings, workspace)
    return parsed, path


def unset_command(workspace: str | Path | None = None) -> tuple[bool, Path]:
    """Remove the persisted server command."""
    settings = load_settings(workspace)
    removed = settings.pop("command", None) is not None
    path = save_settings(settings, workspace)
    return removed, path


def resolve_server_command(
    workspace: str | Path | None = None,
    *,
    default_command: Sequence[str] = DEFAULT_COMMAND,
) -> tuple[list[str], str]:
    """Resolve effective command with precedence: settings -> env -> default."""
    stored = load_settings(workspace).get("command")
    bound = parse_command(stored if isinstance(stored, list | tuple | str) else None)
    if bound:
        return bound, "settings"

    env_command = parse_command(os.getenv(COMMAND_ENV_VAR, ""))
    if env_command:
        return env_command, "env"

    return parse_command(default_command), "default"


def _coerce_timeout(value: Any) -> float | None:
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        return None
    return max(timeout, MIN_REQUEST_TIMEOUT)


def resolve_request_timeout(workspace: str | Path | None = None) -> float:
    """Request timeout with precedence: settings -> env -> default."""
    for candidate in (
        load_settings(workspace).get("requestTimeout"),
        os.getenv(TIMEOUT_ENV_VAR),
    ):
        if candidate is None:
            continue
        timeout = _coerce_timeout(candidate)
        if timeout is not None:
            return timeout
        logger.warning("Ignoring invalid request timeout %r", candidate)
    return DEFAULT_REQUEST_TIMEOUT


def load_server_settings(
    workspace: str | Path | None = None,
    *,
    command: Sequence[str] | str | None = None,
) -> ServerSettings:
    """Build the effective :class:`ServerSettings` for a workspace.

    An explicit *command* wins over every persisted or environment value.
    """
    root = workspace_root(workspace)
    raw = load_settings(root)

    explicit = parse_command(command)
    if explicit:
        resolved, source = explicit, "argument"
    else:
        resolved, source = resolve_server_command(root)

    options = dict(DEFAULT_INITIALIZATION_OPTIONS)
    overrides = raw.get("initializationOptions")
    if isinstance(overrides, dict):
        options.update(overrides)

    diagnostics_file = raw.get("diagnosticsFile")
    return ServerSettings(
        command=resolved,
        command_source=source,
        workspace=root,
        request_timeout=resolve_request_timeout(root),
        initialization_options=options,
        diagnostics_file=diagnostics_file if isinstance(diagnostics_file, str) else None,
    )


def probe_command(command: Sequence[str] | str | None) -> dict[str, Any]:
    """Check whether the executable of a command is on PATH."""
    parsed = parse_command(command)
    if not parsed:
        return {
            "command": [],
            "available": False,
            "executable": None,
        }

    executable = shutil.which(parsed[0])
    return {
        "command": parsed,
        "available": executable is not None,
        "executable": executable,
    }
