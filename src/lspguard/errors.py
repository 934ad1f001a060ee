"""Exception types raised by lspguard."""

from __future__ import annotations

from typing import Any


class LSPGuardError(Exception):
    """Base class for lspguard errors."""


class ServerLaunchError(LSPGuardError):
    """The language server process could not be started."""


class ServerNotRunningError(LSPGuardError):
    """An operation needed a live server process but there is none."""


class SettingsError(LSPGuardError):
    """Invalid settings value supplied by the caller."""


class LSPRequestError(LSPGuardError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(self, method: str, error: Any) -> None:
        self.method = method
        self.error = error
        message = error.get("message") if isinstance(error, dict) else None
        super().__init__(f"LSP error in {method}: {message or error}")
