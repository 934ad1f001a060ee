"""Global pytest fixtures for deterministic test behavior."""

import pytest

from lspguard.log_config import reset_logging
from tests.helpers import FAKE_NOISY_SERVER, write_script


@pytest.fixture(autouse=True)
def _isolated_workspace(monkeypatch, tmp_path):
    """Point LSPGUARD_WORKSPACE at a fresh directory and clear other overrides."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    monkeypatch.setenv("LSPGUARD_WORKSPACE", str(workspace))
    for name in ("LSPGUARD_SERVER_COMMAND", "LSPGUARD_REQUEST_TIMEOUT", "LSPGUARD_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield workspace
    reset_logging()


@pytest.fixture
def workspace(_isolated_workspace):
    return _isolated_workspace


@pytest.fixture
def noisy_server(tmp_path):
    """Command line of a fake language server that pollutes its stdout."""
    return write_script(tmp_path, "fake_noisy_server.py", FAKE_NOISY_SERVER)
