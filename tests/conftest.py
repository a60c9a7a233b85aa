"""Summary: Shared fixtures for unipile-cli tests.

Importance: Gives every test module the same isolated config directory and fake backends.
Alternatives: Build fakes inline in each test.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeProvider, MemorySecretStore
from unipile_cli.models import Account


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider(
        accounts=[
            Account(id="acc-1", type="WHATSAPP", name="Phone"),
            Account(id="acc-2", type="LINKEDIN", name="Work"),
        ]
    )


@pytest.fixture
def secret_store() -> MemorySecretStore:
    return MemorySecretStore()


@pytest.fixture
def config_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Summary: Point configuration at an isolated directory with no .env or defaults file."""

    config_dir = tmp_path / "config-home"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("UNIPILE_CLI_CONFIG_DIR", str(config_dir))
    for name in (
        "UNIPILE_CLI_STATE_DB",
        "UNIPILE_CLI_PROFILE",
        "UNIPILE_CLI_API_KEY",
        "UNIPILE_CLI_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return config_dir
