"""Summary: Tests for profile secret storage.

Importance: API keys must survive keychain outages without ever being written in plain text.
Alternatives: Test against the real OS keychain.
"""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest
from keyring.errors import KeyringError

from unipile_cli.credentials import (
    FallbackSecretStore,
    FileSecretStore,
    KeyringSecretStore,
    ProfileCredentials,
    SecretCodec,
    secret_key_for,
    select_secret_store,
)
from unipile_cli.errors import ConfigurationError


class FakeKeyring:
    """Summary: Stand-in for the keyring module's get/set API."""

    def __init__(self, fail_get: bool = False, fail_set: bool = False) -> None:
        self.values: dict[tuple[str, str], str] = {}
        self.fail_get = fail_get
        self.fail_set = fail_set

    def get_password(self, service: str, key: str) -> str | None:
        if self.fail_get:
            raise KeyringError("locked")
        return self.values.get((service, key))

    def set_password(self, service: str, key: str, value: str) -> None:
        if self.fail_set:
            raise KeyringError("locked")
        self.values[(service, key)] = value


def test_codec_round_trips_and_reads_plain_values() -> None:
    codec = SecretCodec("local-secret")
    encoded = codec.encode("sk-live-123")
    assert encoded.startswith("obf1:")
    assert "sk-live-123" not in encoded
    assert codec.decode(encoded) == "sk-live-123"
    assert codec.decode("legacy-plain") == "legacy-plain"
    with pytest.raises(ConfigurationError, match="cannot be decoded"):
        SecretCodec("other").decode(encoded)
    with pytest.raises(ConfigurationError, match="re-run auth set"):
        codec.decode("obf1:abc")


def test_file_store_is_private_and_obfuscated(tmp_path: Path) -> None:
    path = tmp_path / "cfg" / "secrets.json"
    store = FileSecretStore(path, SecretCodec("k"))
    assert store.get("default:api-key") is None
    store.set("default:api-key", "sk-1")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert "sk-1" not in path.read_text(encoding="utf-8")
    assert store.get("default:api-key") == "sk-1"


def test_file_store_rejects_corrupt_json(tmp_path: Path) -> None:
    path = tmp_path / "secrets.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        FileSecretStore(path, SecretCodec("k")).get("x")


def test_select_prefers_keychain_when_probe_succeeds(tmp_path: Path) -> None:
    backend = FakeKeyring()
    store = select_secret_store(tmp_path, SecretCodec("k"), backend=backend)
    assert store.backend == "keychain"
    store.set("default:api-key", "sk-2")
    assert backend.values[("unipile-cli", "default:api-key")] == "sk-2"
    assert not (tmp_path / "secrets.json").exists()


def test_select_uses_file_store_when_probe_fails(tmp_path: Path) -> None:
    store = select_secret_store(tmp_path, SecretCodec("k"), backend=FakeKeyring(fail_get=True))
    assert store.backend == "file"
    store.set("default:api-key", "sk-3")
    assert (tmp_path / "secrets.json").exists()


def test_fallback_switches_permanently_after_keychain_failure(tmp_path: Path, caplog) -> None:
    """Summary: A keychain failure mid-run moves the store to the file backend.

    Importance: Headless sessions must still be able to save keys.
    Alternatives: Fail the command outright.
    """

    backend = FakeKeyring(fail_set=True)
    file_store = FileSecretStore(tmp_path / "secrets.json", SecretCodec("k"))
    store = FallbackSecretStore(KeyringSecretStore(backend=backend), file_store)
    store.set("default:api-key", "sk-4")
    assert store.backend == "file"
    assert "Keychain access failed" in caplog.text
    backend.fail_set = False
    store.set("work:api-key", "sk-5")
    assert backend.values == {}
    assert json.loads((tmp_path / "secrets.json").read_text(encoding="utf-8")).keys() == {
        "default:api-key",
        "work:api-key",
    }


def test_fallback_raises_when_file_store_also_fails(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    file_store = FileSecretStore(blocker / "secrets.json", SecretCodec("k"))
    store = FallbackSecretStore(KeyringSecretStore(backend=FakeKeyring(fail_set=True)), file_store)
    with pytest.raises(ConfigurationError, match="secret store"):
        store.set("default:api-key", "sk-6")


def test_profile_credentials_use_profile_scoped_keys() -> None:
    backend = FakeKeyring()
    credentials = ProfileCredentials(KeyringSecretStore(backend=backend))
    assert credentials.set_api_key("work", "sk-7") == "keychain"
    stored = credentials.get_api_key("work")
    assert (stored.value, stored.backend) == ("sk-7", "keychain")
    assert credentials.get_api_key("default").value is None
    assert secret_key_for("work") == "work:api-key"
