"""Summary: API key storage for profiles in the OS keychain or a local file.

Importance: Keeps provider API keys out of config.json and shell history.
Alternatives: Read the API key from an environment variable on every run.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar

import keyring
from keyring.errors import KeyringError

from unipile_cli.errors import ConfigurationError


logger = logging.getLogger(__name__)

SERVICE_NAME = "unipile-cli"
SECRETS_FILE = "secrets.json"
PROBE_KEY = "__unipile_cli_probe__"
ENCODED_PREFIX = "obf1:"

KEYRING_ERRORS = (KeyringError, RuntimeError, OSError)

T = TypeVar("T")


class SecretCodec:
    """Summary: Reversible obfuscation for secrets written to disk.

    Importance: Avoids plain-text API keys in secrets.json when no keychain exists.
    Alternatives: Use a proper encryption library with key management.
    """

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode("utf-8")

    def encode(self, plaintext: str) -> str:
        raw = plaintext.encode("utf-8")
        masked = bytes(a ^ b for a, b in zip(raw, self._mask(len(raw))))
        return ENCODED_PREFIX + base64.urlsafe_b64encode(masked).decode("ascii")

    def decode(self, stored: str) -> str:
        """Summary: Decode a stored value; values without the prefix are returned as-is.

        Importance: Still reads plain-text secrets files written by older releases.
        Alternatives: Force users to re-run `auth set`.
        """

        if not stored.startswith(ENCODED_PREFIX):
            return stored
        try:
            raw = base64.urlsafe_b64decode(stored[len(ENCODED_PREFIX):].encode("ascii"))
            return bytes(a ^ b for a, b in zip(raw, self._mask(len(raw)))).decode("utf-8")
        except (ValueError, binascii.Error) as exc:
            raise ConfigurationError(
                "Stored secret cannot be decoded; re-run auth set or check UNIPILE_CLI_SECRET_KEY"
            ) from exc

    def _mask(self, length: int) -> bytes:
        blocks = bytearray()
        counter = 0
        while len(blocks) < length:
            blocks.extend(hashlib.sha256(self._secret + counter.to_bytes(4, "big")).digest())
            counter += 1
        return bytes(blocks[:length])


class SecretStore(ABC):
    """Summary: Minimal get/set interface for profile secrets.

    Importance: Lets the keychain and the file backend be swapped and tested in isolation.
    Alternatives: Branch on the backend everywhere secrets are read.
    """

    backend: str = "unknown"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Summary: Return the stored secret or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Summary: Store a secret, replacing any previous value."""


class FileSecretStore(SecretStore):
    """Summary: Secrets kept in an owner-only JSON file under the config directory."""

    backend = "file"

    def __init__(self, path: Path, codec: SecretCodec) -> None:
        self._path = path
        self._codec = codec

    def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        return self._codec.decode(value) if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        payload = self._read_all()
        payload[key] = self._codec.encode(value)
        self._path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        self._path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        os.chmod(self._path, 0o600)

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Secrets file {self._path} is not valid JSON") from exc
        return payload if isinstance(payload, dict) else {}


class KeyringSecretStore(SecretStore):
    """Summary: Secrets kept in the operating system keychain via keyring."""

    backend = "keychain"

    def __init__(self, service: str = SERVICE_NAME, backend: Any = keyring) -> None:
        self._service = service
        self._keyring = backend

    def get(self, key: str) -> str | None:
        return self._keyring.get_password(self._service, key)

    def set(self, key: str, value: str) -> None:
        self._keyring.set_password(self._service, key, value)


class FallbackSecretStore(SecretStore):
    """Summary: Keychain store that switches to the file store after its first failure.

    Importance: Headless sessions can lose keychain access mid-run; the switch is permanent for the instance.
    Alternatives: Fail the command and ask the user to unlock the keychain.
    """

    def __init__(self, primary: SecretStore, fallback: SecretStore) -> None:
        self._active = primary
        self._fallback = fallback

    @property
    def backend(self) -> str:  # type: ignore[override]
        return self._active.backend

    def get(self, key: str) -> str | None:
        return self._call(lambda store: store.get(key))

    def set(self, key: str, value: str) -> None:
        self._call(lambda store: store.set(key, value))

    def _call(self, action: Callable[[SecretStore], T]) -> T:
        try:
            return action(self._active)
        except KEYRING_ERRORS as exc:
            if self._active is self._fallback:
                raise ConfigurationError(f"Failed to access configured secret store: {exc}") from exc
            logger.warning("Keychain access failed (%s); using file secret store.", exc)
            self._active = self._fallback
        try:
            return action(self._active)
        except OSError as exc:
            raise ConfigurationError(f"Failed to access configured secret store: {exc}") from exc


def select_secret_store(config_dir: str | Path, codec: SecretCodec, backend: Any = None) -> SecretStore:
    """Summary: Probe the keychain once and pick the secret store for this run.

    Importance: Machines without a usable keychain transparently get the file backend.
    Alternatives: Make the backend an explicit configuration setting.
    """

    file_store = FileSecretStore(Path(config_dir) / SECRETS_FILE, codec)
    keychain = KeyringSecretStore(backend=keyring if backend is None else backend)
    try:
        keychain.get(PROBE_KEY)
    except KEYRING_ERRORS as exc:
        logger.warning("Keychain unavailable (%s); using file secret store.", exc)
        return file_store
    return FallbackSecretStore(keychain, file_store)


@dataclass(frozen=True)
class StoredSecret:
    value: str | None
    backend: str


class ProfileCredentials:
    """Summary: Reads and writes the API key of a named profile."""

    def __init__(self, store: SecretStore) -> None:
        self._store = store

    def get_api_key(self, profile: str) -> StoredSecret:
        value = self._store.get(secret_key_for(profile))
        return StoredSecret(value=value, backend=self._store.backend)

    def set_api_key(self, profile: str, api_key: str) -> str:
        self._store.set(secret_key_for(profile), api_key)
        return self._store.backend


def secret_key_for(profile: str) -> str:
    return f"{profile}:api-key"
