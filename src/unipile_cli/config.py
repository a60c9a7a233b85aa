"""Summary: Application and profile configuration for unipile-cli.

Importance: Centralizes environment, .env, defaults, and per-profile settings for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from unipile_cli.errors import ConfigurationError
from unipile_cli.resolver import ResolutionPolicy


CONFIG_DIR_ENV = "UNIPILE_CLI_CONFIG_DIR"
CONFIG_FILE = "config.json"
DEFAULT_PROFILE = "default"

DEFAULTS: dict[str, str] = {
    "config_dir": str(Path.home() / ".config" / "unipile-cli"),
    "state_db_path": "",
    "default_profile": DEFAULT_PROFILE,
    "log_level": "WARNING",
    "api_host": "127.0.0.1",
    "api_port": "8787",
    "api_key": "",
    "qmd_timeout_seconds": "4",
    "secret_key": "unipile-cli-local",
}

# Keys written by earlier releases of the CLI.
_PROFILE_ALIASES = {
    "qmdCollection": "qmd_collection",
    "qmdCommand": "qmd_command",
    "autoSendThreshold": "auto_send_threshold",
    "autoSendMargin": "auto_send_margin",
}


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds installation-wide settings for storage, logging, and the HTTP API.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    config_dir: str
    state_db_path: str
    default_profile: str
    log_level: str
    api_host: str
    api_port: int
    api_key: str
    qmd_timeout_seconds: float
    secret_key: str

    @staticmethod
    def from_env(defaults_path: Path | None = None) -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps every variable defined in one defaults map while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = dict(DEFAULTS)
        defaults.update(load_defaults(defaults_path or Path("config") / "defaults.json"))
        load_dotenv(Path(".env"))
        config_dir = os.getenv(CONFIG_DIR_ENV) or defaults["config_dir"]
        state_db_path = (
            os.getenv("UNIPILE_CLI_STATE_DB")
            or defaults["state_db_path"]
            or str(Path(config_dir) / "inbox.db")
        )
        try:
            api_port = int(os.getenv("UNIPILE_CLI_API_PORT", defaults["api_port"]))
            qmd_timeout = float(
                os.getenv("UNIPILE_CLI_QMD_TIMEOUT_SECONDS", defaults["qmd_timeout_seconds"])
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid numeric configuration value: {exc}") from exc
        return AppConfig(
            config_dir=str(Path(config_dir).expanduser()),
            state_db_path=str(Path(state_db_path).expanduser()),
            default_profile=os.getenv("UNIPILE_CLI_PROFILE", defaults["default_profile"]),
            log_level=os.getenv("UNIPILE_CLI_LOG_LEVEL", defaults["log_level"]).upper(),
            api_host=os.getenv("UNIPILE_CLI_API_HOST", defaults["api_host"]),
            api_port=api_port,
            api_key=os.getenv("UNIPILE_CLI_API_KEY", defaults["api_key"]),
            qmd_timeout_seconds=qmd_timeout,
            secret_key=os.getenv("UNIPILE_CLI_SECRET_KEY", defaults["secret_key"]),
        )

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir) / CONFIG_FILE


@dataclass(frozen=True)
class ProfileConfig:
    """Summary: Connection and resolution settings for one named profile.

    Importance: Lets several Unipile workspaces coexist with different thresholds and oracle collections.
    Alternatives: Use a single global connection setting.
    """

    dsn: str = ""
    qmd_collection: str = "memory-root"
    qmd_command: str = "qmd"
    auto_send_threshold: float = 0.9
    auto_send_margin: float = 0.15
    resolution_floor: float = 0.35
    lexical_weight: float = 0.75
    recency_weight: float = 0.15
    semantic_weight: float = 0.10

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "ProfileConfig":
        known = {item.name for item in fields(ProfileConfig)}
        values: dict[str, Any] = {}
        for key, value in payload.items():
            name = _PROFILE_ALIASES.get(key, key)
            if name in known and value is not None:
                values[name] = value
        return ProfileConfig(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def policy(self) -> ResolutionPolicy:
        """Summary: Build the contact resolution policy for this profile.

        Importance: Keeps blend weights and cutoffs in configuration.
        Alternatives: Use the resolver's built-in defaults everywhere.
        """

        return ResolutionPolicy(
            threshold=float(self.auto_send_threshold),
            margin=float(self.auto_send_margin),
            floor=float(self.resolution_floor),
            lexical_weight=float(self.lexical_weight),
            recency_weight=float(self.recency_weight),
            semantic_weight=float(self.semantic_weight),
        )


@dataclass(frozen=True)
class ProfilesConfig:
    """Summary: The persisted config.json document: active profile plus all profiles."""

    profile: str = DEFAULT_PROFILE
    profiles: dict[str, ProfileConfig] = field(
        default_factory=lambda: {DEFAULT_PROFILE: ProfileConfig()}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile,
            "profiles": {name: profile.to_dict() for name, profile in self.profiles.items()},
        }


def load_profiles(path: Path) -> ProfilesConfig:
    """Summary: Load profiles from disk merged over the defaults.

    Importance: A missing file yields the default profile so first-run commands work.
    Alternatives: Require `auth set` before any command.
    """

    defaults = ProfilesConfig()
    if not path.exists():
        return defaults
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")
    profiles = dict(defaults.profiles)
    for name, payload in (parsed.get("profiles") or {}).items():
        if isinstance(payload, dict):
            profiles[name] = ProfileConfig.from_dict(payload)
    return ProfilesConfig(profile=parsed.get("profile") or defaults.profile, profiles=profiles)


def save_profiles(path: Path, config: ProfilesConfig) -> None:
    """Summary: Persist profiles with owner-only permissions.

    Importance: The file names API endpoints and must not be world-readable.
    Alternatives: Rely on the user's umask.
    """

    path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    path.write_text(json.dumps(config.to_dict(), indent=2) + "\n", encoding="utf-8")
    os.chmod(path, 0o600)


def get_profile(config: ProfilesConfig, name: str) -> ProfileConfig:
    profile = config.profiles.get(name)
    if profile is None:
        raise ConfigurationError(
            f'Profile "{name}" not found. Run "unipile auth set ... --profile {name}" first.'
        )
    return profile


def upsert_profile(config: ProfilesConfig, name: str, **changes: Any) -> ProfilesConfig:
    """Summary: Insert or update a profile, making it the active one.

    Importance: Preserves existing values that the caller does not override.
    Alternatives: Replace the whole profile on every update.
    """

    existing = config.profiles.get(name, ProfileConfig())
    updates = {key: value for key, value in changes.items() if value is not None}
    profiles = dict(config.profiles)
    profiles[name] = replace(existing, **updates)
    return ProfilesConfig(profile=name, profiles=profiles)


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load optional configuration defaults from JSON.

    Importance: Lets an installation pin defaults without environment variables.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        return {}
    payload = json.loads(path.read_text(encoding="utf-8"))
    return {key: str(value) for key, value in payload.items()}


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())
