"""Summary: Tests for configuration loading.

Importance: Ensures defaults, .env, environment overrides, and profile files behave correctly.
Alternatives: Validate configuration manually during runtime.
"""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from unipile_cli.config import (
    AppConfig,
    ProfileConfig,
    ProfilesConfig,
    get_profile,
    load_defaults,
    load_dotenv,
    load_profiles,
    save_profiles,
    upsert_profile,
)
from unipile_cli.errors import ConfigurationError


def test_load_defaults_reads_json(tmp_path: Path) -> None:
    """Summary: Verify defaults are parsed from JSON.

    Importance: Confirms the defaults file can pin installation settings.
    Alternatives: Hardcode defaults in the test.
    """

    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text('{"api_port": 9000, "log_level": "info"}', encoding="utf-8")
    assert load_defaults(defaults_path) == {"api_port": "9000", "log_level": "info"}
    assert load_defaults(tmp_path / "missing.json") == {}


def test_load_dotenv_does_not_override_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text(
        "# local\nUNIPILE_CLI_PROFILE=work\nUNIPILE_CLI_LOG_LEVEL=debug\nnot a pair\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("UNIPILE_CLI_PROFILE", raising=False)
    monkeypatch.setenv("UNIPILE_CLI_LOG_LEVEL", "ERROR")
    load_dotenv(env_path)
    assert os.getenv("UNIPILE_CLI_PROFILE") == "work"
    assert os.getenv("UNIPILE_CLI_LOG_LEVEL") == "ERROR"


def test_app_config_uses_defaults(config_env: Path, tmp_path: Path) -> None:
    """Summary: Verify AppConfig honors defaults when env is absent.

    Importance: The state database must land inside the config directory by default.
    Alternatives: Inline defaults directly in the AppConfig class.
    """

    config = AppConfig.from_env()
    assert config.config_dir == str(config_env)
    assert config.state_db_path == str(config_env / "inbox.db")
    assert config.default_profile == "default"
    assert config.log_level == "WARNING"
    assert config.api_port == 8787
    assert config.config_path == config_env / "config.json"


def test_app_config_env_overrides(config_env: Path, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text('{"api_port": "9100", "default_profile": "team"}', encoding="utf-8")
    monkeypatch.setenv("UNIPILE_CLI_STATE_DB", str(tmp_path / "custom.db"))
    monkeypatch.setenv("UNIPILE_CLI_LOG_LEVEL", "debug")
    config = AppConfig.from_env(defaults_path)
    assert config.api_port == 9100
    assert config.default_profile == "team"
    assert config.state_db_path == str(tmp_path / "custom.db")
    assert config.log_level == "DEBUG"


def test_app_config_rejects_bad_numbers(config_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UNIPILE_CLI_API_PORT", "eighty")
    with pytest.raises(ConfigurationError):
        AppConfig.from_env()


def test_profiles_round_trip_with_private_permissions(tmp_path: Path) -> None:
    """Summary: Saved profiles reload identically and the file is owner-only.

    Importance: config.json names API endpoints and must not leak to other users.
    Alternatives: Trust the process umask.
    """

    path = tmp_path / "cfg" / "config.json"
    config = upsert_profile(ProfilesConfig(), "work", dsn="api1.unipile.com:13111", auto_send_threshold=0.8)
    save_profiles(path, config)
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    loaded = load_profiles(path)
    assert loaded.profile == "work"
    assert loaded.profiles["work"].dsn == "api1.unipile.com:13111"
    assert loaded.profiles["work"].auto_send_threshold == 0.8
    assert "default" in loaded.profiles


def test_load_profiles_missing_invalid_and_legacy_keys(tmp_path: Path) -> None:
    assert load_profiles(tmp_path / "absent.json") == ProfilesConfig()

    broken = tmp_path / "broken.json"
    broken.write_text("{oops", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_profiles(broken)

    legacy = tmp_path / "legacy.json"
    legacy.write_text(
        json.dumps({"profile": "old", "profiles": {"old": {"dsn": "x", "qmdCollection": "people", "autoSendMargin": 0.2, "unknown": 1}}}),
        encoding="utf-8",
    )
    profile = load_profiles(legacy).profiles["old"]
    assert profile.qmd_collection == "people"
    assert profile.auto_send_margin == 0.2


def test_upsert_keeps_existing_values_and_get_profile_errors() -> None:
    config = upsert_profile(ProfilesConfig(), "default", dsn="a", qmd_command="ssh host qmd")
    updated = upsert_profile(config, "default", dsn=None, auto_send_margin=0.3)
    profile = get_profile(updated, "default")
    assert profile.dsn == "a"
    assert profile.qmd_command == "ssh host qmd"
    assert profile.auto_send_margin == 0.3
    with pytest.raises(ConfigurationError, match="missing"):
        get_profile(updated, "missing")


def test_profile_policy_carries_weights() -> None:
    policy = ProfileConfig(auto_send_threshold=0.7, lexical_weight=0.6, recency_weight=0.3, semantic_weight=0.1).policy()
    assert policy.threshold == 0.7
    assert policy.floor == 0.35
    assert (policy.lexical_weight, policy.recency_weight, policy.semantic_weight) == (0.6, 0.3, 0.1)
