"""Summary: Tests for CLI commands, output modes, and exit codes.

Importance: Automation depends on stable JSON output and exit codes.
Alternatives: Shell out to the installed console script.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from fakes import FakeProvider, MemorySecretStore, message
from unipile_cli.cli import EXIT_AUTH, EXIT_ERROR, EXIT_OK, EXIT_UNRESOLVED, build_parser, run_cli
from unipile_cli.credentials import FileSecretStore, SecretCodec
from unipile_cli.errors import ProviderApiError
from unipile_cli.models import Account, Attendee


def _provider() -> FakeProvider:
    return FakeProvider(
        accounts=[Account(id="acc-1", type="WHATSAPP", name="Phone")],
        attendees=[
            Attendee(id="att-1", provider_id="111@s.whatsapp.net", name="Maria Lopez", account_id="acc-1"),
            Attendee(id="att-2", provider_id="222@s.whatsapp.net", name="John Salesworth", account_id="acc-1"),
        ],
        messages=[message("m1", "2024-03-01T10:00:05.000Z"), message("m2", "2024-03-01T10:00:09.000Z")],
    )


def _run_json(capsys: pytest.CaptureFixture[str], argv: list[str], **kwargs) -> tuple[int, dict]:
    code = run_cli(argv, **kwargs)
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else {}


def test_global_flags_are_accepted_before_and_after_the_command() -> None:
    parser = build_parser()
    before = parser.parse_args(["--json", "--profile", "work", "accounts", "list"])
    after = parser.parse_args(["accounts", "list", "--json", "--profile", "work"])
    for args in (before, after):
        assert args.json is True
        assert args.profile == "work"
        assert args.command == "accounts list"
    plain = parser.parse_args(["accounts", "list"])
    assert plain.json is False
    assert plain.profile is None


def test_auth_set_then_status_round_trip(config_env: Path, secret_store: MemorySecretStore, capsys) -> None:
    """Summary: auth set persists the profile and key; auth status reports them without the key.

    Importance: First-run setup must work end to end.
    Alternatives: Edit config.json by hand.
    """

    code, payload = _run_json(
        capsys,
        ["auth", "set", "--dsn", "https://api.example", "--api-key", "sk-1", "--profile", "work", "--json"],
        secret_store=secret_store,
    )
    assert code == EXIT_OK
    assert payload == {"ok": True, "profile": "work", "dsn": "https://api.example", "secret_backend": "memory"}
    assert secret_store.values == {"work:api-key": "sk-1"}
    saved = json.loads((config_env / "config.json").read_text(encoding="utf-8"))
    assert saved["profile"] == "work"

    code, status = _run_json(capsys, ["auth", "status", "--json"], secret_store=secret_store)
    assert code == EXIT_OK
    assert status["profile"] == "work"
    assert status["dsn_configured"] is True
    assert status["api_key_configured"] is True
    assert "sk-1" not in json.dumps(status)


def test_accounts_list_text_and_json(config_env: Path, secret_store: MemorySecretStore, capsys) -> None:
    provider = _provider()
    assert run_cli(["accounts", "list"], provider=provider, secret_store=secret_store) == EXIT_OK
    assert "acc-1  WHATSAPP  Phone" in capsys.readouterr().out

    code, payload = _run_json(
        capsys, ["accounts", "list", "--provider", "whatsap", "--json"], provider=provider, secret_store=secret_store
    )
    assert code == EXIT_OK
    assert payload["count"] == 1
    assert payload["provider_resolved"] == "WHATSAPP"


def test_contacts_resolve_exit_codes(config_env: Path, secret_store: MemorySecretStore, capsys) -> None:
    provider = _provider()
    code, payload = _run_json(
        capsys,
        ["contacts", "resolve", "--account-id", "acc-1", "--query", "john sales", "--no-qmd", "--json"],
        provider=provider,
        secret_store=secret_store,
    )
    assert code == EXIT_UNRESOLVED
    assert payload["resolution"]["status"] == "ambiguous"
    assert payload["qmd"]["available"] is False

    code, payload = _run_json(
        capsys,
        ["contacts", "search", "--account-id", "acc-1", "--query", "john sales", "--no-qmd", "--json"],
        provider=provider,
        secret_store=secret_store,
    )
    assert code == EXIT_OK

    code = run_cli(
        ["contacts", "resolve", "--account-id", "acc-1", "--query", "maria lopez", "--no-qmd", "--threshold", "0.65"],
        provider=provider,
        secret_store=secret_store,
    )
    assert code == EXIT_OK
    out = capsys.readouterr().out
    assert "Status: resolved" in out
    assert "QMD: unavailable" in out


def test_send_blocked_returns_unresolved_and_sends_nothing(
    config_env: Path, secret_store: MemorySecretStore, capsys
) -> None:
    provider = _provider()
    code = run_cli(
        ["send", "--account-id", "acc-1", "--text", "hi", "--to-query", "john sales", "--no-qmd"],
        provider=provider,
        secret_store=secret_store,
    )
    assert code == EXIT_UNRESOLVED
    assert "Send blocked: ambiguous" in capsys.readouterr().out
    assert provider.sent == [] and provider.started == []


def test_send_with_comma_separated_attachments(
    config_env: Path, secret_store: MemorySecretStore, tmp_path: Path, capsys
) -> None:
    first = tmp_path / "a.txt"
    second = tmp_path / "b.txt"
    first.write_text("a", encoding="utf-8")
    second.write_text("b", encoding="utf-8")
    provider = _provider()
    code, payload = _run_json(
        capsys,
        [
            "send",
            "--account-id",
            "acc-1",
            "--text",
            "files",
            "--chat-id",
            "chat-1",
            "--attachment",
            f"{first},{second}",
            "--json",
        ],
        provider=provider,
        secret_store=secret_store,
    )
    assert code == EXIT_OK
    assert payload["attachments_count"] == 2
    assert provider.sent[0][3] == [first, second]


def test_inbox_pull_is_idempotent_and_state_is_reported(
    config_env: Path, secret_store: MemorySecretStore, capsys
) -> None:
    provider = _provider()
    argv = ["inbox", "pull", "--account-id", "acc-1", "--json"]
    code, first = _run_json(capsys, argv, provider=provider, secret_store=secret_store)
    assert code == EXIT_OK
    assert first["count"] == 2
    assert first["next_since_cursor"] == "2024-03-01T10:00:08.000Z"
    assert (config_env / "inbox.db").exists()

    _, second = _run_json(capsys, argv, provider=provider, secret_store=secret_store)
    assert second["count"] == 0

    _, state = _run_json(
        capsys, ["inbox", "state", "--account-id", "acc-1", "--json"], provider=provider, secret_store=secret_store
    )
    assert state["found"] is True
    assert state["scope_key"] == "default|acc-1|chat=*|sender=*"


def test_inbox_watch_once_emits_events_and_summary(
    config_env: Path, secret_store: MemorySecretStore, capsys
) -> None:
    provider = _provider()
    code = run_cli(
        ["inbox", "watch", "--account-id", "acc-1", "--once", "--no-state", "--json"],
        provider=provider,
        secret_store=secret_store,
    )
    assert code == EXIT_OK
    out = capsys.readouterr().out
    decoder = json.JSONDecoder()
    documents = []
    index = 0
    while index < len(out):
        if out[index].isspace():
            index += 1
            continue
        document, index = decoder.raw_decode(out, index)
        documents.append(document)
    assert [document["mode"] for document in documents] == ["watch_event", "watch_done"]
    assert documents[0]["poll_index"] == 1
    assert documents[1]["total_new_messages"] == 2
    assert documents[1]["state_used"] is False
    assert not (config_env / "inbox.db").exists()


def test_auth_and_provider_errors_map_to_exit_codes(
    config_env: Path, secret_store: MemorySecretStore, capsys
) -> None:
    provider = _provider()
    provider.list_error = ProviderApiError(
        "Unipile request failed (401): Bad key", status=401, error_type="errors/invalid_credentials"
    )
    assert run_cli(["accounts", "list"], provider=provider, secret_store=secret_store) == EXIT_AUTH
    err = capsys.readouterr().err
    assert "Unipile request failed (401)" in err
    assert "type=errors/invalid_credentials" in err

    provider.list_error = ProviderApiError("Unipile request failed (500)", status=500)
    assert run_cli(["accounts", "list"], provider=provider, secret_store=secret_store) == EXIT_ERROR


def test_missing_credentials_fail_with_guidance(config_env: Path, secret_store: MemorySecretStore, capsys) -> None:
    assert run_cli(["accounts", "list"], secret_store=secret_store) == EXIT_ERROR
    assert "missing DSN" in capsys.readouterr().err

    assert run_cli(["accounts", "list", "--profile", "nope"], secret_store=secret_store) == EXIT_ERROR
    assert 'Profile "nope" not found' in capsys.readouterr().err


def test_doctor_run_reports_summary(config_env: Path, secret_store: MemorySecretStore, capsys) -> None:
    run_cli(["auth", "set", "--dsn", "https://api.example", "--api-key", "sk"], secret_store=secret_store)
    capsys.readouterr()
    code, report = _run_json(
        capsys,
        ["doctor", "run", "--account-id", "acc-1", "--skip-qmd", "--json"],
        provider=_provider(),
        secret_store=secret_store,
    )
    assert code == EXIT_OK
    assert report["summary"] == "pass"
    assert report["account_count"] == 1

    code = run_cli(["doctor", "run", "--skip-qmd", "--profile", "empty"], secret_store=secret_store)
    assert code == EXIT_ERROR


def test_secret_written_under_another_key_fails_with_guidance(config_env: Path, capsys) -> None:
    """Summary: A secrets file unreadable under the current secret key exits 1 without a traceback.

    Importance: Changing UNIPILE_CLI_SECRET_KEY must not crash every provider command.
    Alternatives: Delete secrets.json and re-run auth set by hand.
    """

    path = config_env / "secrets.json"
    writer = FileSecretStore(path, SecretCodec("first-key"))
    api_key = "sk-live-" + "0123456789abcdef" * 3
    assert run_cli(["auth", "set", "--dsn", "https://api.example", "--api-key", api_key], secret_store=writer) == EXIT_OK
    capsys.readouterr()

    reader = FileSecretStore(path, SecretCodec("second-key"))
    assert run_cli(["auth", "status"], secret_store=reader) == EXIT_ERROR
    err = capsys.readouterr().err
    assert "cannot be decoded" in err
    assert "UNIPILE_CLI_SECRET_KEY" in err
