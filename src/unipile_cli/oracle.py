"""Summary: Semantic ranking oracle abstraction and implementations.

Importance: Adds optional memory-based hints to contact ranking without making resolution depend on them.
Alternatives: Embed a vector index inside the CLI.
"""

from __future__ import annotations

import json
import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from unipile_cli.models import OracleHit, OracleResult


logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "qmd"
DEFAULT_COLLECTION = "memory-root"
DEFAULT_MAX_HITS = 12

_TEXT_KEYS = ("text", "snippet", "content", "chunk", "body")
_SOURCE_KEYS = ("source", "path", "file")
_SCORE_KEYS = ("score", "similarity", "rank")
_LIST_KEYS = ("hits", "results", "items", "data")


class SemanticOracle(ABC):
    """Summary: Abstract interface for the external semantic ranking oracle.

    Importance: Lets production shell out while tests inject deterministic hits.
    Alternatives: Call the external command directly from the resolver.
    """

    @abstractmethod
    def query(self, text: str) -> OracleResult:
        """Summary: Query the oracle for hits related to the text.

        Importance: Must never raise; unavailability is reported in the result.
        Alternatives: Raise and let callers catch.
        """


class DisabledOracle(SemanticOracle):
    """Summary: Oracle used when semantic hints are turned off."""

    def __init__(self, reason: str = "Semantic oracle disabled.") -> None:
        self._reason = reason

    def query(self, text: str) -> OracleResult:
        return OracleResult.unavailable(self._reason)


class CommandOracle(SemanticOracle):
    """Summary: Oracle that invokes an external query command and parses its JSON output.

    Importance: Reuses an existing memory index (qmd) over SSH or locally.
    Alternatives: Talk to the index over HTTP.
    """

    def __init__(
        self,
        command: str = DEFAULT_COMMAND,
        collection: str = DEFAULT_COLLECTION,
        timeout_seconds: float = 4.0,
        max_hits: int = DEFAULT_MAX_HITS,
    ) -> None:
        self._command = command or DEFAULT_COMMAND
        self._collection = collection or DEFAULT_COLLECTION
        self._timeout_seconds = timeout_seconds
        self._max_hits = max_hits

    def query(self, text: str) -> OracleResult:
        """Summary: Run `<command> query <text> -c <collection> --json`.

        Importance: Any failure downgrades to an unavailable result with the reason attached.
        Alternatives: Retry on failure.
        """

        args = [self._command, "query", text, "-c", self._collection, "--json"]
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=False,
            )
        except FileNotFoundError:
            return self._unavailable(f"{self._command} command not found on PATH.")
        except subprocess.TimeoutExpired:
            return self._unavailable(
                f"{self._command} timed out after {self._timeout_seconds:g}s."
            )
        except OSError as exc:
            return self._unavailable(str(exc))
        if completed.returncode != 0:
            detail = completed.stderr.strip() or f"exit status {completed.returncode}"
            return self._unavailable(f"{self._command} failed: {detail}")
        raw_output = completed.stdout.strip()
        if not raw_output:
            return OracleResult(available=True, hits=[])
        try:
            parsed = json.loads(raw_output)
        except json.JSONDecodeError:
            return self._unavailable(f"{self._command} returned non-JSON output.")
        return OracleResult(available=True, hits=parse_hits(parsed)[: self._max_hits])

    def _unavailable(self, error: str) -> OracleResult:
        logger.warning("Semantic oracle unavailable: %s", error)
        return OracleResult.unavailable(error)


@dataclass(frozen=True)
class OracleFactory:
    """Summary: Builds the oracle for a profile and per-call options.

    Importance: Keeps --no-qmd and command overrides in one place.
    Alternatives: Construct oracles inline in each service.
    """

    command: str = DEFAULT_COMMAND
    collection: str = DEFAULT_COLLECTION
    timeout_seconds: float = 4.0

    def build(
        self,
        enabled: bool = True,
        command: str | None = None,
        collection: str | None = None,
        max_hits: int = DEFAULT_MAX_HITS,
    ) -> SemanticOracle:
        if not enabled:
            return DisabledOracle("Semantic oracle disabled by --no-qmd.")
        return CommandOracle(
            command=command or self.command,
            collection=collection or self.collection,
            timeout_seconds=self.timeout_seconds,
            max_hits=max_hits,
        )


def parse_hits(payload: Any) -> list[OracleHit]:
    """Summary: Normalize the oracle's JSON output into hits.

    Importance: Accepts bare lists and the common wrapper shapes (hits, results, items, data).
    Alternatives: Require one exact output schema.
    """

    if isinstance(payload, list):
        hits = [_to_hit(entry) for entry in payload]
        return [hit for hit in hits if hit is not None]
    if not isinstance(payload, dict):
        return []
    for key in _LIST_KEYS:
        if key in payload:
            return parse_hits(payload[key])
    return []


def _to_hit(entry: Any) -> OracleHit | None:
    if not isinstance(entry, dict):
        return None
    text = _first_present(entry, _TEXT_KEYS)
    if not isinstance(text, str) or not text.strip():
        return None
    source = _first_present(entry, _SOURCE_KEYS)
    score = _first_present(entry, _SCORE_KEYS)
    return OracleHit(
        text=text,
        source=source if isinstance(source, str) else None,
        score=float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else None,
    )


def _first_present(entry: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if entry.get(key) is not None:
            return entry[key]
    return None
