"""
Memory ledger — capped, JSON-backed log of past question/answer interactions.

Entries are persisted newest-first to ``<workspace>/.codememory/memory.json``
and the ledger never holds more than ``max_entries`` of them: recording past
the cap drops the oldest.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

MEMORY_FILENAME = "memory.json"
DEFAULT_MAX_ENTRIES = 1000
FEEDBACK_VALUES = ("helpful", "not-helpful")

# Minimum word-overlap score for an entry to count as related
RELATED_THRESHOLD = 0.2


def _validate_feedback(feedback: Optional[str]) -> None:
    if feedback is not None and feedback not in FEEDBACK_VALUES:
        raise ValueError(
            f"feedback must be one of {FEEDBACK_VALUES}, got {feedback!r}"
        )


def _parse_timestamp(value: str) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string, got {type(value).__name__}")
    # Accept the trailing "Z" written by JavaScript's Date.toJSON()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


_WHITESPACE_RE = re.compile(r"\s+")


def _query_words(text: str) -> set[str]:
    # Leading or trailing whitespace yields an empty word, which counts
    return set(_WHITESPACE_RE.split(text.lower()))


@dataclass
class MemoryEntry:
    """One recorded interaction."""

    id: str
    timestamp: datetime
    query: str
    response: str
    relevant_chunks: list[str] = field(default_factory=list)
    feedback: Optional[str] = None      # "helpful" | "not-helpful"
    context: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "query": self.query,
            "response": self.response,
            "relevantChunks": list(self.relevant_chunks),
            "context": self.context,
        }
        if self.feedback is not None:
            data["feedback"] = self.feedback
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryEntry":
        if not isinstance(data, dict):
            raise TypeError(f"memory entry must be an object, got {type(data).__name__}")
        return cls(
            id=str(data["id"]),
            timestamp=_parse_timestamp(data["timestamp"]),
            query=data["query"],
            response=data.get("response", ""),
            relevant_chunks=list(data.get("relevantChunks") or []),
            feedback=data.get("feedback"),
            context=data.get("context") or {},
        )


class MemoryLedger:
    """
    Capped interaction log with whole-file JSON persistence.

    Parameters
    ----------
    storage_dir:
        Directory holding ``memory.json``.
    max_entries:
        Maximum number of entries kept in memory and on disk.
    """

    def __init__(self, storage_dir: str, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._storage_dir = storage_dir
        self._path = os.path.join(storage_dir, MEMORY_FILENAME)
        self._max_entries = max_entries
        self._entries: dict[str, MemoryEntry] = {}
        self._load()

    @property
    def path(self) -> str:
        return self._path

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, entry_id: str) -> Optional[MemoryEntry]:
        return self._entries.get(entry_id)

    def entries(self) -> list[MemoryEntry]:
        """All entries, newest first."""
        return self._ordered()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record(
        self,
        query: str,
        response: str,
        relevant_chunks: list[str],
        feedback: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> MemoryEntry:
        """Append a new entry and persist the (capped) ledger."""
        _validate_feedback(feedback)
        entry = MemoryEntry(
            id=uuid.uuid4().hex,
            timestamp=datetime.now(timezone.utc),
            query=query,
            response=response,
            relevant_chunks=list(relevant_chunks),
            feedback=feedback,
            context=context or {},
        )
        self._entries[entry.id] = entry
        self._save()
        return entry

    def update_feedback(self, entry_id: str, feedback: str) -> bool:
        """Set the feedback of one entry.  Returns False if it is unknown."""
        _validate_feedback(feedback)
        entry = self._entries.get(entry_id)
        if entry is None:
            return False
        entry.feedback = feedback
        self._save()
        return True

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def find_related(self, query: str, max_results: int = 5) -> list[MemoryEntry]:
        """
        Return past entries whose query shares words with *query*.

        Score is ``|shared words| / max(|query words|, |entry words|)``;
        the best *max_results* are kept, then those scoring at or below
        ``RELATED_THRESHOLD`` are dropped.
        """
        query_words = _query_words(query)
        scored: list[tuple[float, MemoryEntry]] = []
        for entry in self._entries.values():
            entry_words = _query_words(entry.query)
            denom = max(len(query_words), len(entry_words))
            score = len(query_words & entry_words) / denom if denom else 0.0
            scored.append((score, entry))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            entry for score, entry in scored[:max_results]
            if score > RELATED_THRESHOLD
        ]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _ordered(self) -> list[MemoryEntry]:
        # Reverse insertion order first so equal timestamps keep newest first
        return sorted(
            reversed(list(self._entries.values())),
            key=lambda e: e.timestamp,
            reverse=True,
        )

    def _save(self) -> None:
        kept = self._ordered()[: self._max_entries]
        if len(kept) < len(self._entries):
            self._entries = {e.id: e for e in reversed(kept)}
        os.makedirs(self._storage_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self._storage_dir, prefix=".memory_", suffix=".json.tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump([e.to_dict() for e in kept], fh, indent=2, default=str)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            logger.warning("[MemoryLedger] Failed to save %s: %s", self._path, exc)
            raise
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        logger.debug("[MemoryLedger] Saved %d entries", len(kept))

    def _load(self) -> None:
        """Load the ledger; a missing or corrupt file leaves it empty."""
        if not os.path.isfile(self._path):
            return
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, list):
                raise ValueError("ledger root is not a list")
            entries = [MemoryEntry.from_dict(item) for item in data]
        except (
            OSError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError,
        ) as exc:
            logger.warning(
                "[MemoryLedger] Failed to load %s, starting empty: %s",
                self._path, exc,
            )
            return
        # File is newest-first; keep insertion order oldest-first
        self._entries = {e.id: e for e in reversed(entries)}
        logger.info("[MemoryLedger] Loaded %d entries", len(self._entries))
