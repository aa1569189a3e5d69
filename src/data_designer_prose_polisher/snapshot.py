# SPDX-License-Identifier: Apache-2.0
"""Durable snapshots of tracker state, keyed per conversation."""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, ValidationError

from data_designer_prose_polisher.core import FrequencyTracker, NgramRecord
from data_designer_prose_polisher.patterns import EMPTY_LEADERBOARD, Leaderboard, Pattern, RankedPhrase

logger = logging.getLogger(__name__)

KEY_PREFIX = "prose_polisher_analyzer_"


class BlobStore(Protocol):
    def save(self, key: str, blob: str) -> None: ...

    def load(self, key: str) -> str | None: ...


class InMemoryBlobStore:
    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}

    def save(self, key: str, blob: str) -> None:
        self._blobs[key] = blob

    def load(self, key: str) -> str | None:
        return self._blobs.get(key)


class JsonFileBlobStore:
    """One ``<key>.json`` file per snapshot under ``directory``."""

    _UNSAFE_RE = re.compile(r"[^\w.-]")

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{self._UNSAFE_RE.sub('_', key)}.json"

    def save(self, key: str, blob: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(blob, encoding="utf-8")
        tmp.replace(path)

    def load(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Snapshot schema
# ---------------------------------------------------------------------------


class RecordSnapshot(BaseModel):
    count: int = Field(ge=1)
    score: float = Field(ge=0)
    last_seen_index: int = Field(ge=0)
    original_form: str
    context_sentence: str = ""


class PatternSnapshot(BaseModel):
    prefix: str
    alternatives: list[str] = Field(default_factory=list)
    score: float
    members: list[str] = Field(default_factory=list)


class PhraseSnapshot(BaseModel):
    phrase: str
    score: float
    context: str = ""


class LeaderboardSnapshot(BaseModel):
    merged: list[PatternSnapshot] = Field(default_factory=list)
    remaining: list[PhraseSnapshot] = Field(default_factory=list)

    @classmethod
    def from_leaderboard(cls, leaderboard: Leaderboard) -> LeaderboardSnapshot:
        return cls(
            merged=[
                PatternSnapshot(prefix=p.prefix, alternatives=list(p.alternatives), score=p.score, members=list(p.members))
                for p in leaderboard.merged
            ],
            remaining=[PhraseSnapshot(phrase=r.phrase, score=r.score, context=r.context) for r in leaderboard.remaining],
        )

    def to_leaderboard(self) -> Leaderboard:
        return Leaderboard(
            merged=tuple(Pattern(p.prefix, tuple(p.alternatives), p.score, tuple(p.members)) for p in self.merged),
            remaining=tuple(RankedPhrase(r.phrase, r.score, r.context) for r in self.remaining),
        )


class AnalyzerSnapshot(BaseModel):
    conversation_id: str
    ngram_table: dict[str, RecordSnapshot] = Field(default_factory=dict)
    candidate_set: list[str] = Field(default_factory=list)
    leaderboard: LeaderboardSnapshot = Field(default_factory=LeaderboardSnapshot)
    message_index: int = Field(default=0, ge=0)
    messages_since_trigger: int = Field(default=0, ge=0)
    timestamp: float = Field(default_factory=time.time)

    @classmethod
    def capture(
        cls,
        conversation_id: str,
        tracker: FrequencyTracker,
        leaderboard: Leaderboard = EMPTY_LEADERBOARD,
        messages_since_trigger: int = 0,
    ) -> AnalyzerSnapshot:
        return cls(
            conversation_id=conversation_id,
            ngram_table={
                key: RecordSnapshot.model_validate(r.to_payload())
                for key, r in tracker.records.items()
                if r.count >= 1
            },
            candidate_set=list(tracker.candidates),
            leaderboard=LeaderboardSnapshot.from_leaderboard(leaderboard),
            message_index=tracker.message_index,
            messages_since_trigger=messages_since_trigger,
        )

    def records(self) -> dict[str, NgramRecord]:
        return {
            key: NgramRecord(r.count, r.score, r.last_seen_index, r.original_form, r.context_sentence)
            for key, r in self.ngram_table.items()
        }

    def restore_into(self, tracker: FrequencyTracker) -> Leaderboard:
        tracker.restore(self.records(), self.candidate_set, self.message_index)
        return self.leaderboard.to_leaderboard()


def snapshot_key(conversation_id: str) -> str:
    return f"{KEY_PREFIX}{conversation_id}"


def save_snapshot(store: BlobStore, snapshot: AnalyzerSnapshot) -> None:
    store.save(snapshot_key(snapshot.conversation_id), snapshot.model_dump_json())
    logger.info(f"Analyzer state saved ({len(snapshot.ngram_table)} n-grams)")


def load_snapshot(store: BlobStore, conversation_id: str) -> AnalyzerSnapshot | None:
    """Read a snapshot. Missing or corrupt snapshots yield ``None``."""
    try:
        blob = store.load(snapshot_key(conversation_id))
    except OSError as e:
        logger.error(f"Failed to read analyzer state for {conversation_id!r}: {e}")
        return None
    if blob is None:
        return None
    try:
        snapshot = AnalyzerSnapshot.model_validate_json(blob)
    except ValidationError as e:
        logger.error(f"Discarding corrupt analyzer state for {conversation_id!r}: {e.error_count()} errors")
        return None
    logger.info(f"Loaded analyzer state ({len(snapshot.ngram_table)} n-grams)")
    return snapshot
