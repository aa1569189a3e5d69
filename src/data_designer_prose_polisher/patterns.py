# SPDX-License-Identifier: Apache-2.0
"""Distill the frequency table into a leaderboard of generalized patterns.

The merger is a pure function of a table snapshot: it collapses lemmatized
records onto their surface forms, culls nested substrings, caps the pool, and
greedily clusters phrases that share a long word prefix into patterns such as
``"she gave a small smile/nod/sigh"``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from data_designer_prose_polisher.core import DEFAULT_HYPERPARAMETERS, Hyperparameters, NgramRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pattern:
    prefix: str
    alternatives: tuple[str, ...]
    score: float
    members: tuple[str, ...] = ()

    @property
    def text(self) -> str:
        if not self.alternatives:
            return self.prefix
        return f"{self.prefix} {'/'.join(self.alternatives)}"

    def to_payload(self) -> dict[str, object]:
        return {
            "pattern": self.text,
            "prefix": self.prefix,
            "alternatives": list(self.alternatives),
            "score": self.score,
            "members": list(self.members),
        }


@dataclass(frozen=True)
class RankedPhrase:
    phrase: str
    score: float
    context: str = ""

    def to_payload(self) -> dict[str, object]:
        return {"phrase": self.phrase, "score": self.score, "context": self.context}


@dataclass(frozen=True)
class Leaderboard:
    merged: tuple[Pattern, ...] = field(default_factory=tuple)
    remaining: tuple[RankedPhrase, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.merged) + len(self.remaining)

    def to_payload(self) -> dict[str, object]:
        return {
            "merged": [p.to_payload() for p in self.merged],
            "remaining": [r.to_payload() for r in self.remaining],
        }


EMPTY_LEADERBOARD = Leaderboard()


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def collapse_by_surface(records: Mapping[str, NgramRecord]) -> dict[str, float]:
    scores: dict[str, float] = {}
    for record in records.values():
        scores[record.original_form] = scores.get(record.original_form, 0.0) + record.score
    return scores


def cull_substrings(scores: Mapping[str, float]) -> dict[str, float]:
    """Drop every phrase contained in a longer phrase that survives."""
    ordered = sorted(scores, key=len, reverse=True)
    to_remove: set[str] = set()
    for i, longer in enumerate(ordered):
        if longer in to_remove:
            continue
        for shorter in ordered[i + 1 :]:
            if shorter not in to_remove and shorter in longer:
                to_remove.add(shorter)
    return {phrase: score for phrase, score in scores.items() if phrase not in to_remove}


def _common_prefix_len(a: list[str], b: list[str], limit: int | None = None) -> int:
    k = 0
    stop = min(len(a), len(b)) if limit is None else min(len(a), len(b), limit)
    while k < stop and a[k] == b[k]:
        k += 1
    return k


def _cluster(
    candidates: list[tuple[str, float]],
    rank: Mapping[str, int],
    min_common_words: int,
) -> tuple[dict[str, Pattern], set[int]]:
    patterns: dict[str, Pattern] = {}
    consumed: set[int] = set()
    split = [phrase.split(" ") for phrase, _ in candidates]

    for i, (phrase_a, _) in enumerate(candidates):
        if i in consumed:
            continue
        words_a = split[i]
        group = [i]
        for j in range(i + 1, len(candidates)):
            if j not in consumed and _common_prefix_len(words_a, split[j]) >= min_common_words:
                group.append(j)
        if len(group) < 2:
            continue

        prefix_len = len(words_a)
        for j in group[1:]:
            prefix_len = _common_prefix_len(words_a, split[j], prefix_len)
        if prefix_len < min_common_words:
            continue

        prefix = " ".join(words_a[:prefix_len])
        members = sorted(group, key=lambda k: (-candidates[k][1], rank[candidates[k][0]]))
        variations: list[str] = []
        for k in members:
            variation = " ".join(split[k][prefix_len:]).strip()
            if variation and variation not in variations:
                variations.append(variation)
        consumed.update(group)

        pattern = Pattern(
            prefix=prefix,
            alternatives=tuple(variations),
            score=sum(candidates[k][1] for k in group),
            members=tuple(candidates[k][0] for k in members),
        )
        existing = patterns.get(pattern.text)
        if existing is not None:
            pattern = Pattern(
                prefix=prefix,
                alternatives=pattern.alternatives,
                score=existing.score + pattern.score,
                members=existing.members + pattern.members,
            )
        patterns[pattern.text] = pattern
    return patterns, consumed


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def merge_patterns(
    records: Mapping[str, NgramRecord],
    min_common_words: int = 3,
    candidate_limit: int = 2000,
) -> Leaderboard:
    """Build a leaderboard from a frequency table snapshot.

    Args:
        records: Lemmatized key to record. Not mutated.
        min_common_words: Minimum shared word prefix for two phrases to merge.
        candidate_limit: Pool size kept (by score) before clustering.

    Returns:
        A :class:`Leaderboard` with both lists sorted by descending score.
    """
    contexts = {r.original_form: r.context_sentence for r in records.values()}
    collapsed = collapse_by_surface(records)
    rank = {phrase: i for i, phrase in enumerate(collapsed)}
    culled = cull_substrings(collapsed)

    pool = sorted(culled.items(), key=lambda kv: kv[1], reverse=True)
    if len(pool) > candidate_limit:
        logger.info(f"Limited candidates from {len(pool)} to {candidate_limit} before clustering")
        pool = pool[:candidate_limit]

    candidates = sorted(pool, key=lambda kv: kv[0])
    patterns, consumed = _cluster(candidates, rank, min_common_words)

    remaining = []
    for i, (phrase, score) in enumerate(candidates):
        if i in consumed:
            continue
        if any(text == phrase or text.startswith(phrase + " ") for text in patterns):
            continue
        remaining.append(RankedPhrase(phrase, score, contexts.get(phrase, "")))

    return Leaderboard(
        merged=tuple(sorted(patterns.values(), key=lambda p: p.score, reverse=True)),
        remaining=tuple(sorted(remaining, key=lambda r: r.score, reverse=True)),
    )


def build_leaderboard(records: Mapping[str, NgramRecord], hyperparameters: Hyperparameters | None = None) -> Leaderboard:
    """Filter out near-zero records, then merge."""
    hp = hyperparameters or DEFAULT_HYPERPARAMETERS
    eligible = {key: r for key, r in records.items() if r.score > hp.leaderboard_min_score}
    return merge_patterns(eligible, hp.pattern_min_common_words, hp.candidate_limit)
