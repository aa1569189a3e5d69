# SPDX-License-Identifier: Apache-2.0
# Incremental n-gram frequency tracking for generated chat messages.
#
# Every message is split into sentences, each sentence into surface and lemmatized
# n-grams. Scores accumulate per lemmatized key; keys that cross the slop threshold
# are promoted into a substring-dominant candidate set. Stale entries are pruned or
# decayed on a message-count window.

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Literal

from data_designer_prose_polisher.lexicon import DEFAULT_LEXICON, Lexicon
from data_designer_prose_polisher.text import DEFAULT_STRIPPED_TAGS, generate_ngrams, normalize_sentences, tokenize

logger = logging.getLogger(__name__)

SynthesisMethod = Literal["single", "iterative"]

# ---------------------------------------------------------------------------
# Hyperparameters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Hyperparameters:
    """Tunable thresholds, weights and batch sizes used by the engine."""

    ngram_min: int = 3
    ngram_max: int = 10
    slop_threshold: float = 3.0

    base_increment: float = 1.0
    length_bonus: float = 0.2
    uncommon_word_bonus: float = 0.5
    narration_multiplier: float = 1.25
    dialogue_lookahead_chars: int = 10
    stripped_tags: tuple[str, ...] = DEFAULT_STRIPPED_TAGS
    whitelist: frozenset[str] = field(default_factory=frozenset)
    blacklist: Mapping[str, float] = field(default_factory=dict)

    prune_window: int = 20
    prune_interval: int = 20
    decay_factor: float = 0.9
    bulk_prune_max_score: float = 2.0
    bulk_prune_max_count: int = 2
    bulk_progress_interval: int = 5

    leaderboard_min_score: float = 1.0
    leaderboard_update_cycle: int = 8
    synthesis_trigger_count: int = 25
    pattern_min_common_words: int = 3
    candidate_limit: int = 2000

    prescreen_enabled: bool = True
    prescreen_batch_size: int = 50
    synthesis_batch_size: int = 15
    synthesis_method: SynthesisMethod = "single"
    iterative_cycles: int = 2
    min_alternatives: int = 15

    analyze_summaries: bool = True
    autosave_interval: int = 5


DEFAULT_HYPERPARAMETERS = Hyperparameters()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class NgramRecord:
    count: int
    score: float
    last_seen_index: int
    original_form: str
    context_sentence: str

    def to_payload(self) -> dict[str, object]:
        return {
            "count": self.count,
            "score": self.score,
            "last_seen_index": self.last_seen_index,
            "original_form": self.original_form,
            "context_sentence": self.context_sentence,
        }


class CandidateSet:
    """Phrases that crossed the slop threshold, with no member nested inside another.

    Membership uses plain substring containment: inserting a phrase evicts every
    existing candidate it contains, and a phrase already contained by a candidate
    is rejected.
    """

    def __init__(self, phrases: Iterable[str] = ()) -> None:
        self._phrases: dict[str, None] = {}
        for phrase in phrases:
            self.insert(phrase)

    def insert(self, phrase: str) -> bool:
        evicted = []
        for existing in self._phrases:
            if phrase in existing:
                return False
            if existing in phrase:
                evicted.append(existing)
        for existing in evicted:
            del self._phrases[existing]
        self._phrases[phrase] = None
        return True

    def discard(self, phrase: str) -> None:
        self._phrases.pop(phrase, None)

    def covers(self, phrase: str) -> bool:
        """True if ``phrase`` is a candidate or is nested inside one."""
        return any(phrase in existing for existing in self._phrases)

    def clear(self) -> None:
        self._phrases.clear()

    def __contains__(self, phrase: object) -> bool:
        return phrase in self._phrases

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._phrases))

    def __len__(self) -> int:
        return len(self._phrases)

    def __repr__(self) -> str:
        return f"CandidateSet({list(self._phrases)!r})"


# ---------------------------------------------------------------------------
# Frequency tracker
# ---------------------------------------------------------------------------


class FrequencyTracker:
    """Owns the n-gram table and candidate set for one conversation."""

    def __init__(
        self,
        lexicon: Lexicon | None = None,
        hyperparameters: Hyperparameters | None = None,
        rule_patterns: Iterable[re.Pattern[str]] = (),
    ) -> None:
        self.lexicon = lexicon or DEFAULT_LEXICON
        self.hp = hyperparameters or DEFAULT_HYPERPARAMETERS
        self.records: dict[str, NgramRecord] = {}
        self.candidates = CandidateSet()
        self.message_index = 0
        self.whitelist = self.lexicon.effective_whitelist(self.hp.whitelist)
        self._blacklist = {term.lower(): weight for term, weight in self.hp.blacklist.items()}
        self._rule_patterns = list(rule_patterns)

    def set_rule_patterns(self, patterns: Iterable[re.Pattern[str]]) -> None:
        self._rule_patterns = list(patterns)

    # -- scoring helpers ----------------------------------------------------

    def is_low_quality(self, words: list[str]) -> bool:
        return len(words) < self.hp.ngram_min or all(w in self.whitelist for w in words)

    def is_handled(self, phrase: str) -> bool:
        return any(p.search(phrase) for p in self._rule_patterns)

    def blacklist_weight(self, phrase: str) -> float:
        phrase = phrase.lower()
        return max([0.0, *(w for term, w in self._blacklist.items() if term in phrase)])

    def score_increment(self, words: list[str], narration: bool) -> float:
        hp = self.hp
        phrase = " ".join(words)
        increment = hp.base_increment
        increment += hp.length_bonus * (len(words) - hp.ngram_min)
        increment += hp.uncommon_word_bonus * sum(1 for w in words if w not in self.whitelist)
        increment += self.blacklist_weight(phrase)
        if narration:
            increment *= hp.narration_multiplier
        return increment

    # -- observation ----------------------------------------------------------

    def observe(self, text: str) -> list[str]:
        """Track one generated message and advance the message counter.

        Returns the lemmatized keys promoted into the candidate set by this message.
        """
        promoted = self._track(text)
        self.message_index += 1
        return promoted

    def observe_summary(self, text: str) -> list[str]:
        """Track condensed summary text without counting it as a message."""
        return self._track(text)

    def _track(self, text: str) -> list[str]:
        hp = self.hp
        promoted: list[str] = []
        for sentence in normalize_sentences(text, hp.stripped_tags, hp.dialogue_lookahead_chars):
            words = tokenize(sentence.text)
            if not words:
                continue
            lemmas = [self.lexicon.lemmatize(w) for w in words]
            narration = not sentence.is_dialogue
            for n in range(hp.ngram_min, hp.ngram_max + 1):
                for original, key in zip(generate_ngrams(words, n), generate_ngrams(lemmas, n)):
                    gram_words = original.split(" ")
                    if self.is_handled(original) or self.is_low_quality(gram_words):
                        continue
                    if self._upsert(key, original, sentence.text, self.score_increment(gram_words, narration)):
                        promoted.append(key)
        return promoted

    def _upsert(self, key: str, original: str, context: str, increment: float) -> bool:
        record = self.records.get(key)
        previous = record.score if record else 0.0
        if record is None:
            record = NgramRecord(0, 0.0, self.message_index, original, context)
            self.records[key] = record
        record.count += 1
        record.score += increment
        record.last_seen_index = self.message_index
        record.original_form = original
        record.context_sentence = context
        threshold = self.hp.slop_threshold
        if previous < threshold <= record.score:
            return self.candidates.insert(key)
        return False

    # -- pruning --------------------------------------------------------------

    def prune(self, current_index: int | None = None) -> int:
        """Delete stale sub-threshold records and decay stale slop records."""
        hp = self.hp
        current = self.message_index if current_index is None else current_index
        pruned = 0
        for key in list(self.records):
            record = self.records[key]
            if current - record.last_seen_index <= hp.prune_window:
                continue
            if record.score < hp.slop_threshold:
                del self.records[key]
                self.candidates.discard(key)
                pruned += 1
            else:
                record.score *= hp.decay_factor
        if pruned:
            logger.info(f"Pruned {pruned} old/low-score n-grams")
        return pruned

    def prune_aggressive(self) -> int:
        """Drop every record below the bulk-analysis score and count floors."""
        hp = self.hp
        stale = [
            key for key, r in self.records.items()
            if r.score < hp.bulk_prune_max_score and r.count < hp.bulk_prune_max_count
        ]
        for key in stale:
            del self.records[key]
            self.candidates.discard(key)
        if stale:
            logger.debug(f"Bulk pass pruned {len(stale)} very low-score n-grams")
        return len(stale)

    # -- consumption ----------------------------------------------------------

    def zero_out(self, surface_forms: Iterable[str]) -> int:
        """Zero the score of every record whose surface form was handled by a rule.

        Records stay in the table so their ``last_seen_index`` keeps driving pruning.
        """
        wanted = set(surface_forms)
        zeroed = 0
        for key, record in self.records.items():
            if record.original_form in wanted:
                record.score = 0.0
                self.candidates.discard(key)
                zeroed += 1
        return zeroed

    def clear(self) -> None:
        self.records.clear()
        self.candidates.clear()
        self.message_index = 0

    def restore(self, records: Mapping[str, NgramRecord], candidates: Iterable[str], message_index: int) -> None:
        self.records = {key: replace(r) for key, r in records.items()}
        self.candidates = CandidateSet()
        for phrase in candidates:
            self.candidates.insert(phrase)
        self.message_index = message_index
