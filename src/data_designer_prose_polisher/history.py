# SPDX-License-Identifier: Apache-2.0
"""Bulk re-analysis of a past conversation on an isolated tracker."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from data_designer_prose_polisher.core import FrequencyTracker, Hyperparameters, NgramRecord
from data_designer_prose_polisher.lexicon import Lexicon
from data_designer_prose_polisher.patterns import Leaderboard, build_leaderboard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    text: str
    is_user: bool = False


@dataclass(frozen=True)
class HistoryProgress:
    processed: int
    total: int
    analyzed: int


@dataclass(frozen=True)
class HistoryAnalysis:
    """Final state of a completed pass. Owned by the receiver; shares nothing with the worker."""

    records: dict[str, NgramRecord]
    candidates: tuple[str, ...]
    leaderboard: Leaderboard
    message_index: int
    messages_analyzed: int
    total_messages: int


class AnalysisCancelled(Exception):
    pass


def analyze_history(
    messages: Sequence[Message],
    *,
    lexicon: Lexicon | None = None,
    hyperparameters: Hyperparameters | None = None,
    rule_patterns: Iterable[re.Pattern[str]] = (),
    on_progress: Callable[[HistoryProgress], None] | None = None,
    cancel_event: threading.Event | None = None,
) -> HistoryAnalysis:
    """Re-scan ``messages`` from scratch.

    User messages and empty messages are skipped. Every ``bulk_progress_interval``
    messages the aggressive bulk prune runs and progress is reported. Raises
    :class:`AnalysisCancelled` if ``cancel_event`` is set mid-run.
    """
    tracker = FrequencyTracker(lexicon, hyperparameters, rule_patterns)
    interval = max(1, tracker.hp.bulk_progress_interval)
    total = len(messages)
    analyzed = 0

    for processed, message in enumerate(messages, start=1):
        if cancel_event is not None and cancel_event.is_set():
            raise AnalysisCancelled(f"cancelled after {processed - 1}/{total} messages")
        if not message.is_user and message.text and message.text.strip():
            tracker.observe(message.text)
            analyzed += 1
        if processed % interval == 0:
            tracker.prune_aggressive()
            if on_progress is not None:
                on_progress(HistoryProgress(processed, total, analyzed))

    leaderboard = build_leaderboard(tracker.records, tracker.hp)
    tracker.prune()
    logger.info(f"History analysis complete. Analyzed {analyzed} of {total} messages")
    return HistoryAnalysis(
        records={k: NgramRecord(**r.to_payload()) for k, r in tracker.records.items()},
        candidates=tuple(tracker.candidates),
        leaderboard=leaderboard,
        message_index=tracker.message_index,
        messages_analyzed=analyzed,
        total_messages=total,
    )
