# SPDX-License-Identifier: Apache-2.0
"""The prose-polisher engine: one object per conversation.

Every collaborator (lexicon, hyperparameters, generation capability, blob
store) is passed in at construction. Callers react to state changes by
subscribing to engine events instead of a process-wide bus.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from pydantic import ValidationError

from data_designer_prose_polisher.core import FrequencyTracker, Hyperparameters, SynthesisMethod
from data_designer_prose_polisher.history import (
    AnalysisCancelled,
    HistoryAnalysis,
    HistoryProgress,
    Message,
    analyze_history,
)
from data_designer_prose_polisher.lexicon import Lexicon
from data_designer_prose_polisher.patterns import EMPTY_LEADERBOARD, Leaderboard, build_leaderboard
from data_designer_prose_polisher.snapshot import AnalyzerSnapshot, BlobStore, load_snapshot, save_snapshot
from data_designer_prose_polisher.synthesis import Rule, RuleSynthesizer, SynthesisResult, TextGenerator

logger = logging.getLogger(__name__)

EVENTS = frozenset({
    "candidate_promoted",
    "leaderboard_updated",
    "rule_accepted",
    "synthesis_due",
    "history_analyzed",
    "state_cleared",
})

Listener = Callable[[Any], None]


class ProsePolisherEngine:
    def __init__(
        self,
        generator: TextGenerator | None = None,
        *,
        lexicon: Lexicon | None = None,
        hyperparameters: Hyperparameters | None = None,
        blob_store: BlobStore | None = None,
        conversation_id: str = "default",
        rules: Iterable[Rule] = (),
    ) -> None:
        self.tracker = FrequencyTracker(lexicon, hyperparameters)
        self.hp = self.tracker.hp
        self.lexicon = self.tracker.lexicon
        self.generator = generator
        self.blob_store = blob_store
        self.conversation_id = conversation_id
        self.leaderboard: Leaderboard = EMPTY_LEADERBOARD
        self.rules: list[Rule] = []
        self.messages_since_trigger = 0
        self._messages_since_prune = 0
        self._messages_since_refresh = 0
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._synthesis_in_progress = False
        self._history_in_progress = False
        self.add_rules(rules)

    # -- events ---------------------------------------------------------------

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``event``; returns a callable that unsubscribes it."""
        if event not in EVENTS:
            raise ValueError(f"Unknown event {event!r}; expected one of {sorted(EVENTS)}")
        self._listeners[event].append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return _unsubscribe

    def _emit(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(payload)
            except Exception:
                logger.exception(f"Listener for {event!r} failed")

    # -- rules ----------------------------------------------------------------

    def add_rules(self, rules: Iterable[Rule]) -> None:
        for rule in rules:
            self.rules.append(rule)
        self.tracker.set_rule_patterns(r.compile() for r in self.rules if not r.disabled)

    # -- steady state ---------------------------------------------------------

    def observe(self, text: str, is_user: bool = False) -> list[str]:
        """Track one message. User messages are ignored.

        Returns the lemmatized keys promoted to candidates by this message.
        """
        if is_user:
            return []
        promoted = self.tracker.observe(text)
        for key in promoted:
            self._emit("candidate_promoted", key)

        self._messages_since_prune += 1
        self._messages_since_refresh += 1
        self.messages_since_trigger += 1
        if self._messages_since_prune >= self.hp.prune_interval:
            self.tracker.prune()
            self._messages_since_prune = 0
        if self._messages_since_refresh >= self.hp.leaderboard_update_cycle:
            self.refresh_leaderboard()
        if self.messages_since_trigger == self.hp.synthesis_trigger_count:
            self._emit("synthesis_due", self.messages_since_trigger)
        if self.hp.autosave_interval and self.tracker.message_index % self.hp.autosave_interval == 0:
            self._autosave()
        logger.debug(f"Observed message {self.tracker.message_index} ({len(self.tracker.records)} n-grams tracked)")
        return promoted

    def observe_summary(self, text: str) -> list[str]:
        if not self.hp.analyze_summaries or not text or not text.strip():
            return []
        promoted = self.tracker.observe_summary(text)
        for key in promoted:
            self._emit("candidate_promoted", key)
        return promoted

    @property
    def synthesis_due(self) -> bool:
        return self.messages_since_trigger >= self.hp.synthesis_trigger_count

    def refresh_leaderboard(self) -> Leaderboard:
        self.leaderboard = build_leaderboard(self.tracker.records, self.hp)
        self._messages_since_refresh = 0
        self._emit("leaderboard_updated", self.leaderboard)
        return self.leaderboard

    # -- synthesis ------------------------------------------------------------

    async def synthesize(
        self,
        batch_size: int | None = None,
        method: SynthesisMethod | None = None,
    ) -> SynthesisResult:
        """Run one synthesis batch and consume the candidates its rules cover.

        Tracker state is only touched after the batch completes, so cancelling the
        awaiting task leaves it unchanged.
        """
        if self.generator is None:
            raise RuntimeError("ProsePolisherEngine was constructed without a text generator")
        if self._synthesis_in_progress:
            logger.warning("Rule synthesis is already in progress")
            return SynthesisResult("busy")

        self._synthesis_in_progress = True
        try:
            leaderboard = self.refresh_leaderboard()
            result = await RuleSynthesizer(self.generator, self.hp).run(leaderboard, batch_size, method)
        finally:
            self._synthesis_in_progress = False

        if result.status == "ok":
            self.messages_since_trigger = 0
        if result.rules:
            self.add_rules(result.rules)
            self.tracker.zero_out(result.consumed)
            for rule in result.rules:
                self._emit("rule_accepted", rule)
            self.refresh_leaderboard()
            remaining = len(self.leaderboard)
            if remaining:
                logger.info(f"Approx {remaining} more unique candidates/patterns remaining")
        self._autosave()
        return result

    # -- bulk re-analysis -----------------------------------------------------

    async def reanalyze_history(
        self,
        messages: Sequence[Message],
        on_progress: Callable[[HistoryProgress], None] | None = None,
    ) -> HistoryAnalysis | None:
        """Rebuild state from a full conversation off the event loop.

        The worker owns a fresh tracker; its final state replaces this engine's
        state in one step on completion. Cancelling the awaiting task discards
        the partial result. Returns ``None`` if a pass is already running.
        """
        if self._history_in_progress:
            logger.warning("Chat history analysis is already in progress")
            return None
        self._history_in_progress = True
        loop = asyncio.get_running_loop()
        cancel_event = threading.Event()

        def _progress(progress: HistoryProgress) -> None:
            logger.debug(f"Processed {progress.processed}/{progress.total} messages")
            if on_progress is not None:
                loop.call_soon_threadsafe(on_progress, progress)

        patterns = [r.compile() for r in self.rules if not r.disabled]
        worker = asyncio.ensure_future(
            asyncio.to_thread(
                analyze_history,
                list(messages),
                lexicon=self.lexicon,
                hyperparameters=self.hp,
                rule_patterns=patterns,
                on_progress=_progress,
                cancel_event=cancel_event,
            )
        )
        # the flag stays set until the worker thread itself has returned
        worker.add_done_callback(self._history_worker_done)
        try:
            analysis = await asyncio.shield(worker)
        except asyncio.CancelledError:
            cancel_event.set()
            logger.info("Chat history analysis cancelled; partial state discarded")
            raise

        self.adopt(analysis)
        return analysis

    def _history_worker_done(self, worker: asyncio.Future[HistoryAnalysis]) -> None:
        self._history_in_progress = False
        if worker.cancelled():
            return
        error = worker.exception()
        if isinstance(error, AnalysisCancelled):
            logger.debug(f"History worker stopped: {error}")
        elif error is not None:
            logger.error(f"History worker failed: {error}")

    def adopt(self, analysis: HistoryAnalysis) -> None:
        self.tracker.restore(analysis.records, analysis.candidates, analysis.message_index)
        self.leaderboard = analysis.leaderboard
        self._messages_since_prune = 0
        self._messages_since_refresh = 0
        if analysis.candidates:
            self.messages_since_trigger = self.hp.synthesis_trigger_count
            logger.info("History analysis found slop; synthesis is armed")
        self._emit("history_analyzed", analysis)
        self._emit("leaderboard_updated", self.leaderboard)
        self._autosave()

    # -- persistence ----------------------------------------------------------

    def snapshot(self) -> AnalyzerSnapshot:
        return AnalyzerSnapshot.capture(self.conversation_id, self.tracker, self.leaderboard, self.messages_since_trigger)

    def save_state(self) -> bool:
        if self.blob_store is None:
            return False
        try:
            save_snapshot(self.blob_store, self.snapshot())
        except (OSError, ValidationError) as e:
            logger.error(f"Failed to save analyzer state: {e}")
            return False
        return True

    def load_state(self) -> bool:
        """Restore from the blob store. Missing or corrupt state starts empty."""
        if self.blob_store is None:
            return False
        snapshot = load_snapshot(self.blob_store, self.conversation_id)
        if snapshot is None:
            self.tracker.clear()
            self.leaderboard = EMPTY_LEADERBOARD
            return False
        self.leaderboard = snapshot.restore_into(self.tracker)
        self.messages_since_trigger = snapshot.messages_since_trigger
        return True

    def _autosave(self) -> None:
        if self.blob_store is not None:
            self.save_state()

    def clear(self) -> None:
        self.tracker.clear()
        self.leaderboard = EMPTY_LEADERBOARD
        self.messages_since_trigger = 0
        self._messages_since_prune = 0
        self._messages_since_refresh = 0
        self._autosave()
        self._emit("state_cleared")
