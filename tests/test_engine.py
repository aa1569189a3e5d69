import asyncio
import json
import threading

import pytest

from data_designer_prose_polisher.core import Hyperparameters, NgramRecord
from data_designer_prose_polisher.engine import ProsePolisherEngine
from data_designer_prose_polisher.history import AnalysisCancelled, HistoryProgress, Message, analyze_history
from data_designer_prose_polisher.lexicon import Lexicon
from data_designer_prose_polisher.snapshot import InMemoryBlobStore, snapshot_key

WAVE = "He felt a wave of sadness wash over him."
LANTERN = "The crimson lantern flickered."
WAVE_RULE = json.dumps([{
    "name": "Wave of emotion",
    "find_pattern": r"\bfelt a wave of\b",
    "replacement": "{{random:" + ",".join(f"option {i}" for i in range(15)) + "}}",
}])


class ScriptedGenerator:
    def __init__(self, *responses):
        self.responses = list(responses)

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        return self.responses.pop(0)


class GatedGenerator:
    """Blocks until ``gate`` is set, then returns ``response``."""

    def __init__(self, response: str = "[]"):
        self.gate = asyncio.Event()
        self.response = response
        self.calls = 0

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        self.calls += 1
        await self.gate.wait()
        return self.response


def _scores(engine: ProsePolisherEngine) -> dict[str, float]:
    return {k: r.score for k, r in engine.tracker.records.items()}


class TestEvents:
    def test_candidate_promoted(self):
        engine = ProsePolisherEngine()
        promoted = []
        engine.subscribe("candidate_promoted", promoted.append)
        engine.observe(LANTERN)
        assert "crimson lantern flickered" in promoted

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            ProsePolisherEngine().subscribe("no_such_event", print)

    def test_unsubscribe(self):
        engine = ProsePolisherEngine()
        seen = []
        unsubscribe = engine.subscribe("candidate_promoted", seen.append)
        unsubscribe()
        engine.observe(LANTERN)
        assert seen == []

    def test_failing_listener_does_not_break_observe(self):
        engine = ProsePolisherEngine()
        engine.subscribe("candidate_promoted", lambda _: 1 / 0)
        assert engine.observe(LANTERN)
        assert engine.tracker.message_index == 1


class TestObserve:
    def test_user_messages_are_ignored(self):
        engine = ProsePolisherEngine()
        assert engine.observe(LANTERN, is_user=True) == []
        assert engine.tracker.message_index == 0
        assert engine.tracker.records == {}

    def test_synthesis_due_fires_once(self):
        engine = ProsePolisherEngine(hyperparameters=Hyperparameters(synthesis_trigger_count=3))
        fired = []
        engine.subscribe("synthesis_due", fired.append)
        for _ in range(4):
            engine.observe(WAVE)
        assert fired == [3]
        assert engine.synthesis_due

    def test_leaderboard_refresh_cycle(self):
        engine = ProsePolisherEngine(hyperparameters=Hyperparameters(leaderboard_update_cycle=2))
        boards = []
        engine.subscribe("leaderboard_updated", boards.append)
        engine.observe(WAVE)
        assert boards == []
        engine.observe(WAVE)
        assert len(boards) == 1
        assert boards[0].remaining[0].phrase == "he felt a wave of sadness wash over him"

    def test_summaries_do_not_advance_the_counter(self):
        engine = ProsePolisherEngine()
        engine.observe_summary(WAVE)
        assert engine.tracker.message_index == 0
        assert "feel a wave of" in engine.tracker.records

    def test_summaries_can_be_disabled(self):
        engine = ProsePolisherEngine(hyperparameters=Hyperparameters(analyze_summaries=False))
        assert engine.observe_summary(WAVE) == []
        assert engine.tracker.records == {}

    def test_periodic_prune(self):
        engine = ProsePolisherEngine(hyperparameters=Hyperparameters(prune_interval=5, prune_window=2))
        engine.observe("Alpha bravo charlie.")
        for _ in range(4):
            engine.observe(WAVE)
        assert "alpha bravo charlie" not in engine.tracker.records
        assert "feel a wave of" in engine.tracker.records


class TestSynthesize:
    def _engine(self, generator, **hp) -> ProsePolisherEngine:
        engine = ProsePolisherEngine(generator, hyperparameters=Hyperparameters(prescreen_enabled=False, **hp))
        for _ in range(3):
            engine.observe(WAVE)
        return engine

    def test_accepted_rule_consumes_candidates(self):
        engine = self._engine(ScriptedGenerator(WAVE_RULE))
        accepted = []
        engine.subscribe("rule_accepted", accepted.append)

        result = asyncio.run(engine.synthesize())

        assert result.status == "ok"
        assert [r.name for r in engine.rules] == ["Wave of emotion"]
        assert accepted == engine.rules
        assert result.consumed == ("he felt a wave of sadness wash over him",)
        record = engine.tracker.records["he feel a wave of sadness wash over him"]
        assert record.score == 0.0
        assert "he feel a wave of sadness wash over him" not in engine.tracker.candidates
        assert engine.messages_since_trigger == 0

    def test_accepted_rule_stops_tracking_its_matches(self):
        engine = self._engine(ScriptedGenerator(WAVE_RULE))
        asyncio.run(engine.synthesize())
        engine.observe(WAVE)
        assert engine.tracker.records["feel a wave of"].count == 3
        assert engine.tracker.records["he feel a wave"].count == 4

    def test_without_generator(self):
        with pytest.raises(RuntimeError):
            asyncio.run(ProsePolisherEngine().synthesize())

    def test_concurrent_run_is_busy(self):
        generator = GatedGenerator()
        engine = self._engine(generator)

        async def scenario():
            first = asyncio.create_task(engine.synthesize())
            await asyncio.sleep(0)
            second = await engine.synthesize()
            generator.gate.set()
            return await first, second

        first, second = asyncio.run(scenario())
        assert second.status == "busy"
        assert first.status == "ok"
        assert generator.calls == 1

    def test_cancellation_leaves_state_unchanged(self):
        generator = GatedGenerator(WAVE_RULE)
        engine = self._engine(generator)
        before = _scores(engine)

        async def scenario():
            task = asyncio.create_task(engine.synthesize())
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert _scores(engine) == before
        assert engine.rules == []
        assert engine._synthesis_in_progress is False


class TestHistory:
    MESSAGES = [
        Message(WAVE),
        Message("Tell me more about the lantern.", is_user=True),
        Message(WAVE),
        Message(""),
        Message(WAVE),
    ]

    def test_reanalyze_replaces_state(self):
        engine = ProsePolisherEngine()
        engine.observe(LANTERN)
        progress = []
        analyzed = []
        engine.subscribe("history_analyzed", analyzed.append)

        async def scenario():
            result = await engine.reanalyze_history(self.MESSAGES, on_progress=progress.append)
            await asyncio.sleep(0)
            return result

        analysis = asyncio.run(scenario())
        assert analysis.messages_analyzed == 3
        assert analysis.total_messages == 5
        assert progress == [HistoryProgress(processed=5, total=5, analyzed=3)]
        assert analyzed == [analysis]
        assert engine.tracker.message_index == 3
        assert "the crimson lantern" not in engine.tracker.records
        assert engine.tracker.records["feel a wave of"].count == 3
        assert engine.synthesis_due

    def test_worker_state_is_not_shared(self):
        engine = ProsePolisherEngine()
        analysis = asyncio.run(engine.reanalyze_history(self.MESSAGES))
        engine.observe(WAVE)
        assert analysis.records["feel a wave of"].count == 3

    def test_cancelled_pass_blocks_new_pass_until_worker_exits(self):
        started = threading.Event()
        release = threading.Event()

        class GatedLexicon(Lexicon):
            def lemmatize(self, word: str) -> str:
                started.set()
                release.wait(5)
                return super().lemmatize(word)

        engine = ProsePolisherEngine(lexicon=GatedLexicon())

        async def scenario():
            task = asyncio.create_task(engine.reanalyze_history([Message(WAVE)]))
            await asyncio.to_thread(started.wait, 5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            while_running = await engine.reanalyze_history([Message(WAVE)])
            release.set()
            for _ in range(500):
                if not engine._history_in_progress:
                    break
                await asyncio.sleep(0.01)
            after_exit = await engine.reanalyze_history([Message(WAVE)])
            return while_running, after_exit

        while_running, after_exit = asyncio.run(scenario())
        assert while_running is None
        assert after_exit is not None
        assert after_exit.messages_analyzed == 1

    def test_analysis_honours_cancel_event(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(AnalysisCancelled):
            analyze_history(self.MESSAGES, cancel_event=cancel)

    def test_aggressive_prune_during_bulk_pass(self):
        messages = [Message(f"Alpha{i} bravo{i} charlie{i}.") for i in range(5)]
        hp = Hyperparameters(bulk_prune_max_score=100.0, bulk_prune_max_count=2)
        analysis = analyze_history(messages, hyperparameters=hp)
        assert analysis.records == {}


class TestPersistence:
    def test_save_and_load(self):
        store = InMemoryBlobStore()
        first = ProsePolisherEngine(blob_store=store, conversation_id="c1")
        first.observe(WAVE)
        first.observe(WAVE)
        assert first.save_state()

        second = ProsePolisherEngine(blob_store=store, conversation_id="c1")
        assert second.load_state()
        assert {k: r.to_payload() for k, r in second.tracker.records.items()} == {
            k: r.to_payload() for k, r in first.tracker.records.items()
        }
        assert list(second.tracker.candidates) == list(first.tracker.candidates)
        assert second.tracker.message_index == 2

    def test_autosave_interval(self):
        store = InMemoryBlobStore()
        engine = ProsePolisherEngine(blob_store=store)
        for _ in range(4):
            engine.observe(WAVE)
        assert store.load(snapshot_key("default")) is None
        engine.observe(WAVE)
        assert store.load(snapshot_key("default")) is not None

    def test_negative_blacklist_weight_autosaves_cleanly(self):
        store = InMemoryBlobStore()
        hp = Hyperparameters(blacklist={"crimson": -5.0}, autosave_interval=1)
        engine = ProsePolisherEngine(hyperparameters=hp, blob_store=store)
        engine.observe(LANTERN)
        assert store.load(snapshot_key("default")) is not None
        assert all(r.score >= 0 for r in engine.tracker.records.values())

    def test_unsavable_state_is_reported_not_raised(self):
        engine = ProsePolisherEngine(blob_store=InMemoryBlobStore())
        engine.tracker.records["bad"] = NgramRecord(1, -1.0, 0, "bad", "")
        assert engine.save_state() is False

    def test_corrupt_state_starts_empty(self):
        store = InMemoryBlobStore()
        store.save(snapshot_key("c1"), "{not json")
        engine = ProsePolisherEngine(blob_store=store, conversation_id="c1")
        engine.observe(WAVE)
        assert engine.load_state() is False
        assert engine.tracker.records == {}

    def test_clear(self):
        engine = ProsePolisherEngine()
        cleared = []
        engine.subscribe("state_cleared", cleared.append)
        engine.observe(WAVE)
        engine.clear()
        assert cleared == [None]
        assert engine.tracker.records == {}
        assert len(engine.leaderboard) == 0
