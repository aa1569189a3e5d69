import pytest

from data_designer_prose_polisher.core import Hyperparameters, NgramRecord
from data_designer_prose_polisher.patterns import (
    build_leaderboard,
    collapse_by_surface,
    cull_substrings,
    merge_patterns,
)


def _records(scores: dict[str, float]) -> dict[str, NgramRecord]:
    return {
        phrase: NgramRecord(count=2, score=score, last_seen_index=0, original_form=phrase, context_sentence=f"{phrase}.")
        for phrase, score in scores.items()
    }


class TestCulling:
    def test_nested_phrases_are_removed(self):
        culled = cull_substrings({"a wave of sadness": 3.0, "wave of sadness": 2.0, "she gave a nod": 1.0})
        assert culled == {"a wave of sadness": 3.0, "she gave a nod": 1.0}

    def test_culling_is_idempotent(self):
        scores = {"alpha beta gamma": 1.0, "delta echo foxtrot": 2.0, "beta gamma": 0.5}
        once = cull_substrings(scores)
        assert cull_substrings(once) == once

    def test_collapse_sums_lemma_variants(self):
        records = {
            "she smile at": NgramRecord(1, 2.0, 0, "she smiled at", ""),
            "she smile at him": NgramRecord(1, 1.0, 0, "she smiled at", ""),
        }
        assert collapse_by_surface(records) == {"she smiled at": 3.0}


class TestMerge:
    def test_prefix_merge(self):
        board = merge_patterns(
            _records({"she gave a small smile": 5.0, "she gave a small nod": 4.0, "she gave a small sigh": 3.0}),
            min_common_words=3,
        )
        assert len(board.merged) == 1
        pattern = board.merged[0]
        assert pattern.text == "she gave a small smile/nod/sigh"
        assert pattern.score == pytest.approx(12.0)
        assert board.remaining == ()

    def test_true_common_prefix_is_used(self):
        board = merge_patterns(
            _records({"he took a deep breath and": 3.0, "he took a deep sigh": 2.0, "he took a step back": 1.0}),
            min_common_words=3,
        )
        pattern = board.merged[0]
        assert pattern.prefix == "he took a"
        assert set(pattern.alternatives) == {"deep breath and", "deep sigh", "step back"}

    def test_short_prefix_is_not_merged(self):
        board = merge_patterns(_records({"she gave a small smile": 4.0, "she gave him a look": 5.0}), min_common_words=3)
        assert board.merged == ()
        assert [r.phrase for r in board.remaining] == ["she gave him a look", "she gave a small smile"]
        assert board.remaining[0].context == "she gave him a look."

    def test_candidate_limit_caps_pool(self):
        board = merge_patterns(
            _records({"red fox runs": 3.0, "blue owl sings": 2.0, "green frog leaps": 1.0}),
            candidate_limit=2,
        )
        assert {r.phrase for r in board.remaining} == {"red fox runs", "blue owl sings"}

    def test_merge_does_not_mutate_records(self):
        records = _records({"she gave a small smile": 5.0, "she gave a small nod": 4.0})
        merge_patterns(records)
        assert records["she gave a small smile"].score == 5.0
        assert len(records) == 2

    def test_empty_table(self):
        board = merge_patterns({})
        assert len(board) == 0


class TestLeaderboard:
    def test_low_scores_are_excluded(self):
        board = build_leaderboard(_records({"red fox runs": 3.0, "blue owl sings": 1.0}), Hyperparameters())
        assert [r.phrase for r in board.remaining] == ["red fox runs"]

    def test_payload_shape(self):
        board = build_leaderboard(_records({"she gave a small smile": 5.0, "she gave a small nod": 4.0}))
        payload = board.to_payload()
        assert payload["merged"][0]["pattern"] == "she gave a small smile/nod"
        assert payload["remaining"] == []
