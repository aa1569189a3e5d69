import pytest

pytest.importorskip("data_designer")
pd = pytest.importorskip("pandas")

from data_designer_prose_polisher.config import ProsePolisherColumnConfig  # noqa: E402
from data_designer_prose_polisher.core import Hyperparameters  # noqa: E402
from data_designer_prose_polisher.generator import row_texts, track_rows  # noqa: E402

WAVE = "He felt a wave of sadness wash over him."


class TestColumnConfig:
    def test_defaults_map_to_hyperparameters(self):
        config = ProsePolisherColumnConfig(name="slop", target_columns=["story"])
        hp = config.to_hyperparameters()
        assert hp.slop_threshold == 3.0
        assert hp.ngram_max == 10
        assert config.required_columns == ["story"]
        assert config.column_type == "prose-polisher"

    def test_lists_become_hyperparameter_tables(self):
        config = ProsePolisherColumnConfig(
            name="slop", target_columns=["story"], whitelist=["Elara"], blacklist={"tapestry": 2.0}
        )
        hp = config.to_hyperparameters()
        assert hp.whitelist == frozenset({"Elara"})
        assert hp.blacklist == {"tapestry": 2.0}

    def test_threshold_bounds(self):
        with pytest.raises(ValueError):
            ProsePolisherColumnConfig(name="slop", target_columns=["story"], slop_threshold=0.5)

    def test_negative_blacklist_weight_rejected(self):
        with pytest.raises(ValueError):
            ProsePolisherColumnConfig(name="slop", target_columns=["story"], blacklist={"tapestry": -1.0})


class TestRowTexts:
    def test_missing_cells_are_skipped(self):
        frame = pd.DataFrame({"title": ["Dawn", None, float("nan")], "story": [WAVE, "She nodded.", None]})
        assert row_texts(frame, ["title", "story"]) == [f"Dawn {WAVE}", "She nodded.", ""]


class TestTrackRows:
    def test_rows_are_one_stream(self):
        results = track_rows([WAVE, "Nothing alike here today.", WAVE], Hyperparameters())
        assert [r["messages_analyzed"] for r in results] == [1, 2, 3]
        assert "he felt a wave of sadness wash over him" in results[2]["repeated_phrases"]
        assert results[0]["repeated_phrases"] == []
        assert "he feel a wave of sadness wash over him" in results[0]["new_candidates"]

    def test_leaderboard_on_last_row_only(self):
        results = track_rows([WAVE, WAVE], Hyperparameters())
        assert "leaderboard" not in results[0]
        remaining = results[-1]["leaderboard"]["remaining"]
        assert remaining[0]["phrase"] == "he felt a wave of sadness wash over him"

    def test_leaderboard_can_be_omitted(self):
        results = track_rows([WAVE], Hyperparameters(), include_leaderboard=False)
        assert "leaderboard" not in results[0]

    def test_no_rows(self):
        assert track_rows([], Hyperparameters()) == []
