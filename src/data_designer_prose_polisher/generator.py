from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import pandas as pd

from data_designer.engine.column_generators.generators.base import ColumnGeneratorFullColumn

from data_designer_prose_polisher.config import ProsePolisherColumnConfig
from data_designer_prose_polisher.core import FrequencyTracker, Hyperparameters
from data_designer_prose_polisher.patterns import build_leaderboard

logger = logging.getLogger(__name__)


def _is_missing(value: Any) -> bool:
    return value is None or (pd.api.types.is_scalar(value) and bool(pd.isna(value)))


def row_texts(data: pd.DataFrame, columns: list[str]) -> list[str]:
    """Join the non-missing cells of ``columns`` into one text per row."""
    return [
        " ".join(str(v) for v in row.values if not _is_missing(v))
        for _, row in data[columns].iterrows()
    ]


def track_rows(texts: Iterable[str], hp: Hyperparameters, include_leaderboard: bool = True) -> list[dict[str, Any]]:
    """Observe each text in order on one tracker and report per-row findings."""
    tracker = FrequencyTracker(hyperparameters=hp)
    results: list[dict[str, Any]] = []
    for text in texts:
        promoted = tracker.observe(text)
        row_index = tracker.message_index - 1
        repeated = sorted(
            {r.original_form for r in tracker.records.values() if r.last_seen_index == row_index and r.count > 1}
        )
        results.append({
            "new_candidates": promoted,
            "repeated_phrases": repeated,
            "messages_analyzed": tracker.message_index,
        })

    if results and include_leaderboard:
        results[-1]["leaderboard"] = build_leaderboard(tracker.records, hp).to_payload()
    logger.info(f"   candidates found: {len(tracker.candidates)}")
    return results


class ProsePolisherColumnGenerator(ColumnGeneratorFullColumn[ProsePolisherColumnConfig]):
    """Column generator that tracks cross-row phrase repetition."""

    def generate(self, data: pd.DataFrame) -> pd.DataFrame:
        logger.info(f"\U0001fab6 Tracking repeated phrases for column {self.config.name!r}")
        logger.info(f"   target columns: {self.config.target_columns}")
        logger.info(f"   slop_threshold: {self.config.slop_threshold}")

        texts = row_texts(data, self.config.target_columns)
        results = track_rows(texts, self.config.to_hyperparameters(), self.config.include_leaderboard)

        data = data.copy()
        data[self.config.name] = results
        return data
