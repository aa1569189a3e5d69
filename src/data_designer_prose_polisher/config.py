from __future__ import annotations

from typing import Literal

from pydantic import Field, NonNegativeFloat

from data_designer.config.column_configs import SingleColumnConfig

from data_designer_prose_polisher.core import Hyperparameters


class ProsePolisherColumnConfig(SingleColumnConfig):
    """Track phrases that repeat across rows, treating the rows as one message stream.

    Rows are observed in order by a single frequency tracker. Each row's output lists
    the phrases promoted to slop candidates by that row and the repeated phrases it
    contains; the last row also carries the merged pattern leaderboard.

    Attributes:
        target_columns: Columns whose text content will be concatenated per row.
        slop_threshold: Accumulated score at which a phrase becomes a candidate.
        ngram_max: Longest n-gram length tracked.
        pattern_min_common_words: Shared word prefix needed to merge phrases into a pattern.
        whitelist: Extra words never counted as distinctive.
        blacklist: Terms that add their weight to any phrase containing them.
        include_leaderboard: Attach the merged leaderboard to the final row.
    """

    target_columns: list[str]
    slop_threshold: float = Field(default=3.0, ge=1.0, description="Score at which a phrase becomes a candidate")
    ngram_max: int = Field(default=10, ge=3, le=20, description="Longest n-gram length tracked")
    pattern_min_common_words: int = Field(default=3, ge=2, le=10, description="Shared prefix words needed to merge")
    whitelist: list[str] = Field(default_factory=list, description="Words never counted as distinctive")
    blacklist: dict[str, NonNegativeFloat] = Field(default_factory=dict, description="Term weights added to matching phrases")
    include_leaderboard: bool = Field(default=True, description="Attach the merged leaderboard to the last row")
    column_type: Literal["prose-polisher"] = "prose-polisher"

    @staticmethod
    def get_column_emoji() -> str:
        return "\U0001fab6"

    @property
    def required_columns(self) -> list[str]:
        return self.target_columns

    @property
    def side_effect_columns(self) -> list[str]:
        return []

    def to_hyperparameters(self) -> Hyperparameters:
        return Hyperparameters(
            slop_threshold=self.slop_threshold,
            ngram_max=self.ngram_max,
            pattern_min_common_words=self.pattern_min_common_words,
            whitelist=frozenset(self.whitelist),
            blacklist=dict(self.blacklist),
        )
