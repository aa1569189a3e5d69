# SPDX-License-Identifier: Apache-2.0
"""Prose Polisher: repetition tracking and adaptive rewrite rules for generated text.

Tracks which multi-word phrases recur across a stream of generated messages,
merges the worst offenders into generalized patterns, and drives a text
generation backend to synthesize validated find/replace rules.

Usage::

    from data_designer_prose_polisher import OpenAIChatGenerator, ProsePolisherEngine

    engine = ProsePolisherEngine(OpenAIChatGenerator(model="gpt-4o-mini"))
    for message in messages:
        engine.observe(message)
    result = await engine.synthesize()

The ``prose-polisher`` data_designer column type lives in
``data_designer_prose_polisher.config`` and is registered through
``data_designer_prose_polisher.plugin``.
"""

from data_designer_prose_polisher.core import CandidateSet, FrequencyTracker, Hyperparameters, NgramRecord
from data_designer_prose_polisher.engine import ProsePolisherEngine
from data_designer_prose_polisher.history import HistoryAnalysis, HistoryProgress, Message, analyze_history
from data_designer_prose_polisher.lexicon import Lexicon
from data_designer_prose_polisher.llm import OpenAIChatGenerator
from data_designer_prose_polisher.patterns import Leaderboard, Pattern, RankedPhrase, build_leaderboard, merge_patterns
from data_designer_prose_polisher.snapshot import AnalyzerSnapshot, InMemoryBlobStore, JsonFileBlobStore
from data_designer_prose_polisher.synthesis import GenerationError, Rule, RuleSynthesizer, SynthesisResult
from data_designer_prose_polisher.text import normalize

__all__ = [
    "AnalyzerSnapshot",
    "CandidateSet",
    "FrequencyTracker",
    "GenerationError",
    "HistoryAnalysis",
    "HistoryProgress",
    "Hyperparameters",
    "InMemoryBlobStore",
    "JsonFileBlobStore",
    "Leaderboard",
    "Lexicon",
    "Message",
    "NgramRecord",
    "OpenAIChatGenerator",
    "Pattern",
    "ProsePolisherEngine",
    "RankedPhrase",
    "Rule",
    "RuleSynthesizer",
    "SynthesisResult",
    "analyze_history",
    "build_leaderboard",
    "merge_patterns",
    "normalize",
]
