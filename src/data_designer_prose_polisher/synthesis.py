# SPDX-License-Identifier: Apache-2.0
# Rule synthesis: turn leaderboard entries into validated find/replace rules.
#
# The pipeline flattens the leaderboard into scored candidates, optionally asks the
# generation capability to screen them, and then runs one of two protocols:
# a single call for the whole batch, or an alternating creative/technical exchange
# per candidate. Every proposed rule passes the same validation before acceptance.

from __future__ import annotations

import json
import logging
import random
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from data_designer_prose_polisher import prompts
from data_designer_prose_polisher.core import DEFAULT_HYPERPARAMETERS, Hyperparameters, SynthesisMethod
from data_designer_prose_polisher.patterns import Leaderboard

logger = logging.getLogger(__name__)

SynthesisStatus = Literal["ok", "empty", "failed", "busy"]


class GenerationError(RuntimeError):
    """The generation capability could not produce a response."""


class TextGenerator(Protocol):
    async def generate(self, system_prompt: str, user_prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Tolerant JSON extraction
# ---------------------------------------------------------------------------

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _balanced_span(text: str) -> str | None:
    starts = [i for i in (text.find("["), text.find("{")) if i >= 0]
    if not starts:
        return None
    start = min(starts)
    closer = {"[": "]", "{": "}"}
    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in closer:
            stack.append(closer[ch])
        elif ch in "]}":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start : i + 1]
    return None


def _loads(text: str) -> Any | None:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def extract_json(raw: str | None) -> Any | None:
    """Pull a JSON value out of free-form model output.

    Tries, in order: the first fenced code block, the whole text, and the first
    balanced bracket/brace span. Returns ``None`` when nothing parses.
    """
    if not raw or not raw.strip():
        return None
    fenced = _FENCED_JSON_RE.search(raw)
    if fenced:
        parsed = _loads(fenced.group(1))
        if parsed is not None:
            return parsed
    parsed = _loads(raw.strip())
    if parsed is not None:
        return parsed
    span = _balanced_span(raw)
    return _loads(span) if span else None


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class ScreeningVerdict(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    candidate: str
    valid_for_synthesis: bool = Field(validation_alias=AliasChoices("valid_for_synthesis", "validForSynthesis", "valid_for_regex"))
    enhanced_context: str | None = Field(default=None, validation_alias=AliasChoices("enhanced_context", "enhancedContext"))
    reason: str | None = None


class RuleProposal(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(validation_alias=AliasChoices("name", "scriptName"))
    find_pattern: str = Field(validation_alias=AliasChoices("find_pattern", "findPattern", "findRegex"))
    replacement: str = Field(validation_alias=AliasChoices("replacement", "replaceString"))


class TurnOutput(BaseModel):
    """One creative or technical turn of the iterative protocol."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "scriptName"))
    find_pattern: str | None = Field(default=None, validation_alias=AliasChoices("find_pattern", "findPattern", "findRegex"))
    alternatives: list[str] | None = None
    replacement: str | None = Field(default=None, validation_alias=AliasChoices("replacement", "replaceString"))
    notes_for_technical: str | None = None
    notes_for_creative: str | None = None


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

_GROUP_REF_RE = re.compile(r"\$(\d)")
_RANDOM_WRAPPER_RE = re.compile(r"^\{\{random:([\s\S]+?)\}\}$")


@dataclass(frozen=True)
class Rule:
    name: str
    find_pattern: str
    replacement: str
    alternatives: tuple[str, ...]
    id: str = field(default_factory=lambda: f"DYN_{uuid.uuid4().hex[:12]}")
    disabled: bool = False

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.find_pattern, re.IGNORECASE)

    def render(self, match: re.Match[str], rng: random.Random | None = None) -> str:
        """Pick an alternative and expand ``$1``-style group references from ``match``."""
        choice = (rng or random).choice(self.alternatives)
        groups = match.groups()
        return _GROUP_REF_RE.sub(lambda m: (groups[int(m.group(1)) - 1] or "") if 0 < int(m.group(1)) <= len(groups) else "", choice)

    def apply(self, text: str, rng: random.Random | None = None) -> str:
        return self.compile().sub(lambda m: self.render(m, rng), text)

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "find_pattern": self.find_pattern,
            "replacement": self.replacement,
            "disabled": self.disabled,
        }


def normalize_replacement(replacement: str) -> str:
    fixed = re.sub(r"\{\s*\{", "{{", replacement.strip())
    fixed = re.sub(r"\}\s*\}", "}}", fixed)
    return re.sub(r"\{\{\s*random\s*:", "{{random:", fixed)


def parse_alternatives(replacement: str) -> tuple[str, list[str]]:
    """Return the canonical ``{{random:...}}`` string and its alternatives."""
    processed = normalize_replacement(replacement)
    wrapped = _RANDOM_WRAPPER_RE.match(processed)
    if wrapped:
        alternatives = [s.strip() for s in wrapped.group(1).split(",") if s.strip()]
        return processed, alternatives
    raw = processed.strip('"')
    alternatives = [s.strip() for s in raw.split(",") if s.strip()]
    return "{{random:" + ",".join(alternatives) + "}}", alternatives


def validate_rule(proposal: RuleProposal, min_alternatives: int) -> Rule | None:
    """Apply the acceptance contract. Logs and returns ``None`` on rejection."""
    try:
        re.compile(proposal.find_pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Generated an invalid pattern for rule {proposal.name!r}, skipping: {e}")
        return None
    replacement, alternatives = parse_alternatives(proposal.replacement)
    if len(alternatives) < min_alternatives:
        logger.warning(
            f"Rule {proposal.name!r} has insufficient alternatives "
            f"(found {len(alternatives)}, need {min_alternatives}), skipping"
        )
        return None
    return Rule(
        name=proposal.name,
        find_pattern=proposal.find_pattern,
        replacement=replacement,
        alternatives=tuple(alternatives),
    )


# ---------------------------------------------------------------------------
# Candidates and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SynthesisCandidate:
    candidate: str
    context: str
    score: float
    members: tuple[str, ...] = ()

    def surface_forms(self) -> tuple[str, ...]:
        return self.members or (self.candidate,)

    def to_prompt_payload(self) -> dict[str, object]:
        return {"candidate": self.candidate, "enhanced_context": self.context}


@dataclass
class SynthesisResult:
    status: SynthesisStatus
    rules: list[Rule] = field(default_factory=list)
    consumed: tuple[str, ...] = ()
    batch: tuple[SynthesisCandidate, ...] = ()
    error: str | None = None


def gather_candidates(leaderboard: Leaderboard) -> list[SynthesisCandidate]:
    """Flatten merged patterns and remaining phrases into one list by descending score."""
    out = [SynthesisCandidate(p.text, p.text, p.score, p.members) for p in leaderboard.merged]
    out.extend(SynthesisCandidate(r.phrase, r.context or r.phrase, r.score) for r in leaderboard.remaining)
    out.sort(key=lambda c: c.score, reverse=True)
    return out


def _rule_covers(pattern: re.Pattern[str], candidate: SynthesisCandidate) -> bool:
    return any(pattern.search(form) for form in (*candidate.surface_forms(), candidate.candidate, candidate.context))


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class RuleSynthesizer:
    """Drives screening and rule generation against a :class:`TextGenerator`.

    The synthesizer never touches tracker state; it reports which surface forms
    its accepted rules consumed and leaves zeroing to the caller.
    """

    def __init__(self, generator: TextGenerator, hyperparameters: Hyperparameters | None = None) -> None:
        self.generator = generator
        self.hp = hyperparameters or DEFAULT_HYPERPARAMETERS

    async def prescreen(self, candidates: Sequence[SynthesisCandidate]) -> list[SynthesisCandidate]:
        """Drop candidates the screener marks invalid. Any failure accepts all."""
        if not candidates:
            return []
        try:
            raw = await self.generator.generate(
                prompts.PRESCREEN_SYSTEM, prompts.prescreen_user([c.candidate for c in candidates])
            )
        except GenerationError as e:
            logger.warning(f"Pre-screening failed, proceeding with raw candidates: {e}")
            return list(candidates)

        parsed = extract_json(raw)
        if parsed is None:
            logger.warning("Pre-screening returned no parsable JSON, proceeding with raw candidates")
            return list(candidates)
        verdicts: list[ScreeningVerdict] = []
        for item in _as_list(parsed):
            try:
                verdicts.append(ScreeningVerdict.model_validate(item))
            except ValidationError:
                logger.warning(f"Skipping malformed screening verdict: {item!r}")
        if not verdicts:
            logger.warning("Pre-screening returned no usable verdicts, proceeding with raw candidates")
            return list(candidates)

        by_phrase = {v.candidate: v for v in verdicts}
        approved = []
        for c in candidates:
            verdict = by_phrase.get(c.candidate)
            if verdict is None or not verdict.valid_for_synthesis:
                if verdict is not None and verdict.reason:
                    logger.debug(f"Screener rejected {c.candidate!r}: {verdict.reason}")
                continue
            if verdict.enhanced_context:
                c = SynthesisCandidate(c.candidate, verdict.enhanced_context, c.score, c.members)
            approved.append(c)
        logger.info(f"Pre-screened {len(candidates)} candidates, {len(approved)} approved")
        return approved

    async def synthesize_single(self, batch: Sequence[SynthesisCandidate]) -> tuple[list[Rule], tuple[str, ...]]:
        """One generation call for the whole batch. Raises :class:`GenerationError`."""
        raw = await self.generator.generate(
            prompts.single_pass_system(self.hp.min_alternatives),
            prompts.single_pass_user([c.to_prompt_payload() for c in batch]),
        )
        parsed = extract_json(raw)
        if parsed is None:
            logger.error("Rule generation returned no parsable JSON")
            return [], ()

        rules: list[Rule] = []
        consumed: list[str] = []
        for item in _as_list(parsed):
            try:
                proposal = RuleProposal.model_validate(item)
            except ValidationError:
                logger.warning(f"Skipping incomplete rule proposal: {item!r}")
                continue
            rule = validate_rule(proposal, self.hp.min_alternatives)
            if rule is None:
                continue
            rules.append(rule)
            compiled = rule.compile()
            for c in batch:
                if _rule_covers(compiled, c):
                    consumed.extend(c.surface_forms())
        return rules, tuple(dict.fromkeys(consumed))

    async def _turn(self, role: str, prompt: str) -> TurnOutput:
        raw = await self.generator.generate(prompts.ITERATIVE_SYSTEM, prompt)
        parsed = extract_json(raw)
        if not isinstance(parsed, dict):
            logger.warning(f"{role.capitalize()} turn output unparsable, ignoring")
            return TurnOutput()
        try:
            return TurnOutput.model_validate(parsed)
        except ValidationError as e:
            logger.warning(f"{role.capitalize()} turn output malformed, ignoring: {e}")
            return TurnOutput()

    async def synthesize_candidate(self, candidate: SynthesisCandidate, cycles: int) -> Rule | None:
        """Alternate creative and technical turns for one candidate. Raises :class:`GenerationError`."""
        find_pattern: str | None = None
        alternatives: list[str] = []
        notes_for_creative: str | None = None
        notes_for_technical: str | None = None
        name: str | None = None
        replacement: str | None = None

        for cycle in range(1, cycles + 1):
            for role in ("creative", "technical"):
                prompt = prompts.iterative_prompt(
                    role, cycle, cycles, candidate.candidate, candidate.context, find_pattern, alternatives,
                    notes_for_creative if role == "creative" else notes_for_technical,
                    self.hp.min_alternatives,
                )
                out = await self._turn(role, prompt)
                find_pattern = out.find_pattern or find_pattern
                if out.alternatives:
                    alternatives = out.alternatives
                notes_for_technical = out.notes_for_technical or notes_for_technical
                notes_for_creative = out.notes_for_creative or notes_for_creative
                if role == "technical" and cycle == cycles:
                    name = out.name or name
                    replacement = out.replacement or replacement

        if replacement is None and alternatives:
            replacement = "{{random:" + ",".join(alternatives) + "}}"
        if not (name and find_pattern and replacement):
            logger.warning(f"Iterative synthesis produced no complete rule for {candidate.candidate!r}")
            return None
        rule = validate_rule(RuleProposal(name=name, find_pattern=find_pattern, replacement=replacement), self.hp.min_alternatives)
        if rule is not None:
            logger.info(f"Iterative synthesis produced rule {rule.name!r}")
        return rule

    async def synthesize_iterative(self, batch: Sequence[SynthesisCandidate], cycles: int) -> tuple[list[Rule], tuple[str, ...]]:
        rules: list[Rule] = []
        consumed: list[str] = []
        for candidate in batch:
            rule = await self.synthesize_candidate(candidate, cycles)
            if rule is not None:
                rules.append(rule)
                consumed.extend(candidate.surface_forms())
        return rules, tuple(dict.fromkeys(consumed))

    async def run(
        self,
        leaderboard: Leaderboard,
        batch_size: int | None = None,
        method: SynthesisMethod | None = None,
    ) -> SynthesisResult:
        """Screen and synthesize the top of ``leaderboard``.

        Args:
            leaderboard: Current analysis snapshot.
            batch_size: Candidates sent to synthesis. Defaults to ``synthesis_batch_size``.
            method: ``"single"`` or ``"iterative"``. Defaults to ``synthesis_method``.

        Returns:
            A :class:`SynthesisResult`; ``status`` is ``"failed"`` when the generation
            capability raised, in which case no rules are returned.
        """
        hp = self.hp
        batch_size = batch_size or hp.synthesis_batch_size
        method = method or hp.synthesis_method

        candidates = gather_candidates(leaderboard)[: hp.prescreen_batch_size]
        if not candidates:
            logger.info("No slop candidates or patterns identified")
            return SynthesisResult("empty")
        if hp.prescreen_enabled:
            candidates = await self.prescreen(candidates)
        else:
            logger.debug("Pre-screening disabled, using direct candidates")
        batch = tuple(candidates[:batch_size])
        if not batch:
            logger.info("Pre-screening found no valid candidates for rule synthesis")
            return SynthesisResult("empty")

        try:
            if method == "iterative":
                rules, consumed = await self.synthesize_iterative(batch, hp.iterative_cycles)
            else:
                rules, consumed = await self.synthesize_single(batch)
        except GenerationError as e:
            logger.error(f"Rule synthesis failed for a batch of {len(batch)}: {e}")
            return SynthesisResult("failed", batch=batch, error=str(e))

        logger.info(f"Rule synthesis finished. Accepted {len(rules)} rules for {len(batch)} candidates")
        return SynthesisResult("ok", rules=rules, consumed=consumed, batch=batch)
