# SPDX-License-Identifier: Apache-2.0
"""Prompt text for candidate screening and rule synthesis."""

from __future__ import annotations

import json
from collections.abc import Sequence
from string import Template

PRESCREEN_SYSTEM = """\
You review phrases that a repetition detector flagged in AI-generated roleplay prose.
Evaluate each phrase. Return a JSON array with one object per phrase containing:
- candidate: the original phrase, unchanged
- valid_for_synthesis: true if the phrase is suitable for a text replacement rule,
  false if it is too short, too generic, a name, or formatting/metadata
- enhanced_context: an example sentence using the phrase (if valid)
- reason: a short explanation (if invalid)

Return only the JSON array."""

_SINGLE_PASS_SYSTEM = Template("""\
Create text replacement rules for repetitive phrases.

For each viable phrase, create a JSON object with:
- name: descriptive name (e.g. "Prose Fix - Doubt Expression")
- find_pattern: a regular expression with word boundaries \\b and capture groups for pronouns
- replacement: at least $min_alternatives alternatives in the format {{random:alt1,alt2,alt3}}

Use $$1, $$2 to reuse captured groups inside alternatives. Alternatives must not contain commas.
Skip phrases that cannot produce $min_alternatives quality alternatives.

Return only a JSON array. If no rules are created, return [].""")

_ITERATIVE_TEMPLATE = Template("""\
$role_title for phrase: "$candidate"
Context: $context
Cycle $cycle/$total

$current_pattern
$current_alternatives
$partner_notes

$task

Return only JSON. If a quality rule cannot be created, return {}.""")

CREATIVE_TASK = (
    'Task: Create creative alternatives and a draft pattern. '
    'Return JSON: {"find_pattern": "...", "alternatives": [...], "notes_for_technical": "..."}'
)
TECHNICAL_TASK = (
    'Task: Tighten the pattern and refine the alternatives. '
    'Return JSON: {"find_pattern": "...", "alternatives": [...], "notes_for_creative": "..."}'
)
_FINAL_TASK = Template(
    "FINAL TURN: Finalize the rule with $min_alternatives+ alternatives. "
    'Return JSON: {"name": "...", "find_pattern": "...", "replacement": "{{random:alt1,alt2,...}}"}'
)


def single_pass_system(min_alternatives: int) -> str:
    return _SINGLE_PASS_SYSTEM.safe_substitute(min_alternatives=min_alternatives)


def prescreen_user(candidates: Sequence[str]) -> str:
    listing = "\n- ".join(candidates)
    return f"Evaluate the following potential slop phrases/patterns:\n- {listing}\n\nProvide the JSON array of evaluations now."


def single_pass_user(candidates: Sequence[dict[str, object]]) -> str:
    listing = "\n".join(f"- {json.dumps(c)}" for c in candidates)
    return (
        f"Generate the JSON array of replacement rules for the following candidates:\n{listing}\n\n"
        "Follow all instructions precisely."
    )


def iterative_prompt(
    role: str,
    cycle: int,
    total_cycles: int,
    candidate: str,
    context: str,
    find_pattern: str | None,
    alternatives: Sequence[str],
    partner_notes: str | None,
    min_alternatives: int,
) -> str:
    """Build one turn of the creative/technical exchange for a single candidate."""
    if role == "creative":
        task = CREATIVE_TASK
    elif cycle == total_cycles:
        task = _FINAL_TASK.safe_substitute(min_alternatives=min_alternatives)
    else:
        task = TECHNICAL_TASK
    return _ITERATIVE_TEMPLATE.safe_substitute(
        role_title="Creative role" if role == "creative" else "Technical role",
        candidate=candidate,
        context=context or candidate,
        cycle=cycle,
        total=total_cycles,
        current_pattern=f"Current pattern: {find_pattern}" if find_pattern else "No pattern yet",
        current_alternatives=(
            f"Current alternatives: {json.dumps(list(alternatives))}" if alternatives else "No alternatives yet"
        ),
        partner_notes=f"Partner notes: {partner_notes}" if partner_notes else "",
        task=task,
    )


ITERATIVE_SYSTEM = (
    "You are one half of a two-person team writing find/replace rules that suppress "
    "repetitive phrasing in AI-generated fiction. Answer with JSON only."
)
