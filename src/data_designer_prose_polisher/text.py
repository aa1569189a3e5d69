# SPDX-License-Identifier: Apache-2.0
"""Markup stripping, sentence splitting and tokenization for chat messages."""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache
from typing import NamedTuple

DEFAULT_STRIPPED_TAGS: tuple[str, ...] = ("info_panel", "memo", "code", "pre", "script", "style")

_FENCED_CODE_BLOCK_RE = re.compile(r"(?:```|~~~)\w*\s*[\s\S]*?(?:```|~~~)")
_TAG_RE = re.compile(r"<[^>]*>")
_EMPHASIS_RE = re.compile(r"(?:\*|_|~|`)+(.+?)(?:\*|_|~|`)+")
_DOUBLE_QUOTED_RE = re.compile(r"[\"“](.*?)[\"”]")
_PARENTHESIZED_RE = re.compile(r"\((.*?)\)")
_STRAY_QUOTE_RE = re.compile(r"[\"“”]|(?:(?<=\s)|^)['‘]|['’](?=\s|$)")
_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+[\"”']?")
_DIALOGUE_OPEN_RE = re.compile(r"[\"“”]|(?:^|\s)['‘]")
_PUNCT_STRIP_RE = re.compile(r"^[^\w]+|[^\w]+$")


class Sentence(NamedTuple):
    text: str
    is_dialogue: bool


@lru_cache(maxsize=32)
def _block_tag_re(tags: tuple[str, ...]) -> re.Pattern[str] | None:
    if not tags:
        return None
    names = "|".join(re.escape(t) for t in tags)
    return re.compile(rf"<({names})[^>]*>[\s\S]*?</\1>", re.IGNORECASE)


def strip_markup(text: str, stripped_tags: Iterable[str] = DEFAULT_STRIPPED_TAGS) -> str:
    """Remove code fences, block tags with their content, other tags and emphasis markers.

    Quote marks and parentheses are left in place; :func:`clean_sentence`
    removes them once the dialogue/narration split has been made.
    """
    if not text:
        return ""
    clean = _FENCED_CODE_BLOCK_RE.sub(" ", text)
    block_re = _block_tag_re(tuple(stripped_tags))
    if block_re is not None:
        clean = block_re.sub(" ", clean)
    clean = _TAG_RE.sub(" ", clean)
    clean = _EMPHASIS_RE.sub(r"\1", clean)
    return _WHITESPACE_RE.sub(" ", clean).strip()


def clean_sentence(sentence: str) -> str:
    sentence = _DOUBLE_QUOTED_RE.sub(r" \1 ", sentence)
    sentence = _PARENTHESIZED_RE.sub(r" \1 ", sentence)
    sentence = _STRAY_QUOTE_RE.sub(" ", sentence)
    return _WHITESPACE_RE.sub(" ", sentence).strip()


def is_dialogue(sentence: str, lookahead: int = 10) -> bool:
    return bool(_DIALOGUE_OPEN_RE.search(sentence.strip()[:lookahead]))


def split_sentences(text: str) -> list[str]:
    """Split on terminal punctuation, keeping any unterminated tail as its own sentence."""
    if not text.strip():
        return []
    sentences = []
    end = 0
    for m in _SENTENCE_RE.finditer(text):
        sentences.append(m.group(0).strip())
        end = m.end()
    tail = text[end:].strip()
    if tail:
        sentences.append(tail)
    return [s for s in sentences if s]


def normalize_sentences(
    raw_text: str,
    stripped_tags: Iterable[str] = DEFAULT_STRIPPED_TAGS,
    dialogue_lookahead: int = 10,
) -> list[Sentence]:
    out = []
    for sentence in split_sentences(strip_markup(raw_text, stripped_tags)):
        clean = clean_sentence(sentence)
        if clean:
            out.append(Sentence(clean, is_dialogue(sentence, dialogue_lookahead)))
    return out


def normalize(raw_text: str, stripped_tags: Iterable[str] = DEFAULT_STRIPPED_TAGS) -> list[str]:
    """Return the cleaned sentences of a message. Empty input yields ``[]``."""
    return [s.text for s in normalize_sentences(raw_text, stripped_tags)]


def tokenize(sentence: str) -> list[str]:
    tokens = (_PUNCT_STRIP_RE.sub("", t).lower() for t in sentence.split())
    return [t for t in tokens if t]


def generate_ngrams(words: list[str], n: int) -> list[str]:
    if len(words) < n:
        return []
    return [" ".join(words[i : i + n]) for i in range(len(words) - n + 1)]
