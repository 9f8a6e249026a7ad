"""Heuristic quality metrics for generated response text."""

from __future__ import annotations

import re

from services.schemas import ResponseMetrics


SENTENCE_SPLIT = re.compile(r"[.!?]+")
PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
COMPLETE_RESPONSE_WORDS = 50


def _clip(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return round(max(low, min(high, value)), 2)


def calculate_metrics(text: str) -> ResponseMetrics:
    """Score response text. Safe for empty and degenerate input; bounded fields stay in [0, 100]."""
    words = (text or "").split()
    word_count = len(words)
    denominator = max(word_count, 1)
    sentences = [part for part in SENTENCE_SPLIT.split(text or "") if part.strip()]
    paragraphs = [part for part in PARAGRAPH_SPLIT.split(text or "") if part.strip()]
    unique_words = {word.lower() for word in words}

    if sentences:
        structure = 80.0 + min(20.0, 5.0 * len(paragraphs))
    else:
        structure = 50.0

    if word_count > COMPLETE_RESPONSE_WORDS:
        completeness = 90.0 + min(10.0, (word_count - COMPLETE_RESPONSE_WORDS) / 5.0)
    else:
        completeness = word_count / COMPLETE_RESPONSE_WORDS * 90.0

    return ResponseMetrics(
        length=word_count,
        creativity=_clip(len(unique_words) / denominator * 150.0),
        coherence=_clip(len(sentences) / denominator * 400.0),
        structure=_clip(structure),
        completeness=_clip(completeness),
        lexical_diversity=_clip(len(unique_words) / denominator * 100.0),
    )
