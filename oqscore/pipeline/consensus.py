"""Consensus aggregation across provider judgments.

Turns several :class:`ModelScore` objects into one bounded daily movement:
  1. Weighted mean of suggested deltas (weights renormalised to responders)
  2. Dampening: clamp ±raw cap → × dampening → clamp ±daily cap → 1 decimal
  3. Agreement class from the spread of suggested deltas
  4. Signal merge, pillar merge and narrative synthesis
"""

import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from oqscore.core.config import ScoringPolicy
from oqscore.core.numbers import clamp, format_signed, round_half_up
from oqscore.models.datatypes import (
    AGREE,
    DISAGREE,
    MOSTLY_AGREE,
    PARTIAL,
    PILLARS,
    ModelScore,
    Signal,
)
from oqscore.providers.llm import display_name

T = TypeVar("T")
R = TypeVar("R")

SIGNAL_KEY_CHARS = 50
FIRST_SENTENCE_FALLBACK_CHARS = 120

AGREE_BELOW = 1.0
MOSTLY_AGREE_UP_TO = 2.5


def pick_preferred(
    items: Iterable[T],
    predicate: Callable[[T], bool],
    extractor: Callable[[T], Optional[R]],
) -> Optional[R]:
    """Return ``extractor(item)`` for the preferred item, else the first available.

    An item is available when ``extractor`` yields a truthy value. The first
    available item matching ``predicate`` wins; otherwise the first available
    item in order; otherwise ``None``.
    """
    fallback: Optional[R] = None
    for item in items:
        value = extractor(item)
        if not value:
            continue
        if predicate(item):
            return value
        if fallback is None:
            fallback = value
    return fallback


# ── Delta ─────────────────────────────────────────────────────────────────────

def consensus_delta(scores: Sequence[ModelScore], policy: Optional[ScoringPolicy] = None) -> float:
    """Weighted mean of suggested deltas; a lone provider's delta is returned raw."""
    policy = policy or ScoringPolicy()
    if not scores:
        return 0.0
    if len(scores) == 1:
        return scores[0].suggested_delta

    total = 0.0
    weight_sum = 0.0
    for score in scores:
        weight = policy.weights.get(score.provider, policy.default_weight)
        total += score.suggested_delta * weight
        weight_sum += weight
    if weight_sum == 0:
        return 0.0
    return total / weight_sum


def dampen(delta: float, policy: Optional[ScoringPolicy] = None) -> float:
    """Apply the daily-movement cap: ``5 -> 1.2``, ``2 -> 0.6``, ``0 -> 0``."""
    policy = policy or ScoringPolicy()
    capped = clamp(delta, -policy.raw_delta_cap, policy.raw_delta_cap)
    scaled = clamp(capped * policy.dampening, -policy.daily_cap, policy.daily_cap)
    return round_half_up(scaled, 1)


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ── Agreement ─────────────────────────────────────────────────────────────────

def model_agreement(scores: Sequence[ModelScore]) -> Tuple[str, float]:
    """Classify consensus strength.

    Returns:
        ``(agreement, spread)``. The class is decided on the unrounded
        ``max - min`` of suggested deltas; the reported spread is rounded to
        1 decimal. Fewer than two providers is ``partial`` with spread ``0``.
        Both 1.0 and 2.5 classify as ``mostly_agree``.
    """
    if len(scores) < 2:
        return PARTIAL, 0.0

    deltas = [s.suggested_delta for s in scores]
    # 9 digits strips float noise only
    raw = round(max(deltas) - min(deltas), 9)
    spread = round_half_up(raw, 1)

    if raw < AGREE_BELOW:
        return AGREE, spread
    if raw <= MOSTLY_AGREE_UP_TO:
        return MOSTLY_AGREE, spread
    return DISAGREE, spread


# ── Merging ───────────────────────────────────────────────────────────────────

def merge_signals(scores: Sequence[ModelScore]) -> List[Signal]:
    """Union of all providers' signals, first occurrence wins, by |impact| desc."""
    seen = set()
    merged: List[Signal] = []
    for score in scores:
        for signal in score.top_signals:
            key = signal.text.lower()[:SIGNAL_KEY_CHARS]
            if key in seen:
                continue
            seen.add(key)
            merged.append(signal)
    # sorted() is stable, so equal impacts keep first-seen order
    return sorted(merged, key=lambda s: abs(s.impact), reverse=True)


def merge_pillar_scores(scores: Sequence[ModelScore]) -> Dict[str, float]:
    if not scores:
        return {pillar: 0.0 for pillar in PILLARS}
    return {
        pillar: round_half_up(mean([s.pillar_scores.get(pillar, 0.0) for s in scores]), 1)
        for pillar in PILLARS
    }


# ── Narrative ─────────────────────────────────────────────────────────────────

_SENTENCE_END_RE = re.compile(r"[.!?](?=\s|$)")

ABBREVIATIONS = {
    "e.g", "i.e", "vs", "etc", "approx", "est", "inc", "ltd", "co", "corp",
    "mr", "mrs", "ms", "dr", "jr", "sr", "st", "no", "u.s", "u.k", "a.i",
}


def first_sentence(text: str) -> str:
    """First sentence of ``text``, ignoring decimal points and abbreviations."""
    for match in _SENTENCE_END_RE.finditer(text):
        if match.group() == ".":
            words = text[:match.start()].split()
            last_word = words[-1].lstrip("(\"'").lower() if words else ""
            if last_word in ABBREVIATIONS:
                continue
        return text[:match.end()].strip()
    return text[:FIRST_SENTENCE_FALLBACK_CHARS].strip()


def delta_verb(delta: float) -> str:
    if delta > 0.5:
        return "upgraded the score"
    if delta < -0.5:
        return "downgraded the score"
    return "held steady"


def synthesize_analysis(
    scores: Sequence[ModelScore], agreement: str, primary_provider: str = "anthropic"
) -> str:
    """Build the published analysis paragraph.

    One provider: its analysis verbatim. Disagreement: one clause per
    provider. Otherwise the primary provider's analysis, else the first.
    """
    if not scores:
        return ""
    if len(scores) == 1:
        return scores[0].analysis

    if agreement == DISAGREE:
        clauses = [
            f"{display_name(s.provider, s.model)} {delta_verb(s.suggested_delta)} "
            f"({format_signed(s.suggested_delta)}), citing: {first_sentence(s.analysis)}"
            for s in scores
        ]
        return " ".join(clauses)

    preferred = pick_preferred(scores, lambda s: s.provider == primary_provider, lambda s: s.analysis)
    return preferred or scores[0].analysis


def merge_capability_gap(scores: Sequence[ModelScore]) -> Optional[str]:
    notes = [s.capability_gap_note for s in scores if s.capability_gap_note]
    return " ".join(notes) or None
