"""Model reply validator: raw completion text → :class:`ModelScore`.

Checks:
  1. Body parses as a JSON object once ``` fences are stripped
  2. ``pillar_scores`` is an object, ``suggested_delta`` is a number and
     ``analysis`` is non-empty; anything else rejects the whole reply
  3. Signal URLs are kept only for http(s); other schemes are dropped
  4. Free-text notes are truncated; missing optional fields default to
     empty/zero

A rejected reply raises :class:`InvalidResponseError`, which the caller
treats exactly like a failed HTTP attempt.
"""

import json
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from oqscore.core.errors import InvalidResponseError
from oqscore.core.numbers import clamp
from oqscore.models.datatypes import PILLARS, ModelScore, Signal

DELTA_EXPLANATION_CHARS = 140
NOTE_CHARS = 300
MODEL_SUMMARY_CHARS = 200
SIGNAL_TEXT_CHARS = 200

SCORE_BOUND = 5.0
DIRECTIONS = ("up", "down", "neutral")

_FENCE_OPEN_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def strip_json_fences(text: str) -> str:
    """Remove markdown code fences around a JSON body."""
    return _FENCE_OPEN_RE.sub("", text).replace("```", "").strip()


def sanitize_url(url: Any) -> Optional[str]:
    """Return ``url`` when it is an absolute http(s) URL, else ``None``."""
    if not isinstance(url, str):
        return None
    parsed = urlparse(url.strip())
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        return None
    return url.strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _bounded(value: Any) -> float:
    if not _is_number(value):
        try:
            value = float(value)
        except (TypeError, ValueError):
            return 0.0
    return clamp(float(value), -SCORE_BOUND, SCORE_BOUND)


def _truncate(value: Any, limit: int) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()[:limit]


def _parse_signals(raw: Any) -> List[Signal]:
    if not isinstance(raw, list):
        return []
    signals = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        direction = str(item.get("direction", "neutral")).lower()
        signals.append(Signal(
            text=text.strip()[:SIGNAL_TEXT_CHARS],
            direction=direction if direction in DIRECTIONS else "neutral",
            source=str(item.get("source") or "Unknown"),
            impact=_bounded(item.get("impact", 0)),
            url=sanitize_url(item.get("url")),
        ))
    return signals


def _parse_pillars(raw: Dict[str, Any]) -> Dict[str, float]:
    return {pillar: _bounded(raw.get(pillar, 0)) for pillar in PILLARS}


def parse_model_response(text: str, provider: str, model: str) -> ModelScore:
    """Parse and validate one provider's completion.

    Args:
        text: Raw completion text, optionally wrapped in ```json fences.
        provider: Provider identity (``"anthropic"``, ``"openai"``, ``"gemini"``).
        model: Model identifier, used in the error message.

    Returns:
        A frozen :class:`ModelScore`.

    Raises:
        InvalidResponseError: Unparsable JSON or a missing required field.
    """
    try:
        parsed = json.loads(strip_json_fences(text))
    except json.JSONDecodeError as exc:
        raise InvalidResponseError(f"Invalid JSON from {model}: {exc}") from exc

    if (
        not isinstance(parsed, dict)
        or not isinstance(parsed.get("pillar_scores"), dict)
        or not _is_number(parsed.get("suggested_delta"))
        or not isinstance(parsed.get("analysis"), str)
        or not parsed["analysis"].strip()
    ):
        raise InvalidResponseError(f"Invalid response structure from {model}")

    return ModelScore(
        provider=provider,
        model=model,
        pillar_scores=_parse_pillars(parsed["pillar_scores"]),
        technical_delta=_bounded(parsed.get("technical_delta", 0)),
        economic_delta=_bounded(parsed.get("economic_delta", 0)),
        suggested_delta=_bounded(parsed["suggested_delta"]),
        analysis=parsed["analysis"].strip(),
        top_signals=_parse_signals(parsed.get("top_signals")),
        capability_gap_note=_truncate(parsed.get("capability_gap_note"), NOTE_CHARS),
        delta_explanation=_truncate(parsed.get("delta_explanation"), DELTA_EXPLANATION_CHARS),
        sanity_harness_note=_truncate(parsed.get("sanity_harness_note"), NOTE_CHARS),
        economic_note=_truncate(parsed.get("economic_note"), NOTE_CHARS),
        labour_note=_truncate(parsed.get("labour_note"), NOTE_CHARS),
        model_summary=_truncate(parsed.get("model_summary"), MODEL_SUMMARY_CHARS),
    )
