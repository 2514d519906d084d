import json
import os
import tempfile
from datetime import datetime, timezone
from typing import List, Optional, Union

# Keep test runs from writing into ./output
os.environ.setdefault("OQ_LOG_FILE", os.path.join(tempfile.gettempdir(), "oqscore-tests.log"))

import pytest  # noqa: E402

from oqscore.core.store import ScoreStore  # noqa: E402
from oqscore.models.datatypes import (  # noqa: E402
    PILLARS,
    Article,
    ModelScore,
    ProviderReply,
    ScoreSnapshot,
    Signal,
)
from oqscore.providers.base import ScoringProvider  # noqa: E402

NOW = datetime(2026, 2, 14, 12, 0, tzinfo=timezone.utc)
TODAY = "2026-02-14"


def reply_json(delta: float = 2.0, analysis: str = "Agents shipped more code. Hiring held.", **overrides) -> str:
    body = {
        "pillar_scores": {pillar: 1 for pillar in PILLARS},
        "technical_delta": delta,
        "economic_delta": delta,
        "suggested_delta": delta,
        "analysis": analysis,
        "top_signals": [
            {"text": "SWE-bench Pro climbs to 46%", "direction": "up", "source": "Scale",
             "impact": 2, "url": "https://scale.com/leaderboard"},
        ],
        "delta_explanation": "Pro benchmark gains",
        "model_summary": "Models agree capability is rising slowly.",
    }
    body.update(overrides)
    return json.dumps(body)


class FakeProvider(ScoringProvider):
    """Returns queued replies in order; an Exception entry is raised instead."""

    def __init__(self, name: str, replies: List[Union[str, Exception]], model: Optional[str] = None) -> None:
        self.name = name
        self.model = model or f"{name}-test"
        self.replies = list(replies)
        self.calls = 0

    def complete(self, prompt: str) -> ProviderReply:
        self.calls += 1
        reply = self.replies[min(self.calls, len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        return ProviderReply(reply, input_tokens=100, output_tokens=50, total_tokens=150)


def model_score(
    provider: str = "anthropic",
    delta: float = 1.0,
    analysis: str = "Steady progress.",
    signals: Optional[List[Signal]] = None,
    **notes,
) -> ModelScore:
    return ModelScore(
        provider=provider,
        model=f"{provider}-test",
        pillar_scores={pillar: 0.0 for pillar in PILLARS},
        technical_delta=delta,
        economic_delta=delta,
        suggested_delta=delta,
        analysis=analysis,
        top_signals=signals or [],
        **notes,
    )


def snapshot(date: str, score: float = 32, delta: float = 0, is_decay: bool = False, **fields) -> ScoreSnapshot:
    values = dict(
        date=date,
        score=score,
        score_technical=25,
        score_economic=38,
        delta=delta,
        analysis="stored",
        is_decay=is_decay,
        prompt_hash="decay" if is_decay else "abc123abc123abc1",
    )
    values.update(fields)
    return ScoreSnapshot(**values)


def article(url: str, pillar: str = "capability", fetched_at: str = "2026-02-14T06:00:00Z", **fields) -> Article:
    values = dict(
        id="",
        title=f"Article at {url}",
        url=url,
        source="Test Source",
        pillar=pillar,
        summary="Summary text.",
        published_at=fetched_at,
        fetched_at=fetched_at,
    )
    values.update(fields)
    return Article(**values)


@pytest.fixture
def store(tmp_path):
    return ScoreStore(str(tmp_path / "oq.db"))


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Record retry delays instead of sleeping."""
    delays = []
    monkeypatch.setattr("oqscore.core.retry.time.sleep", lambda seconds: delays.append(seconds))
    return delays
