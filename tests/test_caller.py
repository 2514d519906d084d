import logging
import threading

import pytest

from oqscore.core.config import RetryPolicy
from oqscore.core.errors import ProviderError
from oqscore.core.retry import call_with_retries, with_retries
from oqscore.models.datatypes import ProviderReply
from oqscore.pipeline.caller import call_provider, call_providers
from oqscore.providers.base import ScoringProvider

from conftest import FakeProvider, reply_json


# ── Retry combinator ──────────────────────────────────────────────────────────

def test_call_with_retries_backs_off_exponentially(sleeps):
    outcomes = [RuntimeError("boom"), RuntimeError("boom"), "ok"]

    def flaky():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert call_with_retries(flaky, max_attempts=3) == "ok"
    assert sleeps == [1.0, 2.0]


def test_call_with_retries_raises_last_error(sleeps, caplog):
    calls = []

    def always_fails():
        calls.append(1)
        raise ValueError(f"failure {len(calls)}")

    with caplog.at_level(logging.WARNING, logger="oqscore"):
        with pytest.raises(ValueError, match="failure 3"):
            call_with_retries(always_fails, max_attempts=3, label="fetch")

    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]
    levels = [r.levelname for r in caplog.records if r.name == "oqscore"]
    assert levels == ["WARNING", "WARNING", "ERROR"]


def test_with_retries_decorator(sleeps):
    state = {"calls": 0}

    @with_retries(max_attempts=2, initial_delay=0.5)
    def once_flaky(x):
        state["calls"] += 1
        if state["calls"] == 1:
            raise ConnectionError("reset")
        return x * 2

    assert once_flaky(21) == 42
    assert sleeps == [0.5]


# ── Provider calls ────────────────────────────────────────────────────────────

def test_first_attempt_success():
    provider = FakeProvider("anthropic", [reply_json(delta=1)])
    response, usage = call_provider(provider, "prompt")
    assert response.score.suggested_delta == 1
    assert response.raw_text == reply_json(delta=1)
    assert usage.status == "success"
    assert usage.attempts == 1
    assert usage.total_tokens == 150
    assert usage.error is None


def test_transient_failures_are_retried(sleeps):
    provider = FakeProvider("openai", [ProviderError("HTTP 500"), ProviderError("HTTP 529"), reply_json()])
    response, usage = call_provider(provider, "prompt")
    assert response is not None
    assert usage.attempts == 3
    assert provider.calls == 3
    assert sleeps == [1.0, 2.0]


def test_invalid_reply_counts_as_failed_attempt():
    provider = FakeProvider("gemini", ["Sure! Here is my answer.", reply_json(delta=-1)])
    response, usage = call_provider(provider, "prompt")
    assert response.score.suggested_delta == -1
    assert usage.attempts == 2


def test_exhausted_provider_yields_failed_usage(sleeps):
    provider = FakeProvider("openai", [ProviderError("gpt-4o error: HTTP 503: " + "x" * 1000)])
    response, usage = call_provider(provider, "prompt", RetryPolicy(max_attempts=3, base_delay=2.0))
    assert response is None
    assert usage.status == "failed"
    assert usage.attempts == 3
    assert usage.model == "openai-test"
    assert usage.error.startswith("gpt-4o error: HTTP 503")
    assert len(usage.error) == 500
    assert sleeps == [2.0, 4.0]


def test_fan_out_keeps_provider_order():
    providers = [
        FakeProvider("anthropic", [reply_json(delta=2)]),
        FakeProvider("openai", [ProviderError("down")]),
        FakeProvider("gemini", [reply_json(delta=-1)]),
    ]
    responses, usages = call_providers(providers, "prompt")
    assert [r.score.provider for r in responses] == ["anthropic", "gemini"]
    assert [u.provider for u in usages] == ["anthropic", "openai", "gemini"]
    assert [u.status for u in usages] == ["success", "failed", "success"]


def test_fan_out_with_no_providers():
    assert call_providers([], "prompt") == ([], [])


class _GatedProvider(ScoringProvider):
    """Completes only after its partner has started."""

    def __init__(self, name, started: threading.Event, partner_started: threading.Event):
        self.name = name
        self.model = f"{name}-test"
        self.started = started
        self.partner_started = partner_started

    def complete(self, prompt):
        self.started.set()
        if not self.partner_started.wait(timeout=5):
            raise ProviderError("partner never started")
        return ProviderReply(reply_json())


def test_providers_run_concurrently():
    a_started, b_started = threading.Event(), threading.Event()
    providers = [
        _GatedProvider("anthropic", a_started, b_started),
        _GatedProvider("openai", b_started, a_started),
    ]
    responses, usages = call_providers(providers, "prompt", RetryPolicy(max_attempts=1))
    assert len(responses) == 2
    assert all(u.attempts == 1 for u in usages)
