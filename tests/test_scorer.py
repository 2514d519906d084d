import pytest

from oqscore.core.config import ScoringPolicy
from oqscore.core.errors import AllProvidersFailedError, ProviderError
from oqscore.models.datatypes import AGREE, PARTIAL
from oqscore.pipeline.prompt import PromptContext, build_scoring_prompt, hash_prompt
from oqscore.pipeline.scorer import run_scoring

from conftest import FakeProvider, reply_json


def context(score=32, technical=25, economic=38) -> PromptContext:
    return PromptContext(current_score=score, technical_score=technical, economic_score=economic, history="")


def test_single_provider_moves_score_by_dampened_delta():
    update = run_scoring(context(), [FakeProvider("anthropic", [reply_json(delta=2)])])
    assert update.delta == 0.6
    assert update.score == 33
    assert update.score_technical == 26
    assert update.score_economic == 39
    assert update.model_agreement == PARTIAL
    assert update.model_spread == 0
    assert update.analysis == "Agents shipped more code. Hiring held."


def test_prompt_and_hash_are_recorded():
    ctx = context()
    update = run_scoring(ctx, [FakeProvider("anthropic", [reply_json()])])
    assert update.prompt_text == build_scoring_prompt(ctx)
    assert update.prompt_hash == hash_prompt(update.prompt_text)


def test_score_is_clamped_to_bounds():
    update = run_scoring(context(score=94.5), [FakeProvider("anthropic", [reply_json(delta=5)])])
    assert update.delta == 1.2
    assert update.score == 95

    update = run_scoring(context(score=5), [FakeProvider("anthropic", [reply_json(delta=-5)])])
    assert update.score == 5


def test_notes_prefer_primary_provider():
    providers = [
        FakeProvider("openai", [reply_json(delta=1, delta_explanation="GPT reason", labour_note="GPT labour",
                                           capability_gap_note="Pro up.")]),
        FakeProvider("anthropic", [reply_json(delta=1.5, delta_explanation="Claude reason",
                                              capability_gap_note="Verified flat.")]),
    ]
    update = run_scoring(context(), providers)
    assert update.delta_explanation == "Claude reason"
    assert update.labour_note == "GPT labour"
    assert update.capability_gap == "Pro up. Verified flat."
    assert update.model_agreement == AGREE
    assert update.model_spread == 0.5
    assert set(update.raw_responses) == {"openai", "anthropic"}
    assert [s.provider for s in update.model_scores] == ["openai", "anthropic"]


def test_partial_failure_still_scores():
    providers = [
        FakeProvider("anthropic", [ProviderError("overloaded")]),
        FakeProvider("openai", [reply_json(delta=-2)]),
    ]
    update = run_scoring(context(), providers)
    assert update.delta == -0.6
    assert update.score == 31
    assert [u.status for u in update.usages] == ["failed", "success"]


def test_all_providers_failing_raises_with_usages():
    providers = [FakeProvider("anthropic", [ProviderError("down")]), FakeProvider("openai", ["not json"])]
    with pytest.raises(AllProvidersFailedError, match="All AI models failed") as excinfo:
        run_scoring(context(), providers)
    assert [u.status for u in excinfo.value.usages] == ["failed", "failed"]
    assert providers[0].calls == 3


def test_policy_knobs_apply():
    policy = ScoringPolicy(dampening=0.5, daily_cap=2.0)
    update = run_scoring(context(), [FakeProvider("anthropic", [reply_json(delta=3)])], policy)
    assert update.delta == 1.5
    assert update.score == 34
