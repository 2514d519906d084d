"""Scoring path: Evidence Packet → provider fan-out → consensus → ScoreUpdate."""

from typing import List, Optional, Sequence

from oqscore.core.config import RetryPolicy, ScoringPolicy
from oqscore.core.errors import AllProvidersFailedError
from oqscore.core.logger import logger
from oqscore.core.numbers import clamp, round_half_up
from oqscore.models.datatypes import ProviderResponse, ScoreUpdate, UsageEntry
from oqscore.pipeline.caller import call_providers
from oqscore.pipeline.consensus import (
    consensus_delta,
    dampen,
    mean,
    merge_capability_gap,
    merge_pillar_scores,
    merge_signals,
    model_agreement,
    pick_preferred,
    synthesize_analysis,
)
from oqscore.pipeline.prompt import PromptContext, build_scoring_prompt, hash_prompt
from oqscore.providers.base import ScoringProvider


def run_scoring(
    ctx: PromptContext,
    providers: Sequence[ScoringProvider],
    policy: Optional[ScoringPolicy] = None,
    retry: Optional[RetryPolicy] = None,
) -> ScoreUpdate:
    """Score one day's evidence.

    Args:
        ctx: Evidence context; its current scores are the previous day's.
        providers: Enabled scoring providers.
        policy: Scoring knobs (weights, dampening, bounds).
        retry: Per-provider attempt budget.

    Returns:
        The aggregated :class:`ScoreUpdate`, including the prompt and its hash.

    Raises:
        AllProvidersFailedError: No provider produced a valid reply.
    """
    policy = policy or ScoringPolicy()
    prompt = build_scoring_prompt(ctx)
    prompt_hash = hash_prompt(prompt)
    logger.info(
        f"Scorer: prompt {prompt_hash} ({len(prompt)} chars) -> {len(providers)} provider(s)"
    )

    responses, usages = call_providers(providers, prompt, retry)
    if not responses:
        raise AllProvidersFailedError(
            f"All AI models failed, cannot generate score ({len(providers)} tried)",
            usages=usages,
        )

    return build_score_update(ctx, responses, usages, prompt, prompt_hash, policy)


def _next_score(previous: float, delta: float, policy: ScoringPolicy) -> float:
    return round_half_up(clamp(previous + delta, policy.score_floor, policy.score_ceiling))


def build_score_update(
    ctx: PromptContext,
    responses: List[ProviderResponse],
    usages: List[UsageEntry],
    prompt: str,
    prompt_hash: str,
    policy: Optional[ScoringPolicy] = None,
) -> ScoreUpdate:
    """Aggregate validated provider responses into a :class:`ScoreUpdate`."""
    policy = policy or ScoringPolicy()
    scores = [r.score for r in responses]

    delta = dampen(consensus_delta(scores, policy), policy)
    technical_delta = dampen(mean([s.technical_delta for s in scores]), policy)
    economic_delta = dampen(mean([s.economic_delta for s in scores]), policy)

    agreement, spread = model_agreement(scores)

    def is_primary(score):
        return score.provider == policy.primary_provider

    update = ScoreUpdate(
        score=_next_score(ctx.current_score, delta, policy),
        score_technical=_next_score(ctx.technical_score, technical_delta, policy),
        score_economic=_next_score(ctx.economic_score, economic_delta, policy),
        delta=delta,
        analysis=synthesize_analysis(scores, agreement, policy.primary_provider),
        signals=merge_signals(scores),
        pillar_scores=merge_pillar_scores(scores),
        model_scores=scores,
        model_agreement=agreement,
        model_spread=spread,
        prompt_hash=prompt_hash,
        prompt_text=prompt,
        usages=list(usages),
        raw_responses={r.score.provider: r.raw_text for r in responses},
        delta_explanation=pick_preferred(scores, is_primary, lambda s: s.delta_explanation),
        capability_gap=merge_capability_gap(scores),
        sanity_harness_note=pick_preferred(scores, is_primary, lambda s: s.sanity_harness_note),
        economic_note=pick_preferred(scores, is_primary, lambda s: s.economic_note),
        labour_note=pick_preferred(scores, is_primary, lambda s: s.labour_note),
        model_summary=pick_preferred(scores, is_primary, lambda s: s.model_summary),
    )

    logger.info(
        f"Scorer: {ctx.current_score} -> {update.score} (delta {delta}), "
        f"agreement={agreement} spread={spread} from {len(scores)} model(s)"
    )
    return update
