"""Concurrent provider fan-out with per-provider retry and usage telemetry.

Every provider runs in its own worker thread and is retried independently, so
one slow or failing provider never blocks another. The call returns once all
providers have settled (succeeded or exhausted their attempts).
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from oqscore.core.config import RetryPolicy
from oqscore.core.logger import logger
from oqscore.core.retry import call_with_retries, exponential_backoff
from oqscore.models.datatypes import ModelScore, ProviderReply, ProviderResponse, UsageEntry
from oqscore.pipeline.validator import parse_model_response
from oqscore.providers.base import ScoringProvider

ERROR_CHARS = 500


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def call_provider(
    provider: ScoringProvider,
    prompt: str,
    retry: Optional[RetryPolicy] = None,
) -> Tuple[Optional[ProviderResponse], UsageEntry]:
    """Call one provider until it returns a valid reply or runs out of attempts.

    Validation runs inside each attempt, so a schema-invalid reply is retried
    like a transport failure.

    Returns:
        ``(response, usage)``. ``response`` is ``None`` on exhaustion, in which
        case ``usage`` is a synthetic ``failed`` entry carrying the last error.
    """
    retry = retry or RetryPolicy()
    attempts = 0
    started = time.monotonic()

    def attempt() -> Tuple[ProviderReply, ModelScore, int]:
        nonlocal attempts
        attempts += 1
        attempt_start = time.monotonic()
        reply = provider.complete(prompt)
        latency = _elapsed_ms(attempt_start)
        return reply, parse_model_response(reply.text, provider.name, provider.model), latency

    try:
        reply, score, latency = call_with_retries(
            attempt,
            max_attempts=retry.max_attempts,
            backoff=exponential_backoff(retry.base_delay),
            label=provider.name,
        )
    except Exception as exc:
        return None, UsageEntry(
            provider=provider.name,
            model=provider.model,
            status="failed",
            latency_ms=_elapsed_ms(started),
            attempts=attempts,
            error=str(exc)[:ERROR_CHARS],
        )

    usage = UsageEntry(
        provider=provider.name,
        model=provider.model,
        status="success",
        latency_ms=latency,
        attempts=attempts,
        input_tokens=reply.input_tokens,
        output_tokens=reply.output_tokens,
        total_tokens=reply.total_tokens,
    )
    logger.info(
        f"Caller: {provider.name} ({provider.model}) ok in {latency}ms "
        f"after {attempts} attempt(s), delta={score.suggested_delta}"
    )
    return ProviderResponse(score=score, raw_text=reply.text, usage=usage), usage


def call_providers(
    providers: Sequence[ScoringProvider],
    prompt: str,
    retry: Optional[RetryPolicy] = None,
) -> Tuple[List[ProviderResponse], List[UsageEntry]]:
    """Fan ``prompt`` out to every provider and wait for all of them.

    Returns:
        Successful responses and one usage entry per provider, both in the
        order ``providers`` was given.
    """
    if not providers:
        return [], []

    with ThreadPoolExecutor(max_workers=len(providers)) as ex:
        futs = [ex.submit(call_provider, p, prompt, retry) for p in providers]
        settled = [fut.result() for fut in futs]

    responses = [response for response, _ in settled if response is not None]
    usages = [usage for _, usage in settled]
    logger.info(f"Caller: {len(responses)}/{len(providers)} providers responded")
    return responses, usages
