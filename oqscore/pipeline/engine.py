"""Daily update orchestrator: idempotency, decay and the scored path.

Flow per calendar day (UTC):
  1. Existing snapshot   → returned unchanged, ``already_exists=True``
  2. No unscored articles → decay path (sentinel prompt hash, no provider calls)
  3. Otherwise           → Evidence Packet → providers → consensus → persist

All state is loaded from the store once per invocation into an
:class:`EvidenceState` and passed explicitly to the pure helpers, so decay,
context building and data-quality flags are testable without a database.
The scheduled tick (:meth:`DailyUpdater.run_cron_tick`) wraps a fetch phase
and a score phase and only counts as completed when both succeed.
"""

import os
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from oqscore.core.config import RetryPolicy, ScoringPolicy
from oqscore.core.errors import AllProvidersFailedError
from oqscore.core.funding_utils import extract_funding_event, summarize_funding
from oqscore.core.logger import logger
from oqscore.core.numbers import clamp, round_half_up
from oqscore.core.store import ScoreStore
from oqscore.models.datatypes import (
    DECAY_HASH,
    NO_ARTICLES_HASH,
    PARTIAL,
    PILLARS,
    Article,
    CronRun,
    DailyResult,
    ExternalDataSnapshot,
    FundingSummary,
    ScoreSnapshot,
    ScoreUpdate,
    empty_pillar_scores,
)
from oqscore.pipeline.prompt import (
    PromptContext,
    build_scoring_prompt,
    format_history,
    group_articles_by_pillar,
    hash_prompt,
    sanity_harness_context,
    swe_bench_context,
)
from oqscore.pipeline.scorer import run_scoring
from oqscore.providers.base import LeaderboardProvider, ScoringProvider
from oqscore.providers.feeds import FeedSource, fetch_articles, sources_from_config
from oqscore.providers.fred import FREDProvider, labour_data_from_dict, labour_data_to_dict
from oqscore.providers.leaderboards import (
    SANITY_HARNESS_URL,
    SCALE_PRO_PRIVATE_URL,
    SCALE_PRO_PUBLIC_URL,
    SWEBENCH_URL,
    SanityHarnessLeaderboard,
    SWEBenchLeaderboard,
    sanity_harness_from_dict,
    swebench_from_dict,
)
from oqscore.providers.llm import build_providers

SWE_BENCH_KEY = "swe_bench"
SANITY_HARNESS_KEY = "sanity_harness"
FRED_LABOUR_KEY = "fred_labour"
EXTERNAL_KEYS = (SWE_BENCH_KEY, SANITY_HARNESS_KEY, FRED_LABOUR_KEY)

ISO_FMT = "%Y-%m-%dT%H:%M:%SZ"


def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime(ISO_FMT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EvidenceState:
    """Everything one invocation reads from the store, loaded up front."""
    now: datetime
    previous: Optional[ScoreSnapshot] = None
    last_evidence: Optional[ScoreSnapshot] = None
    first: Optional[ScoreSnapshot] = None
    history: List[ScoreSnapshot] = field(default_factory=list)
    articles: List[Article] = field(default_factory=list)
    external: Dict[str, List[ExternalDataSnapshot]] = field(default_factory=dict)
    funding: Optional[FundingSummary] = None

    @property
    def today(self) -> str:
        return self.now.astimezone(timezone.utc).strftime("%Y-%m-%d")


# ── Pure helpers ──────────────────────────────────────────────────────────────

def days_between(earlier: str, later: str) -> int:
    """Whole days between two ``YYYY-MM-DD`` (or ISO timestamp) strings."""
    return (date.fromisoformat(later[:10]) - date.fromisoformat(earlier[:10])).days


def decay_step(previous_score: float, days_since_evidence: int, policy: ScoringPolicy) -> float:
    """Return the decay delta: one ``decay_rate`` step toward the target, or 0.

    No step is taken before ``decay_threshold_days`` or when the score already
    sits on the target; a step never overshoots the target.
    """
    if days_since_evidence < policy.decay_threshold_days:
        return 0.0
    gap = policy.decay_target - previous_score
    if gap == 0:
        return 0.0
    step = min(policy.decay_rate, abs(gap))
    return round_half_up(step if gap > 0 else -step, 1)


def previous_scores(state: EvidenceState, policy: ScoringPolicy) -> Tuple[float, float, float]:
    prev = state.previous
    if prev is None:
        return policy.starting_score, policy.starting_technical, policy.starting_economic
    return prev.score, prev.score_technical, prev.score_economic


def build_decay_snapshot(state: EvidenceState, policy: ScoringPolicy) -> ScoreSnapshot:
    """Snapshot for a day without new articles; no provider is consulted."""
    score, technical, economic = previous_scores(state, policy)
    # without any scored day, quiet days run from the first snapshot on record
    reference = state.last_evidence or state.first
    days = days_between(reference.date, state.today) if reference else 0

    delta = decay_step(score, days, policy)
    decaying = days >= policy.decay_threshold_days
    if decaying:
        analysis = (
            f"No significant signals for {days} days. "
            f"Score decaying toward baseline ({policy.decay_target:g})."
        )
    else:
        analysis = "No new signals today."

    return ScoreSnapshot(
        date=state.today,
        score=round_half_up(clamp(score + delta, policy.score_floor, policy.score_ceiling), 1),
        score_technical=technical,
        score_economic=economic,
        delta=delta,
        analysis=analysis,
        pillar_scores=empty_pillar_scores(),
        model_agreement=PARTIAL,
        model_spread=0.0,
        prompt_hash=DECAY_HASH if decaying else NO_ARTICLES_HASH,
        is_decay=True,
        data_quality_flags=["no_articles"],
    )


def _latest_pair(state: EvidenceState, key: str) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    snaps = state.external.get(key) or []
    current = snaps[0].value if snaps else None
    previous = snaps[1].value if len(snaps) > 1 else None
    return current, previous


def build_prompt_context(state: EvidenceState, policy: ScoringPolicy) -> PromptContext:
    """Assemble the Evidence Packet context; unusable external blocks are omitted."""
    score, technical, economic = previous_scores(state, policy)
    ctx = PromptContext(
        current_score=score,
        technical_score=technical,
        economic_score=economic,
        history=format_history(state.history),
        articles_by_pillar=group_articles_by_pillar(state.articles),
    )

    current, previous = _latest_pair(state, SWE_BENCH_KEY)
    if current:
        try:
            ctx.swe_bench = swe_bench_context(
                swebench_from_dict(current), swebench_from_dict(previous) if previous else None
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Engine: unusable {SWE_BENCH_KEY} snapshot omitted: {exc}")

    current, previous = _latest_pair(state, SANITY_HARNESS_KEY)
    if current:
        try:
            ctx.sanity_harness = sanity_harness_context(
                sanity_harness_from_dict(current),
                sanity_harness_from_dict(previous) if previous else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Engine: unusable {SANITY_HARNESS_KEY} snapshot omitted: {exc}")

    current, _ = _latest_pair(state, FRED_LABOUR_KEY)
    if current:
        try:
            ctx.labour = labour_data_from_dict(current)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Engine: unusable {FRED_LABOUR_KEY} snapshot omitted: {exc}")

    if state.funding and state.funding.count:
        ctx.funding = state.funding
    return ctx


def data_quality_flags(
    state: EvidenceState,
    update: ScoreUpdate,
    provider_count: int,
    policy: ScoringPolicy,
) -> List[str]:
    """Annotate conditions that weaken today's score.

    Flags: ``missing:<key>`` / ``stale:<key>`` for external snapshots,
    ``sparse_articles:<n>``, ``sparse_pillars:<n>/5`` and
    ``degraded_consensus:<responded>/<configured>``.
    """
    flags = []
    for key in EXTERNAL_KEYS:
        snaps = state.external.get(key) or []
        if not snaps:
            flags.append(f"missing:{key}")
        elif days_between(snaps[0].fetched_at, state.today) > policy.external_stale_days:
            flags.append(f"stale:{key}")

    if len(state.articles) < policy.min_articles:
        flags.append(f"sparse_articles:{len(state.articles)}")

    populated = len({a.pillar for a in state.articles if a.pillar in PILLARS})
    if populated < policy.min_pillars:
        flags.append(f"sparse_pillars:{populated}/{len(PILLARS)}")

    responded = len(update.model_scores)
    if responded < provider_count:
        flags.append(f"degraded_consensus:{responded}/{provider_count}")
    return flags


def snapshot_from_update(
    state: EvidenceState, update: ScoreUpdate, flags: List[str]
) -> ScoreSnapshot:
    external = {
        key: snaps[0].value for key, snaps in state.external.items() if snaps
    }
    return ScoreSnapshot(
        date=state.today,
        score=update.score,
        score_technical=update.score_technical,
        score_economic=update.score_economic,
        delta=update.delta,
        analysis=update.analysis,
        signals=update.signals,
        pillar_scores=update.pillar_scores,
        model_scores=update.model_scores,
        model_agreement=update.model_agreement,
        model_spread=update.model_spread,
        prompt_hash=update.prompt_hash,
        delta_explanation=update.delta_explanation,
        capability_gap=update.capability_gap,
        external_data=external or None,
        is_decay=False,
        data_quality_flags=flags,
        sanity_harness_note=update.sanity_harness_note,
        economic_note=update.economic_note,
        labour_note=update.labour_note,
        model_summary=update.model_summary,
    )


# ── Orchestrator ──────────────────────────────────────────────────────────────

class DailyUpdater:
    """Runs the daily update against a :class:`ScoreStore`.

    Args:
        store: Persistence layer.
        providers: Enabled scoring providers, in call order.
        policy: Scoring knobs. Defaults to :class:`ScoringPolicy`.
        retry: Attempt budget for providers.
        leaderboards: Leaderboard fetchers for the external phase.
        labour_provider: FRED client, or ``None`` when no key is configured.
        feed_sources: RSS/Atom sources for the article phase.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        store: ScoreStore,
        providers: Sequence[ScoringProvider],
        policy: Optional[ScoringPolicy] = None,
        retry: Optional[RetryPolicy] = None,
        leaderboards: Sequence[LeaderboardProvider] = (),
        labour_provider: Optional[FREDProvider] = None,
        feed_sources: Sequence[FeedSource] = (),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.providers = list(providers)
        self.policy = policy or ScoringPolicy()
        self.retry = retry or RetryPolicy()
        self.leaderboards = list(leaderboards)
        self.labour_provider = labour_provider
        self.feed_sources = list(feed_sources)
        self.clock = clock

    @classmethod
    def from_config(
        cls, config: Dict[str, Any], store: ScoreStore, env: Optional[Mapping[str, str]] = None
    ) -> "DailyUpdater":
        env = os.environ if env is None else env
        retry = RetryPolicy.from_config(config)
        urls = config.get("leaderboards") or {}
        fred_key = env.get("FRED_API_KEY", "")
        return cls(
            store=store,
            providers=build_providers(config, env),
            policy=ScoringPolicy.from_config(config),
            retry=retry,
            leaderboards=[
                SWEBenchLeaderboard(
                    url=urls.get("swebench_url", SWEBENCH_URL),
                    pro_public_url=urls.get("scale_pro_public_url", SCALE_PRO_PUBLIC_URL),
                    pro_private_url=urls.get("scale_pro_private_url", SCALE_PRO_PRIVATE_URL),
                    retry=retry,
                ),
                SanityHarnessLeaderboard(urls.get("sanity_harness_url", SANITY_HARNESS_URL), retry),
            ],
            labour_provider=FREDProvider(fred_key, retry) if fred_key else None,
            feed_sources=sources_from_config(config),
        )

    # ── state ─────────────────────────────────────────────────────────────────

    def load_state(self, now: Optional[datetime] = None) -> EvidenceState:
        now = now or self.clock()
        since = iso(now - timedelta(hours=self.policy.article_lookback_hours))
        funding_since = (now - timedelta(days=self.policy.funding_lookback_days)).strftime("%Y-%m-%d")
        funding = summarize_funding(self.store.recent_funding(funding_since))
        return EvidenceState(
            now=now,
            previous=self.store.latest_snapshot(),
            last_evidence=self.store.latest_evidence_snapshot(),
            first=self.store.earliest_snapshot(),
            history=self.store.history(self.policy.history_days),
            articles=self.store.unscored_articles(since),
            external=self.store.latest_external(EXTERNAL_KEYS),
            funding=funding,
        )

    def preview_prompt(self) -> Tuple[str, str]:
        """Today's Evidence Packet and its hash, without calling providers."""
        prompt = build_scoring_prompt(build_prompt_context(self.load_state(), self.policy))
        return prompt, hash_prompt(prompt)

    # ── score phase ───────────────────────────────────────────────────────────

    def run_daily_update(self) -> DailyResult:
        """Produce today's snapshot once; later calls return it unchanged.

        Raises:
            AllProvidersFailedError: No provider returned a valid reply.
            SnapshotExistsError: Another run stored today's snapshot first.
        """
        now = self.clock()
        today = iso(now)[:10]
        existing = self.store.get_snapshot(today)
        if existing:
            logger.info(f"DailyUpdater: snapshot for {today} already exists (score={existing.score})")
            return DailyResult(existing.score, existing.delta, today, already_exists=True)

        state = self.load_state(now)
        if not state.articles:
            return self._save_decay(state)
        return self._score(state)

    def rescore(self) -> DailyResult:
        """Delete today's snapshot and dependents, then run the scored path."""
        now = self.clock()
        today = iso(now)[:10]
        if self.store.delete_snapshot(today):
            logger.info(f"DailyUpdater: rescoring {today}")
        return self._score(self.load_state(now))

    def _save_decay(self, state: EvidenceState) -> DailyResult:
        snapshot = build_decay_snapshot(state, self.policy)
        self.store.save_snapshot(snapshot, now=iso(state.now))
        logger.info(
            f"DailyUpdater: no new articles, {snapshot.prompt_hash} path "
            f"score={snapshot.score} delta={snapshot.delta}"
        )
        return DailyResult(snapshot.score, snapshot.delta, snapshot.date)

    def _score(self, state: EvidenceState) -> DailyResult:
        logger.info(
            f"DailyUpdater: scoring {state.today} from {len(state.articles)} article(s) "
            f"with {len(self.providers)} provider(s)"
        )
        ctx = build_prompt_context(state, self.policy)
        try:
            update = run_scoring(ctx, self.providers, self.policy, self.retry)
        except AllProvidersFailedError as exc:
            self.store.record_usages(exc.usages)
            logger.error(f"DailyUpdater: {exc}")
            raise

        flags = data_quality_flags(state, update, len(self.providers), self.policy)
        if flags:
            logger.warning(f"DailyUpdater: data quality flags {flags}")
        snapshot = snapshot_from_update(state, update, flags)
        self.store.save_snapshot(
            snapshot, update, article_ids=[a.id for a in state.articles], now=iso(state.now)
        )
        return DailyResult(update.score, update.delta, state.today)

    # ── fetch phase ───────────────────────────────────────────────────────────

    def fetch_feeds(self) -> Dict[str, Any]:
        """Ingest articles and the funding events their headlines announce."""
        fetched_at = iso(self.clock())
        articles, errors = fetch_articles(self.feed_sources, fetched_at)
        inserted = self.store.insert_articles(articles)
        events = [e for e in (extract_funding_event(a) for a in articles if a.pillar == "industry") if e]
        funding = self.store.insert_funding_events(events)
        logger.info(f"DailyUpdater: {inserted} new article(s), {funding} funding event(s), {len(errors)} error(s)")
        return {"fetched": inserted, "funding_events": funding, "errors": errors}

    def fetch_external_data(self) -> Dict[str, str]:
        """Fetch every external source independently.

        Returns:
            ``{key: "ok" | "error: <reason>" | "empty"}``.
        """
        fetched_at = iso(self.clock())
        status: Dict[str, str] = {}

        for board in self.leaderboards:
            try:
                self.store.save_external(board.key, board.fetch(), fetched_at)
                status[board.key] = "ok"
            except Exception as exc:
                logger.error(f"DailyUpdater: {board.key} fetch failed: {exc}")
                status[board.key] = f"error: {exc}"

        if self.labour_provider is not None:
            try:
                labour = self.labour_provider.fetch_labour_data()
                if labour.software or labour.general:
                    self.store.save_external(FRED_LABOUR_KEY, labour_data_to_dict(labour), fetched_at)
                    status[FRED_LABOUR_KEY] = "ok"
                else:
                    status[FRED_LABOUR_KEY] = "empty"
            except Exception as exc:
                logger.error(f"DailyUpdater: {FRED_LABOUR_KEY} fetch failed: {exc}")
                status[FRED_LABOUR_KEY] = f"error: {exc}"

        logger.info(f"DailyUpdater: external data {status}")
        return status

    # ── scheduled tick ────────────────────────────────────────────────────────

    def run_cron_tick(self) -> Optional[CronRun]:
        """One scheduled run: fetch phase then score phase.

        Returns:
            The recorded :class:`CronRun`, or ``None`` when a run already
            completed both phases today.
        """
        now = self.clock()
        today = iso(now)[:10]
        if self.store.cron_completed(today):
            logger.info(f"DailyUpdater: cron already completed for {today}, skipping")
            return None

        run = CronRun(id=uuid.uuid4().hex, started_at=iso(now))
        self.store.save_cron_run(run)
        errors = []

        try:
            self.fetch_feeds()
            self.fetch_external_data()
            run.fetch_status = "success"
        except Exception as exc:
            logger.error(f"DailyUpdater: cron fetch phase failed: {exc}")
            run.fetch_status = "failed"
            errors.append(f"fetch: {exc}")

        try:
            self.run_daily_update()
            run.score_status = "success"
        except Exception as exc:
            logger.error(f"DailyUpdater: cron score phase failed: {exc}")
            run.score_status = "failed"
            errors.append(f"score: {exc}")

        run.error = "; ".join(errors) or None
        run.completed_at = iso(self.clock())
        self.store.save_cron_run(run)
        logger.info(
            f"DailyUpdater: cron {run.id} fetch={run.fetch_status} "
            f"score={run.score_status} error={run.error}"
        )
        return run
