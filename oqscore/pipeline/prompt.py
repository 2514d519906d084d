"""Evidence Packet composer.

Builds the single prompt every provider receives. The output depends only on
the :class:`PromptContext` passed in (no clock, no randomness), so its hash is
a content-addressed key for auditing which prompt produced which score.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from oqscore.core.numbers import format_number, format_signed, round_half_up
from oqscore.models.datatypes import (
    PILLAR_TITLES,
    PILLAR_WEIGHTS,
    PILLARS,
    Article,
    FundingSummary,
    LabourData,
    SanityHarnessData,
    ScoreSnapshot,
    SeriesTrend,
    SWEBenchData,
)

NO_ARTICLES = "No articles today."
SUMMARY_CHARS = 200
PROMPT_HASH_CHARS = 16


@dataclass
class SanityHarnessContext:
    data: SanityHarnessData
    top_pass_rate_delta: Optional[float] = None
    median_pass_rate_delta: Optional[float] = None


@dataclass
class SWEBenchContext:
    data: SWEBenchData
    verified_delta: Optional[float] = None
    bash_only_delta: Optional[float] = None
    pro_delta: Optional[float] = None
    pro_private_delta: Optional[float] = None


@dataclass
class PromptContext:
    """Everything the Evidence Packet is rendered from."""
    current_score: float
    technical_score: float
    economic_score: float
    history: str
    articles_by_pillar: Dict[str, str] = field(default_factory=dict)
    sanity_harness: Optional[SanityHarnessContext] = None
    swe_bench: Optional[SWEBenchContext] = None
    labour: Optional[LabourData] = None
    funding: Optional[FundingSummary] = None


# ── Context helpers ───────────────────────────────────────────────────────────

def format_history(snapshots: Iterable[ScoreSnapshot]) -> str:
    """``"2026-02-14: 33 (+1), 2026-02-13: 32 (0)"``, newest first as given."""
    parts = [f"{s.date}: {format_number(s.score)} ({format_signed(s.delta)})" for s in snapshots]
    return ", ".join(parts)


def format_article(article: Article) -> str:
    line = f"- {article.title}"
    if article.summary:
        line += f": {article.summary[:SUMMARY_CHARS]}"
    line += f" ({article.source})"
    if article.url:
        line += f" [{article.url}]"
    return line + "\n"


def group_articles_by_pillar(articles: Iterable[Article]) -> Dict[str, str]:
    """Render article bullets per pillar; unknown pillars are ignored."""
    grouped = {pillar: "" for pillar in PILLARS}
    for article in articles:
        if article.pillar in grouped:
            grouped[article.pillar] += format_article(article)
    return grouped


def value_delta(current: float, previous: Optional[float]) -> Optional[float]:
    """Change since the previous snapshot in percentage points, 1 decimal."""
    if previous is None or not current or not previous:
        return None
    return round_half_up(current - previous, 1)


def sanity_harness_context(
    current: SanityHarnessData, previous: Optional[SanityHarnessData] = None
) -> SanityHarnessContext:
    if previous is None:
        return SanityHarnessContext(data=current)
    return SanityHarnessContext(
        data=current,
        top_pass_rate_delta=value_delta(current.top_pass_rate, previous.top_pass_rate),
        median_pass_rate_delta=value_delta(current.median_pass_rate, previous.median_pass_rate),
    )


def swe_bench_context(current: SWEBenchData, previous: Optional[SWEBenchData] = None) -> SWEBenchContext:
    if previous is None:
        return SWEBenchContext(data=current)
    return SWEBenchContext(
        data=current,
        verified_delta=value_delta(current.top_verified, previous.top_verified),
        bash_only_delta=value_delta(current.top_bash_only, previous.top_bash_only),
        pro_delta=value_delta(current.top_pro, previous.top_pro),
        pro_private_delta=value_delta(current.top_pro_private, previous.top_pro_private),
    )


# ── Rendering ─────────────────────────────────────────────────────────────────

def _format_delta(delta: Optional[float]) -> str:
    if delta is None:
        return ""
    if delta == 0:
        return " [unchanged]"
    return f" [{format_signed(delta)}pp since last fetch]"


def _format_trend(trend: SeriesTrend) -> str:
    parts = []
    if trend.change_1w is not None:
        parts.append(f"{format_signed(trend.change_1w)}% week-over-week")
    if trend.change_4w is not None:
        parts.append(f"{format_signed(trend.change_4w)}% over 4 weeks")
    return f" ({', '.join(parts)})" if parts else ""


def _format_series(label: str, trend: SeriesTrend) -> str:
    return f"{label}: {format_number(trend.current)} (as of {trend.current_date}){_format_trend(trend)}"


def _swe_line(value: float, model: str, delta: Optional[float], fallback: str) -> str:
    if not value:
        return fallback
    return f"{format_number(value)}% ({model}){_format_delta(delta)}"


def _capability_gap_block(ctx: PromptContext) -> str:
    swe = ctx.swe_bench
    data = swe.data if swe else SWEBenchData()
    lines = [
        'KEY FRAMING: the central metric is the "Capability Gap" between curated and unfamiliar code:',
        "- SWE-bench Pro Public (unfamiliar real-world repos, Scale AI SEAL): "
        + _swe_line(data.top_pro, data.top_pro_model, swe.pro_delta if swe else None, "~46%"),
        "- SWE-bench Pro Private (private commercial codebases, Scale AI SEAL): "
        + _swe_line(data.top_pro_private, data.top_pro_private_model,
                    swe.pro_private_delta if swe else None, "~23%"),
        "- SWE-bench Verified (deprecated, contamination confirmed): "
        + _swe_line(data.top_verified, data.top_verified_model, swe.verified_delta if swe else None, "~79%"),
        "- SWE-bench Bash Only (raw model capability, standardized agent): "
        + _swe_line(data.top_bash_only, data.top_bash_only_model,
                    swe.bash_only_delta if swe else None, "~77%"),
        "Verified scores are inflated by memorisation and must NOT be cited as evidence of capability.",
    ]
    return "\n".join(lines)


def _sanity_harness_block(ctx: PromptContext) -> str:
    if not ctx.sanity_harness:
        return ""
    sh = ctx.sanity_harness
    d = sh.data
    return (
        "SanityHarness latest data (agent-level benchmarks across 6 languages):\n"
        f"- Top agent pass rate: {format_number(d.top_pass_rate)}% ({d.top_agent} + {d.top_model})"
        f"{_format_delta(sh.top_pass_rate_delta)}\n"
        f"- Median agent pass rate: {format_number(d.median_pass_rate)}%"
        f"{_format_delta(sh.median_pass_rate_delta)}\n"
        f"- Language spread (top agent): {d.language_breakdown}\n"
        "- High pass rates on some languages but low on others means narrow competence, "
        "not general replacement capability.\n"
    )


def _labour_block(ctx: PromptContext) -> str:
    labour = ctx.labour
    if not labour or not labour.software or not labour.general:
        return ""
    return (
        f"{_format_series('Indeed Software Dev Postings Index', labour.software)}. "
        f"{_format_series('Initial Claims (general labour)', labour.general)}.\n"
    )


def _funding_block(ctx: PromptContext) -> str:
    funding = ctx.funding
    if not funding or funding.count == 0 or funding.total_raised == "$0":
        return ""
    top = ""
    if funding.top_event:
        event = funding.top_event
        amount = f" {event.amount}" if event.amount else ""
        top = f" (top: {event.company}{amount})"
    return f"Recent AI Spending: {funding.total_raised} across {funding.count} event(s){top}.\n"


_PILLAR_NOTES = {
    "labour_market": "Note: only flag a labour-market AI signal if software job postings are "
                     "declining FASTER than general postings.\n",
    "sentiment": 'Note: track the "maintenance tax". More time spent fixing AI-generated code '
                 "signals augmentation problems, not replacement progress.\n",
    "industry": "Note: weight headcount data and measurable outcomes above CEO hype and VC announcements.\n",
}


def _pillar_section(ctx: PromptContext, pillar: str) -> str:
    weight = int(round_half_up(PILLAR_WEIGHTS[pillar] * 100))
    header = f"## {PILLAR_TITLES[pillar]} (weight: {weight}%)\n"
    extra = {
        "capability": _sanity_harness_block,
        "labour_market": _labour_block,
        "industry": _funding_block,
    }.get(pillar)
    body = _PILLAR_NOTES.get(pillar, "")
    if extra:
        body += extra(ctx)
    body += ctx.articles_by_pillar.get(pillar) or NO_ARTICLES
    return header + body.rstrip("\n")


OUTPUT_CONTRACT = """Provide your assessment as JSON:
{
  "pillar_scores": {
    "capability": <-5 to +5>,
    "labour_market": <-5 to +5>,
    "sentiment": <-5 to +5>,
    "industry": <-5 to +5>,
    "barriers": <-5 to +5>
  },
  "technical_delta": <-5 to +5, based on capability + barriers>,
  "economic_delta": <-5 to +5, based on labour + industry + sentiment>,
  "suggested_delta": <-5 to +5, overall>,
  "top_signals": [
    {
      "text": "<one-sentence summary, max 100 chars>",
      "direction": "up" | "down" | "neutral",
      "source": "<publication name>",
      "impact": <-5 to +5>,
      "url": "<REQUIRED: article URL from the [url] tag, or the data source URL>"
    }
  ],
  "delta_explanation": "<max 140 characters. Lead with the most important change.>",
  "analysis": "<2-3 sentences as a sharp briefing with concrete numbers>",
  "capability_gap_note": "<optional: note if SWE-bench Verified, Bash Only or Pro changed today>",
  "sanity_harness_note": "<optional: one sentence on today's SanityHarness data>",
  "economic_note": "<optional: one sentence on funding, hiring and layoff signals>",
  "labour_note": "<optional: one sentence on software vs. general posting divergence>",
  "model_summary": "<REQUIRED: one sentence (max 30 words) on the consensus view>"
}

IMPORTANT: Return 3-5 top_signals. Fewer than 3 looks broken. Each signal must
describe a DISTINCT piece of evidence.

CALIBRATION RULES:
- Most days the score should move 0-2 points. 3+ requires landmark news.
- Data marked [unchanged] is already reflected in the current score: zero delta contribution.
- Distinguish between AI *helping* engineers and AI *replacing* them.
- High SWE-bench scores on curated bugs do not equal replacing full engineering roles.
- CEO hype carries less weight than actual headcount data.
- One company's anecdote does not represent the industry.
- Developers spending more time debugging AI code = score goes DOWN.
- Job market declines only matter if software is falling FASTER than general.

Return ONLY the JSON object, no other text."""


def build_scoring_prompt(ctx: PromptContext) -> str:
    """Render the Evidence Packet for ``ctx``.

    Args:
        ctx (PromptContext): Scores, history, article digests and the optional
            external snapshots.

    Returns:
        str: The prompt text. Byte-identical for identical contexts.
    """
    sections = [
        "You are an analyst tracking whether AI will fully replace the median\n"
        "professional software engineer within the next 10 years.\n\n"
        '"Replace" means AI can independently handle the full role: business\n'
        "requirements, architecture, production code, debugging complex systems,\n"
        "working with non-technical stakeholders and maintaining software over time.",
        _capability_gap_block(ctx),
        f"Current score: {format_number(ctx.current_score)}/100\n"
        f"Technical sub-score: {format_number(ctx.technical_score)}/100\n"
        f"Economic sub-score: {format_number(ctx.economic_score)}/100\n"
        f"Score history (last 14 days): {ctx.history or 'none yet'}",
        "Today's articles grouped by pillar:",
    ]
    sections.extend(_pillar_section(ctx, pillar) for pillar in PILLARS)
    sections.append(OUTPUT_CONTRACT)
    return "\n\n".join(sections)


def hash_prompt(prompt: str) -> str:
    """First 16 hex characters of the prompt's SHA-256."""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:PROMPT_HASH_CHARS]

