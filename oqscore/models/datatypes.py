"""Data structures for the consensus scoring pipeline."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

PILLARS = ("capability", "labour_market", "sentiment", "industry", "barriers")

PILLAR_TITLES = {
    "capability": "AI Capability Benchmarks",
    "labour_market": "Labour Market Signals",
    "sentiment": "Developer Sentiment & Adoption",
    "industry": "Industry & Economic Signals",
    "barriers": "Structural Barriers",
}

PILLAR_WEIGHTS = {
    "capability": 0.25,
    "labour_market": 0.25,
    "sentiment": 0.20,
    "industry": 0.20,
    "barriers": 0.10,
}

AGREE = "agree"
MOSTLY_AGREE = "mostly_agree"
DISAGREE = "disagree"
PARTIAL = "partial"

# Sentinel prompt hashes for days scored without calling providers.
DECAY_HASH = "decay"
NO_ARTICLES_HASH = "no-articles"


def empty_pillar_scores() -> Dict[str, float]:
    return {pillar: 0.0 for pillar in PILLARS}


@dataclass(frozen=True)
class Signal:
    """One piece of evidence cited by a model."""
    text: str
    direction: str  # "up" | "down" | "neutral"
    source: str
    impact: float
    url: Optional[str] = None


@dataclass(frozen=True)
class ModelScore:
    """One provider's parsed and validated judgment."""
    provider: str
    model: str
    pillar_scores: Dict[str, float]
    technical_delta: float
    economic_delta: float
    suggested_delta: float
    analysis: str
    top_signals: List[Signal] = field(default_factory=list)
    capability_gap_note: Optional[str] = None
    delta_explanation: Optional[str] = None
    sanity_harness_note: Optional[str] = None
    economic_note: Optional[str] = None
    labour_note: Optional[str] = None
    model_summary: Optional[str] = None


@dataclass
class UsageEntry:
    """Telemetry for one provider call sequence (success or exhausted)."""
    provider: str
    model: str
    status: str  # "success" | "failed"
    latency_ms: int = 0
    attempts: int = 1
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    error: Optional[str] = None


@dataclass
class ProviderReply:
    """Raw completion text plus the token counts a provider reported."""
    text: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


@dataclass
class ProviderResponse:
    """A successful provider call: validated score plus the raw text."""
    score: ModelScore
    raw_text: str
    usage: UsageEntry


@dataclass
class Article:
    """A stored feed item used as evidence."""
    id: str
    title: str
    url: str
    source: str
    pillar: str
    summary: Optional[str] = None
    published_at: Optional[str] = None
    fetched_at: Optional[str] = None


@dataclass
class FundingEvent:
    company: str
    amount: Optional[str] = None
    round: Optional[str] = None
    source_url: Optional[str] = None
    date: Optional[str] = None


@dataclass
class FundingSummary:
    total_raised: str
    count: int
    top_event: Optional[FundingEvent] = None


@dataclass
class SeriesTrend:
    """Latest value of a time series plus its recent percent changes."""
    current: float
    current_date: str
    previous: Optional[float] = None
    previous_date: Optional[str] = None
    change_1w: Optional[float] = None
    change_4w: Optional[float] = None


@dataclass
class LabourData:
    software: Optional[SeriesTrend] = None
    general: Optional[SeriesTrend] = None


@dataclass
class SWEBenchData:
    top_verified: float = 0.0
    top_verified_model: str = "Unknown"
    top_bash_only: float = 0.0
    top_bash_only_model: str = "Unknown"
    top_pro: float = 0.0
    top_pro_model: str = "Unknown"
    top_pro_private: float = 0.0
    top_pro_private_model: str = "Unknown"


@dataclass
class SanityHarnessEntry:
    agent: str
    model: str
    overall: float
    languages: Dict[str, float] = field(default_factory=dict)


@dataclass
class SanityHarnessData:
    top_pass_rate: float
    top_agent: str
    top_model: str
    median_pass_rate: float
    language_breakdown: str
    entries: List[SanityHarnessEntry] = field(default_factory=list)


@dataclass
class ExternalDataSnapshot:
    key: str
    value: Dict[str, Any]
    fetched_at: str


@dataclass
class PromptVersion:
    hash: str
    prompt_text: str
    first_used: str
    last_used: str


@dataclass
class CronRun:
    id: str
    started_at: str
    completed_at: Optional[str] = None
    fetch_status: str = "pending"
    score_status: str = "pending"
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.fetch_status == "success" and self.score_status == "success"


@dataclass
class ScoreUpdate:
    """Everything one scoring run produces, before it is persisted."""
    score: float
    score_technical: float
    score_economic: float
    delta: float
    analysis: str
    signals: List[Signal]
    pillar_scores: Dict[str, float]
    model_scores: List[ModelScore]
    model_agreement: str
    model_spread: float
    prompt_hash: str
    prompt_text: str
    usages: List[UsageEntry] = field(default_factory=list)
    raw_responses: Dict[str, str] = field(default_factory=dict)
    delta_explanation: Optional[str] = None
    capability_gap: Optional[str] = None
    sanity_harness_note: Optional[str] = None
    economic_note: Optional[str] = None
    labour_note: Optional[str] = None
    model_summary: Optional[str] = None


@dataclass
class ScoreSnapshot:
    """The persisted score for one calendar day."""
    date: str
    score: float
    score_technical: float
    score_economic: float
    delta: float
    analysis: str
    signals: List[Signal] = field(default_factory=list)
    pillar_scores: Dict[str, float] = field(default_factory=empty_pillar_scores)
    model_scores: List[ModelScore] = field(default_factory=list)
    model_agreement: str = PARTIAL
    model_spread: float = 0.0
    prompt_hash: str = NO_ARTICLES_HASH
    delta_explanation: Optional[str] = None
    capability_gap: Optional[str] = None
    external_data: Optional[Dict[str, Any]] = None
    is_decay: bool = False
    data_quality_flags: List[str] = field(default_factory=list)
    sanity_harness_note: Optional[str] = None
    economic_note: Optional[str] = None
    labour_note: Optional[str] = None
    model_summary: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class DailyResult:
    """What ``run_daily_update`` reports to admin and scheduler callers."""
    score: float
    delta: float
    date: str
    already_exists: bool = False
