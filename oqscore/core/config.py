"""Configuration module for loading project settings and environment variables."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_DEFAULT_WEIGHTS = {"anthropic": 0.4, "openai": 0.3, "gemini": 0.3}


def load_config(config_path: str | Path = "config.yaml") -> Dict[str, Any]:
    """
    Load configuration from the specified YAML file.

    Args:
        config_path (str | Path): Path to the configuration file. Defaults to "config.yaml".

    Returns:
        Dict[str, Any]: A dictionary containing the configuration settings.
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    with open(config_file, "r", encoding="utf-8") as file:
        config_data = yaml.safe_load(file)

    if not config_data:
        raise ValueError(f"Configuration file {config_path} is empty or invalid.")

    return config_data


@dataclass
class ScoringPolicy:
    """Tunable knobs for the daily update rule.

    Every value here was calibrated by hand; keep them in ``config.yaml``
    rather than inline so a recalibration is a config change.
    """
    starting_score: float = 32
    starting_technical: float = 25
    starting_economic: float = 38
    decay_target: float = 40
    decay_threshold_days: int = 7
    decay_rate: float = 0.1
    dampening: float = 0.3
    raw_delta_cap: float = 4.0
    daily_cap: float = 1.2
    score_floor: float = 5
    score_ceiling: float = 95
    primary_provider: str = "anthropic"
    weights: Dict[str, float] = field(default_factory=lambda: dict(_DEFAULT_WEIGHTS))
    default_weight: float = 0.3
    history_days: int = 14
    min_articles: int = 5
    min_pillars: int = 5
    external_stale_days: int = 3
    article_lookback_hours: int = 48
    funding_lookback_days: int = 30

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ScoringPolicy":
        """Build a policy from the ``scoring:`` block; unknown keys are ignored."""
        block = dict(config.get("scoring") or {})
        known = {name for name in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in block.items() if k in known}
        if "weights" in kwargs:
            kwargs["weights"] = {**_DEFAULT_WEIGHTS, **kwargs["weights"]}
        return cls(**kwargs)


@dataclass
class RetryPolicy:
    """Attempt budget shared by provider calls and leaderboard fetches."""
    max_attempts: int = 3
    base_delay: float = 1.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RetryPolicy":
        block = config.get("retry") or {}
        return cls(
            max_attempts=int(block.get("max_attempts", cls.max_attempts)),
            base_delay=float(block.get("base_delay", cls.base_delay)),
        )
