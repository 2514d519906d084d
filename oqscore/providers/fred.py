"""FRED labour-market series and the trend builder.

Two series feed the labour pillar:
  - Indeed software-development job postings (``IHLIDXUSTPSOFTDEVE``, daily)
  - Initial jobless claims (``ICSA``, weekly)

Cadence differs between series and FRED inserts ``"."`` placeholders on
holidays, so week-over-week and four-week changes are computed by searching
for the observation nearest to the target date, never by array offset.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import pandas as pd
import requests

from oqscore.core.config import RetryPolicy
from oqscore.core.logger import logger
from oqscore.core.numbers import round_half_up
from oqscore.core.retry import call_with_retries, exponential_backoff
from oqscore.models.datatypes import LabourData, SeriesTrend
from oqscore.providers.base import TimeSeriesProvider

_FRED_URL = "https://api.stlouisfed.org/fred/series/observations"
_USER_AGENT = "oqscore/1.0"

SOFTWARE_SERIES = "IHLIDXUSTPSOFTDEVE"
GENERAL_SERIES = "ICSA"


def build_trend(observations: List[Dict[str, Any]]) -> Optional[SeriesTrend]:
    """Summarise newest-first observations into a :class:`SeriesTrend`.

    Args:
        observations: ``{"date": "YYYY-MM-DD", "value": str | float}`` rows,
            newest first. Non-numeric placeholder values are dropped.

    Returns:
        ``None`` when no numeric observation remains; otherwise the newest
        numeric value, the immediately prior point (when ≥2 points) and
        ``change_1w`` / ``change_4w`` percent changes rounded to 1 decimal.
        ``change_4w`` needs at least three numeric points.
    """
    if not observations:
        return None

    frame = pd.DataFrame(
        [{"raw_date": o.get("date"), "value": o.get("value")} for o in observations]
    )
    frame["value"] = pd.to_numeric(frame["value"], errors="coerce")
    frame["date"] = pd.to_datetime(frame["raw_date"], errors="coerce")

    frame = frame.dropna(subset=["value", "date"]).reset_index(drop=True)
    if frame.empty:
        return None

    current_value = float(frame.at[0, "value"])
    current_date = frame.at[0, "date"]
    trend = SeriesTrend(current=current_value, current_date=str(frame.at[0, "raw_date"]))

    prior = frame.iloc[1:]
    if prior.empty:
        return trend

    trend.previous = float(prior.iloc[0]["value"])
    trend.previous_date = str(prior.iloc[0]["raw_date"])

    week_ref = _nearest_value(prior, current_date - pd.Timedelta(days=7))
    trend.change_1w = _pct_change(current_value, week_ref)

    if len(prior) >= 2:
        month_ref = _nearest_value(prior, current_date - pd.Timedelta(days=28))
        trend.change_4w = _pct_change(current_value, month_ref)

    return trend


def _nearest_value(frame: pd.DataFrame, target: pd.Timestamp) -> float:
    """Return the value whose date is closest to ``target``."""
    time_diffs = (frame["date"] - target).abs()
    return float(frame.loc[time_diffs.idxmin(), "value"])


def _pct_change(current: float, reference: float) -> Optional[float]:
    if reference == 0:
        return None
    return round_half_up((current - reference) / reference * 100.0, 1)


class FREDProvider(TimeSeriesProvider):
    """St. Louis Fed observations API.

    Args:
        api_key: FRED API key.
        retry: Attempt budget for each series request.
    """

    def __init__(self, api_key: str, retry: Optional[RetryPolicy] = None) -> None:
        self.api_key = api_key
        self.retry = retry or RetryPolicy()

    def fetch_observations(self, series_id: str, limit: int = 40) -> List[Dict[str, Any]]:
        """Fetch ``limit`` observations newest-first, retrying on failure."""
        return call_with_retries(
            lambda: self._request(series_id, limit),
            max_attempts=self.retry.max_attempts,
            backoff=exponential_backoff(self.retry.base_delay),
            label=f"fred:{series_id}",
        )

    def _request(self, series_id: str, limit: int) -> List[Dict[str, Any]]:
        params = {
            "series_id": series_id,
            "api_key": self.api_key,
            "file_type": "json",
            "sort_order": "desc",
            "limit": limit,
        }
        logger.info(f"FREDProvider: fetching {series_id} (limit={limit})")
        resp = requests.get(
            _FRED_URL, params=params, headers={"User-Agent": _USER_AGENT}, timeout=20
        )
        if resp.status_code != 200:
            raise RuntimeError(f"FRED fetch failed for {series_id}: HTTP {resp.status_code}")
        return resp.json().get("observations", [])

    def fetch_trend(self, series_id: str) -> Optional[SeriesTrend]:
        """Fetch a series and build its trend; ``None`` when nothing usable came back."""
        observations = self.fetch_observations(series_id)
        trend = build_trend(observations)
        if trend is None:
            logger.warning(f"FREDProvider: no numeric observations for {series_id}")
        return trend

    def fetch_labour_data(
        self,
        software_series: str = SOFTWARE_SERIES,
        general_series: str = GENERAL_SERIES,
    ) -> LabourData:
        """Fetch both labour series independently; one failure leaves the other intact."""
        data = LabourData()
        for attr, series_id in (("software", software_series), ("general", general_series)):
            try:
                setattr(data, attr, self.fetch_trend(series_id))
            except Exception as exc:
                logger.error(f"FREDProvider: {series_id} unavailable: {exc}")
        return data


def labour_data_to_dict(data: LabourData) -> Dict[str, Any]:
    return {
        "software": asdict(data.software) if data.software else None,
        "general": asdict(data.general) if data.general else None,
    }


def labour_data_from_dict(value: Dict[str, Any]) -> LabourData:
    software = value.get("software")
    general = value.get("general")
    return LabourData(
        software=SeriesTrend(**software) if software else None,
        general=SeriesTrend(**general) if general else None,
    )
