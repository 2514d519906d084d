from datetime import date, timedelta

import pytest

from oqscore.models.datatypes import LabourData, SeriesTrend
from oqscore.providers.fred import (
    FREDProvider,
    build_trend,
    labour_data_from_dict,
    labour_data_to_dict,
)


def daily_series(values_by_offset, days=30, default=90.0, newest=date(2026, 2, 14)):
    return [
        {"date": (newest - timedelta(days=i)).isoformat(), "value": str(values_by_offset.get(i, default))}
        for i in range(days)
    ]


def test_empty_input_has_no_trend():
    assert build_trend([]) is None


def test_placeholder_newest_value_falls_back_to_latest_numeric():
    trend = build_trend([
        {"date": "2026-02-16", "value": "."},
        {"date": "2026-02-13", "value": "5"},
        {"date": "2026-02-06", "value": "4"},
    ])
    assert (trend.current, trend.current_date) == (5.0, "2026-02-13")
    assert trend.previous == 4.0
    assert trend.change_1w == 25.0


def test_only_placeholders_have_no_trend():
    assert build_trend([{"date": "2026-02-14", "value": "."}, {"date": "2026-02-13", "value": "n/a"}]) is None


def test_single_observation():
    trend = build_trend([{"date": "2026-02-14", "value": "101.5"}])
    assert trend == SeriesTrend(current=101.5, current_date="2026-02-14")


def test_daily_series_uses_dates_not_offsets():
    trend = build_trend(daily_series({0: 100.0, 7: 80.0, 28: 50.0}))
    assert trend.current == 100.0
    assert trend.previous == 90.0
    assert trend.previous_date == "2026-02-13"
    assert trend.change_1w == 25.0
    assert trend.change_4w == 100.0


def test_weekly_series():
    observations = [
        {"date": "2026-02-14", "value": "220000"},
        {"date": "2026-02-07", "value": "200000"},
        {"date": "2026-01-31", "value": "210000"},
        {"date": "2026-01-24", "value": "205000"},
        {"date": "2026-01-17", "value": "176000"},
    ]
    trend = build_trend(observations)
    assert trend.change_1w == 10.0
    assert trend.change_4w == 25.0


def test_placeholders_are_skipped():
    observations = [
        {"date": "2026-02-14", "value": "105"},
        {"date": "2026-02-13", "value": "."},
        {"date": "2026-02-07", "value": "100"},
    ]
    trend = build_trend(observations)
    assert trend.previous == 100.0
    assert trend.previous_date == "2026-02-07"
    assert trend.change_1w == 5.0
    assert trend.change_4w is None


def test_two_points_give_week_change_only():
    trend = build_trend([{"date": "2026-02-14", "value": 90}, {"date": "2026-02-07", "value": 100}])
    assert trend.change_1w == -10.0
    assert trend.change_4w is None


def test_zero_reference_has_no_change():
    trend = build_trend([{"date": "2026-02-14", "value": "5"}, {"date": "2026-02-07", "value": "0"}])
    assert trend.previous == 0.0
    assert trend.change_1w is None


def test_labour_data_dict_conversion():
    data = LabourData(software=SeriesTrend(current=61.2, current_date="2026-02-14", change_1w=-1.5))
    restored = labour_data_from_dict(labour_data_to_dict(data))
    assert restored == data
    assert restored.general is None


def test_labour_series_fail_independently(monkeypatch):
    provider = FREDProvider(api_key="test")

    def fake_observations(series_id, limit=40):
        if series_id == "ICSA":
            raise RuntimeError("FRED fetch failed for ICSA: HTTP 500")
        return [{"date": "2026-02-14", "value": "61.2"}, {"date": "2026-02-07", "value": "60.0"}]

    monkeypatch.setattr(provider, "fetch_observations", fake_observations)
    data = provider.fetch_labour_data()
    assert data.software.current == 61.2
    assert data.software.change_1w == pytest.approx(2.0)
    assert data.general is None
