import json

import pytest

from oqscore.core.errors import LeaderboardParseError
from oqscore.models.datatypes import SWEBenchData
from oqscore.providers import leaderboards
from oqscore.providers.leaderboards import (
    SanityHarnessLeaderboard,
    SWEBenchLeaderboard,
    parse_sanity_harness_html,
    parse_scale_leaderboard,
    parse_swebench_html,
    parse_swebench_json_blob,
    parse_swebench_markdown,
    run_strategies,
    sanity_harness_from_dict,
    swebench_from_dict,
)


def blob_page(boards) -> str:
    payload = boards if isinstance(boards, str) else json.dumps(boards)
    return (
        "<html><body><h1>SWE-bench</h1>"
        f'<script id="leaderboard-data" type="application/json">{payload}</script>'
        "</body></html>"
    )


def scale_page(entries) -> str:
    chunk = json.dumps(json.dumps(entries))
    return f"<html><script>self.__next_f.push([1,{chunk}])</script></html>"


def sanity_row(rank, agent=None, model=None, score=None, pass_rate=None, languages=None) -> str:
    parts = [f'<div class="w-8 text-gray-500">#{rank}</div>']
    if agent:
        parts.append(f'<a href="/agents/{rank}" class="hover:text-indigo-600 font-medium">{agent}</a>')
    if model:
        parts.append(f'<span class="truncate" title="{model}">{model}</span>')
    if score is not None:
        parts.append(f'<span class="font-mono text-sm font-bold text-gray-900">{score}</span>')
    if pass_rate is not None:
        parts.append(f'<span class="text-emerald-600 font-semibold">{pass_rate}%</span>')
    for lang, pct in (languages or {}).items():
        parts.append(f'<div class="h-2 bg-cyan-500" title="{lang}: {pct}% Pass"></div>')
    return "<div class=\"row\">" + "".join(parts) + "</div>"


# ── SWE-bench ─────────────────────────────────────────────────────────────────

def test_json_blob_picks_best_per_track():
    html = blob_page([
        {"name": "Verified", "results": [
            {"name": "Agent A", "resolved": 70.2},
            {"folder": "b-agent", "resolved": "74.4"},
            {"name": "Corrupt", "resolved": 450},
        ]},
        {"name": "bash-only", "results": [{"name": "Agent C", "resolved": 65}]},
        {"name": "Lite", "results": [{"name": "Ignored", "resolved": 99}]},
    ])
    data = parse_swebench_json_blob(html)
    assert data.top_verified == 74.4
    assert data.top_verified_model == "b-agent"
    assert data.top_bash_only == 65
    assert data.top_bash_only_model == "Agent C"


def test_json_blob_unnamed_result():
    html = blob_page([{"name": "Bash Only", "results": [{"resolved": 50.0}]}])
    data = parse_swebench_json_blob(html)
    assert data.top_bash_only_model == "Unknown"
    assert data.top_verified == 0


def test_malformed_blob_raises_instead_of_falling_back():
    html = blob_page('[{"name": "Verified", "results": [') + "\n| [x] | Agent | 88.5 |\n"
    with pytest.raises(LeaderboardParseError, match="Failed to parse leaderboard JSON"):
        parse_swebench_html(html)


def test_markdown_fallback():
    text = (
        "| | Model | % Resolved |\n"
        "|---|---|---|\n"
        "| [ ] | Other Agent | 70.1 |\n"
        "| [x] | Top Agent Name | 88.5 |\n"
    )
    data = parse_swebench_html(text)
    assert data.top_verified == 88.5
    assert data.top_verified_model == "Top Agent Name"
    assert data.top_bash_only == 0


def test_markdown_strategy_without_rows():
    assert parse_swebench_markdown("no tables here") is None


def test_no_strategy_matches_gives_zeroed_data():
    assert parse_swebench_html("<html>maintenance</html>") == SWEBenchData()


def test_run_strategies_stops_at_first_match():
    calls = []

    def first(text):
        calls.append("first")
        return None

    def second(text):
        calls.append("second")
        return "found"

    def third(text):
        calls.append("third")
        return "late"

    assert run_strategies([first, second, third], "x") == "found"
    assert calls == ["first", "second"]


# ── Scale SEAL ────────────────────────────────────────────────────────────────

def test_scale_picks_highest_score():
    html = scale_page([
        {"model": "claude-opus-4", "score": 45.89},
        {"score": 23.1, "version": "gpt-5"},
        {"version": "2.0", "score": 99},
        {"model": "broken", "score": 150},
    ])
    assert parse_scale_leaderboard(html) == (45.89, "claude-opus-4")


def test_scale_version_used_when_model_missing():
    html = scale_page([{"score": 41.0, "version": "gpt-5 (high)"}])
    assert parse_scale_leaderboard(html) == (41.0, "gpt-5 (high)")


def test_scale_without_entries():
    assert parse_scale_leaderboard("<html>no flight data</html>") is None


# ── SanityHarness ─────────────────────────────────────────────────────────────

def test_sanity_harness_summary():
    html = "".join([
        sanity_row(1, "Beta", "gpt-5", score=60.0),
        sanity_row(2, "Alpha", "claude-4", score=72.5, pass_rate=80.0, languages={"go": 90, "rust": 85}),
        sanity_row(3, "Gamma", "gemini-3", score=0, pass_rate=0),
    ])
    data = parse_sanity_harness_html(html)
    assert [e.agent for e in data.entries] == ["Alpha", "Beta"]
    assert data.top_pass_rate == 80.0
    assert data.top_agent == "Alpha"
    assert data.top_model == "claude-4"
    assert data.median_pass_rate == 60.0
    assert data.language_breakdown == "go: 90%, rust: 85%"
    assert data.entries[1].languages == {}


def test_sanity_harness_fields_do_not_leak_between_rows():
    html = sanity_row(4, score=55.0) + sanity_row(5, "Delta", "model-x", score=50.0)
    data = parse_sanity_harness_html(html)
    first = data.entries[0]
    assert first.agent == "Agent #4"
    assert first.model == "Unknown"
    assert data.language_breakdown == "N/A"


def test_sanity_harness_keeps_top_ten_but_median_uses_all():
    html = "".join(sanity_row(i, f"Agent{i}", f"m-{i}", score=i * 5.0) for i in range(1, 13))
    data = parse_sanity_harness_html(html)
    assert len(data.entries) == 10
    assert data.entries[0].overall == 60.0
    assert data.median_pass_rate == 30.0


def test_sanity_harness_without_entries_raises():
    with pytest.raises(LeaderboardParseError, match="No entries parsed"):
        parse_sanity_harness_html("<html>empty</html>")


# ── Fetchers ──────────────────────────────────────────────────────────────────

def test_swebench_fetch_survives_scale_outage(monkeypatch):
    pages = {
        "https://swe.test": blob_page([{"name": "Verified", "results": [{"name": "A", "resolved": 70}]}]),
        "https://scale.test/public": scale_page([{"model": "m1", "score": 40.5}]),
    }

    def fake_get(url, retry):
        if url not in pages:
            raise RuntimeError(f"{url} fetch failed: HTTP 503")
        return pages[url]

    monkeypatch.setattr(leaderboards, "_get_text", fake_get)
    board = SWEBenchLeaderboard("https://swe.test", "https://scale.test/public", "https://scale.test/private")
    data = swebench_from_dict(board.fetch())
    assert data.top_verified == 70
    assert data.top_pro == 40.5
    assert data.top_pro_model == "m1"
    assert data.top_pro_private == 0


def test_swebench_fetch_with_no_scores_raises(monkeypatch):
    monkeypatch.setattr(leaderboards, "_get_text", lambda url, retry: "<html></html>")
    board = SWEBenchLeaderboard("https://swe.test", None, None)
    with pytest.raises(LeaderboardParseError):
        board.fetch()


def test_sanity_harness_fetch_returns_storable_dict(monkeypatch):
    html = sanity_row(1, "Alpha", "claude-4", score=72.5, languages={"python": 80})
    monkeypatch.setattr(leaderboards, "_get_text", lambda url, retry: html)
    value = SanityHarnessLeaderboard("https://sanity.test").fetch()
    json.dumps(value)
    data = sanity_harness_from_dict(value)
    assert data.top_agent == "Alpha"
    assert data.entries[0].languages == {"python": 80.0}
