"""Leaderboard scrapers for the capability pillar.

Sources (markup is outside our control, so every parser is best effort):
  - SWE-bench (swebench.com): embedded JSON blob, markdown-table fallback
  - Scale SEAL SWE-bench Pro (public + private): Next.js flight data
  - SanityHarness (sanityboard.lr7.dev): server-rendered div grid

Parsers are pure functions over page text. A strategy returns ``None`` when it
does not apply and the next one is tried; ``LeaderboardParseError`` means the
page had the expected structure but its content is corrupt, which is never
papered over by a fallback.
"""

import json
import re
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import requests

from oqscore.core.config import RetryPolicy
from oqscore.core.errors import LeaderboardParseError
from oqscore.core.logger import logger
from oqscore.core.numbers import format_number, round_half_up
from oqscore.core.retry import call_with_retries, exponential_backoff
from oqscore.models.datatypes import SanityHarnessData, SanityHarnessEntry, SWEBenchData
from oqscore.providers.base import LeaderboardProvider

T = TypeVar("T")

_USER_AGENT = "oqscore/1.0"

SWEBENCH_URL = "https://www.swebench.com"
SCALE_PRO_PUBLIC_URL = "https://scale.com/leaderboard/swe_bench_pro_public"
SCALE_PRO_PRIVATE_URL = "https://scale.com/leaderboard/swe_bench_pro_commercial"
SANITY_HARNESS_URL = "https://sanityboard.lr7.dev"

MAX_PERCENT = 100.0
SANITY_WINDOW_CHARS = 5000
SANITY_MAX_ENTRIES = 10


def run_strategies(strategies: Sequence[Callable[[str], Optional[T]]], content: str) -> Optional[T]:
    """Return the first non-``None`` strategy result; exceptions propagate."""
    for strategy in strategies:
        result = strategy(content)
        if result is not None:
            logger.debug(f"leaderboards: strategy {strategy.__name__} matched")
            return result
    return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _strip_tags(text: str) -> str:
    return re.sub(r"<[^>]*>", "", text).strip()


# ── SWE-bench ─────────────────────────────────────────────────────────────────

_BLOB_RE = re.compile(
    r"<script[^>]*\bid=[\"']leaderboard-data[\"'][^>]*>([\s\S]*?)</script>",
    re.IGNORECASE,
)
_MARKDOWN_ROW_RE = re.compile(
    r"^\s*\|\s*\[[^\]]*\]\s*\|\s*([^|]+?)\s*\|\s*(\d{1,3}(?:\.\d+)?)\s*%?\s*\|",
    re.MULTILINE,
)

# normalised track name -> (score attribute, model attribute)
_SWEBENCH_TRACKS = {
    "verified": ("top_verified", "top_verified_model"),
    "bashonly": ("top_bash_only", "top_bash_only_model"),
}


def _normalise_track(name: str) -> str:
    return re.sub(r"[\s_\-]+", "", name.lower())


def _best_result(results: Any) -> Optional[Tuple[float, str]]:
    """Highest plausible ``resolved`` value in a track's result list."""
    best: Optional[Tuple[float, str]] = None
    if not isinstance(results, list):
        return None
    for row in results:
        if not isinstance(row, dict):
            continue
        resolved = _to_float(row.get("resolved"))
        if resolved is None or resolved <= 0:
            continue
        if resolved > MAX_PERCENT:
            logger.warning(f"leaderboards: rejecting corrupt resolved value {resolved}")
            continue
        name = row.get("name") or row.get("folder") or "Unknown"
        if best is None or resolved > best[0]:
            best = (resolved, str(name))
    return best


def parse_swebench_json_blob(html: str) -> Optional[SWEBenchData]:
    """Primary strategy: the ``<script id="leaderboard-data">`` JSON array."""
    match = _BLOB_RE.search(html)
    if not match:
        return None
    try:
        boards = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        raise LeaderboardParseError(f"Failed to parse leaderboard JSON: {exc}") from exc
    if not isinstance(boards, list):
        raise LeaderboardParseError("Failed to parse leaderboard JSON: expected a list of tracks")

    data = SWEBenchData()
    for board in boards:
        if not isinstance(board, dict):
            continue
        attrs = _SWEBENCH_TRACKS.get(_normalise_track(str(board.get("name", ""))))
        if not attrs:
            continue
        best = _best_result(board.get("results"))
        if best:
            setattr(data, attrs[0], best[0])
            setattr(data, attrs[1], best[1])
    return data


def parse_swebench_markdown(text: str) -> Optional[SWEBenchData]:
    """Fallback strategy: ``| [x] | Agent | 88.5 |`` rows (reader-proxy output).

    Only the verified track can be recovered this way.
    """
    best: Optional[Tuple[float, str]] = None
    for match in _MARKDOWN_ROW_RE.finditer(text):
        value = float(match.group(2))
        if value <= 0 or value > MAX_PERCENT:
            continue
        if best is None or value > best[0]:
            best = (value, _strip_tags(match.group(1)) or "Unknown")
    if best is None:
        return None
    return SWEBenchData(top_verified=best[0], top_verified_model=best[1])


SWEBENCH_STRATEGIES = (parse_swebench_json_blob, parse_swebench_markdown)


def parse_swebench_html(html: str) -> SWEBenchData:
    """Parse the SWE-bench page; zeroed data when no strategy finds anything.

    Raises:
        LeaderboardParseError: The JSON blob exists but is malformed.
    """
    return run_strategies(SWEBENCH_STRATEGIES, html) or SWEBenchData()


# ── Scale SEAL (SWE-bench Pro) ────────────────────────────────────────────────

_NEXT_CHUNK_RE = re.compile(r'self\.__next_f\.push\(\[\d+,\s*"((?:[^"\\]|\\.)*)"\]\)')
_FLAT_OBJECT_RE = re.compile(r"\{[^{}]*\}")
_SCORE_KEY_RE = re.compile(r'"score"\s*:\s*(-?\d+(?:\.\d+)?)')
_NAME_KEY_RE = re.compile(r'"(model|version)"\s*:\s*"([^"]*)"')
_NUMERIC_VERSION_RE = re.compile(r"^\d+(?:\.\d+)*$")


def _unescape_chunk(chunk: str) -> str:
    try:
        return json.loads(f'"{chunk}"')
    except json.JSONDecodeError:
        return chunk.replace('\\"', '"')


def parse_scale_leaderboard(html: str) -> Optional[Tuple[float, str]]:
    """Return ``(score, model)`` for the best entry in Next.js flight data.

    ``score`` may precede or follow ``model``/``version``. Versions that are
    bare numbers (``"2.0"``) are page metadata, not entries, and are skipped.
    """
    best: Optional[Tuple[float, str]] = None
    for chunk in _NEXT_CHUNK_RE.findall(html):
        text = _unescape_chunk(chunk)
        for obj in _FLAT_OBJECT_RE.findall(text):
            score_match = _SCORE_KEY_RE.search(obj)
            if not score_match:
                continue
            names = dict(_NAME_KEY_RE.findall(obj))
            name = names.get("model")
            if not name:
                version = names.get("version", "")
                if not version or _NUMERIC_VERSION_RE.match(version):
                    continue
                name = version
            score = float(score_match.group(1))
            if score <= 0 or score > MAX_PERCENT:
                continue
            if best is None or score > best[0]:
                best = (score, name)
    return best


# ── SanityHarness ─────────────────────────────────────────────────────────────

_RANK_RE = re.compile(r"#(\d+)</div>")
_AGENT_RE = re.compile(r'class="hover:text-indigo-600[^"]*">([\s\S]*?)</a>')
_MODEL_RE = re.compile(r'<span\s+class="truncate"\s+title="([^"]+)"')
_OVERALL_RE = re.compile(r'font-mono text-sm font-bold[^"]*">([\d.]+)</span>')
_PASS_RATE_RE = re.compile(r'text-emerald-\d+[^"]*">([\d.]+)%')
_LANGUAGE_RES = (
    re.compile(r'title="([a-z+#]+):\s*([\d.]+)%\s*Pass"', re.IGNORECASE),
    re.compile(r'title="([a-z]+)"[^>]*>[^<]*</span>[^<]*<[^>]*>([\d.]+)%', re.IGNORECASE),
)


def _parse_sanity_entry(rank: int, window: str) -> Optional[SanityHarnessEntry]:
    agent_match = _AGENT_RE.search(window)
    agent = _strip_tags(agent_match.group(1)) if agent_match else f"Agent #{rank}"

    model_match = _MODEL_RE.search(window)
    model = model_match.group(1) if model_match else "Unknown"

    overall_match = _OVERALL_RE.search(window)
    overall = _to_float(overall_match.group(1)) if overall_match else 0.0

    pass_match = _PASS_RATE_RE.search(window)
    pass_rate = _to_float(pass_match.group(1)) if pass_match else 0.0

    overall = overall or 0.0
    pass_rate = pass_rate or 0.0
    if overall <= 0 and pass_rate <= 0:
        return None

    languages: Dict[str, float] = {}
    for pattern in _LANGUAGE_RES:
        for lang, pct in pattern.findall(window):
            value = _to_float(pct)
            if value is not None:
                languages.setdefault(lang.lower(), value)

    return SanityHarnessEntry(
        agent=agent or f"Agent #{rank}",
        model=model,
        overall=pass_rate if pass_rate > 0 else overall,
        languages=languages,
    )


def parse_sanity_harness_html(html: str) -> SanityHarnessData:
    """Parse the SanityHarness grid into a ranked summary.

    Each entry starts at a ``#N</div>`` rank marker; fields are read from the
    text up to the next marker (at most ``SANITY_WINDOW_CHARS``).

    Raises:
        LeaderboardParseError: No usable entries were found.
    """
    markers = list(_RANK_RE.finditer(html))
    entries: List[SanityHarnessEntry] = []
    for i, marker in enumerate(markers):
        start = marker.start()
        end = min(len(html), start + SANITY_WINDOW_CHARS)
        if i + 1 < len(markers):
            end = min(end, markers[i + 1].start())
        entry = _parse_sanity_entry(int(marker.group(1)), html[start:end])
        if entry:
            entries.append(entry)

    if not entries:
        raise LeaderboardParseError("SanityHarness: No entries parsed from HTML")

    entries.sort(key=lambda e: e.overall, reverse=True)
    top = entries[0]
    median = round_half_up(entries[len(entries) // 2].overall, 1)
    breakdown = ", ".join(
        f"{lang}: {format_number(pct)}%" for lang, pct in top.languages.items()
    )

    return SanityHarnessData(
        top_pass_rate=top.overall,
        top_agent=top.agent,
        top_model=top.model,
        median_pass_rate=median,
        language_breakdown=breakdown or "N/A",
        entries=entries[:SANITY_MAX_ENTRIES],
    )


# ── Fetchers ──────────────────────────────────────────────────────────────────

def _get_text(url: str, retry: RetryPolicy) -> str:
    def request() -> str:
        resp = requests.get(url, headers={"User-Agent": _USER_AGENT}, timeout=20)
        if resp.status_code != 200:
            raise RuntimeError(f"{url} fetch failed: HTTP {resp.status_code}")
        return resp.text

    return call_with_retries(
        request,
        max_attempts=retry.max_attempts,
        backoff=exponential_backoff(retry.base_delay),
        label=f"GET {url}",
    )


class SWEBenchLeaderboard(LeaderboardProvider):
    """swebench.com verified/bash-only tracks plus Scale's Pro tracks."""

    key = "swe_bench"

    def __init__(
        self,
        url: str = SWEBENCH_URL,
        pro_public_url: Optional[str] = SCALE_PRO_PUBLIC_URL,
        pro_private_url: Optional[str] = SCALE_PRO_PRIVATE_URL,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        self.url = url
        self.pro_public_url = pro_public_url
        self.pro_private_url = pro_private_url
        self.retry = retry or RetryPolicy()

    def fetch(self) -> Dict[str, Any]:
        data = parse_swebench_html(_get_text(self.url, self.retry))

        # Pro tracks are optional extras; a Scale outage keeps the main result.
        for url, attrs in (
            (self.pro_public_url, ("top_pro", "top_pro_model")),
            (self.pro_private_url, ("top_pro_private", "top_pro_private_model")),
        ):
            if not url:
                continue
            try:
                best = parse_scale_leaderboard(_get_text(url, self.retry))
            except Exception as exc:
                logger.error(f"SWEBenchLeaderboard: {url} unavailable: {exc}")
                continue
            if best:
                setattr(data, attrs[0], best[0])
                setattr(data, attrs[1], best[1])

        if data.top_verified == 0 and data.top_bash_only == 0 and data.top_pro == 0:
            raise LeaderboardParseError("SWE-bench: no scores found on any track")

        logger.info(
            f"SWEBenchLeaderboard: verified={data.top_verified} "
            f"bash_only={data.top_bash_only} pro={data.top_pro} "
            f"pro_private={data.top_pro_private}"
        )
        return asdict(data)


class SanityHarnessLeaderboard(LeaderboardProvider):
    """Agent-level pass rates across six languages."""

    key = "sanity_harness"

    def __init__(self, url: str = SANITY_HARNESS_URL, retry: Optional[RetryPolicy] = None) -> None:
        self.url = url
        self.retry = retry or RetryPolicy()

    def fetch(self) -> Dict[str, Any]:
        data = parse_sanity_harness_html(_get_text(self.url, self.retry))
        logger.info(
            f"SanityHarnessLeaderboard: top={data.top_agent} ({data.top_model}) "
            f"{data.top_pass_rate}% median={data.median_pass_rate}%"
        )
        return asdict(data)


def swebench_from_dict(value: Dict[str, Any]) -> SWEBenchData:
    known = SWEBenchData.__dataclass_fields__
    return SWEBenchData(**{k: v for k, v in value.items() if k in known})


def sanity_harness_from_dict(value: Dict[str, Any]) -> SanityHarnessData:
    entries = [SanityHarnessEntry(**e) for e in value.get("entries", [])]
    return SanityHarnessData(
        top_pass_rate=value["top_pass_rate"],
        top_agent=value["top_agent"],
        top_model=value["top_model"],
        median_pass_rate=value["median_pass_rate"],
        language_breakdown=value.get("language_breakdown", "N/A"),
        entries=entries,
    )
