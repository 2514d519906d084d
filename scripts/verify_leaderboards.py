"""
Fetches every live leaderboard and prints what the parsers extract, so markup
changes on the source sites show up before the daily run does.

Run with:
    PYTHONPATH=. python scripts/verify_leaderboards.py
"""

import logging

from dotenv import load_dotenv

load_dotenv()

# Show INFO logs on console for verification
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(message)s",
    datefmt="%H:%M:%S",
)

from oqscore.core.numbers import format_number  # noqa: E402
from oqscore.providers.leaderboards import (  # noqa: E402
    SanityHarnessLeaderboard,
    SWEBenchLeaderboard,
    sanity_harness_from_dict,
    swebench_from_dict,
)

DIVIDER = "=" * 70


def show_swebench() -> None:
    data = swebench_from_dict(SWEBenchLeaderboard().fetch())
    rows = [
        ("Verified", data.top_verified, data.top_verified_model),
        ("Bash Only", data.top_bash_only, data.top_bash_only_model),
        ("Pro Public", data.top_pro, data.top_pro_model),
        ("Pro Private", data.top_pro_private, data.top_pro_private_model),
    ]
    for track, value, model in rows:
        print(f"  {track:<12} {format_number(value):>6}%  {model}")


def show_sanity_harness() -> None:
    data = sanity_harness_from_dict(SanityHarnessLeaderboard().fetch())
    print(f"  top:       {format_number(data.top_pass_rate)}% {data.top_agent} ({data.top_model})")
    print(f"  median:    {format_number(data.median_pass_rate)}%")
    print(f"  languages: {data.language_breakdown}")
    for i, entry in enumerate(data.entries, start=1):
        print(f"  {i:>2}. {entry.agent} ({entry.model}) {format_number(entry.overall)}%")


def main():
    for title, show in (("SWE-bench", show_swebench), ("SanityHarness", show_sanity_harness)):
        print(f"\n{DIVIDER}\n  {title}\n{DIVIDER}")
        try:
            show()
        except Exception as exc:
            print(f"  FAILED: {exc}")


if __name__ == "__main__":
    main()
