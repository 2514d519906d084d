"""One Question consensus index entry point.

Usage:
    python run_pipeline.py score     # today's snapshot (idempotent)
    python run_pipeline.py rescore   # delete today's snapshot and score again
    python run_pipeline.py fetch     # articles + leaderboards + FRED
    python run_pipeline.py cron      # scheduled tick: fetch then score, once per day

Loads config.yaml, builds the DailyUpdater and reports success/failure to
stdout and the pipeline log.
"""

import argparse
import sys

from dotenv import load_dotenv

load_dotenv()  # must precede oqscore imports so env vars are available at module load

from oqscore.core.config import load_config  # noqa: E402
from oqscore.core.errors import OQError  # noqa: E402
from oqscore.core.logger import logger  # noqa: E402
from oqscore.core.store import ScoreStore  # noqa: E402
from oqscore.pipeline.engine import DailyUpdater  # noqa: E402

COMMANDS = ("score", "rescore", "fetch", "cron")


def _run(updater: DailyUpdater, command: str) -> int:
    if command == "score":
        result = updater.run_daily_update()
        suffix = " (already exists)" if result.already_exists else ""
        print(f"SUCCESS: {result.date} score={result.score} delta={result.delta}{suffix}")
        return 0

    if command == "rescore":
        result = updater.rescore()
        print(f"SUCCESS: {result.date} rescored, score={result.score} delta={result.delta}")
        return 0

    if command == "fetch":
        feeds = updater.fetch_feeds()
        external = updater.fetch_external_data()
        print(f"SUCCESS: {feeds['fetched']} new article(s), external={external}")
        for err in feeds["errors"]:
            print(f"  feed error: {err}")
        return 0

    run = updater.run_cron_tick()
    if run is None:
        print("SUCCESS: already completed today")
        return 0
    print(f"cron {run.id}: fetch={run.fetch_status} score={run.score_status}")
    if not run.completed:
        print(f"ERROR: {run.error}", file=sys.stderr)
        return 1
    return 0


def main(argv=None) -> int:
    """Run one command. Returns 0 on success, 1 on failure."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--config", default="config.yaml", help="path to config.yaml")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"run_pipeline: failed to load config: {exc}")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    store = ScoreStore(config.get("db_path", "output/oqscore.db"))
    updater = DailyUpdater.from_config(config, store)

    try:
        return _run(updater, args.command)
    except OQError as exc:
        logger.error(f"run_pipeline: {args.command} failed: {exc}")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        logger.error(f"run_pipeline: {args.command} raised: {exc}", exc_info=True)
        print(f"ERROR: {args.command} failed, {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
