"""
Prints today's Evidence Packet and its hash from the current store state,
without calling any scoring provider.

Run with:
    PYTHONPATH=. python scripts/dump_prompt.py [--config config.yaml]
"""

import argparse

from dotenv import load_dotenv

load_dotenv()

from oqscore.core.config import load_config  # noqa: E402
from oqscore.core.store import ScoreStore  # noqa: E402
from oqscore.pipeline.engine import DailyUpdater  # noqa: E402

DIVIDER = "=" * 70


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default="config.yaml")
    args = parser.parse_args()

    config = load_config(args.config)
    store = ScoreStore(config.get("db_path", "output/oqscore.db"))
    updater = DailyUpdater.from_config(config, store)

    prompt, prompt_hash = updater.preview_prompt()
    print(DIVIDER)
    print(f"  prompt hash: {prompt_hash}  ({len(prompt)} chars)")
    print(DIVIDER)
    print(prompt)


if __name__ == "__main__":
    main()
