"""Post-clone environment setup helper.

Run once after creating the virtualenv and installing the project:

    python -m venv .venv
    pip install -e ".[test]"
    python setup_env.py

This script:
1. Verifies all required imports resolve correctly.
2. Reports which scoring providers and data sources have API keys set.
3. Checks that config.yaml loads.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()


def verify_imports() -> None:
    print("Verifying core imports...")
    required = [
        ("requests", "requests"),
        ("yaml", "PyYAML"),
        ("dotenv", "python-dotenv"),
        ("feedparser", "feedparser"),
        ("pandas", "pandas"),
    ]
    all_ok = True
    for mod, pkg in required:
        try:
            __import__(mod)
            print(f"  [OK] {pkg}")
        except ImportError:
            print(f"  [MISSING] {pkg}  →  run: pip install {pkg}")
            all_ok = False

    if not all_ok:
        print('\nSome packages are missing. Run:  pip install -e ".[test]"')
        sys.exit(1)


def report_api_keys() -> None:
    print("\nChecking API keys...")
    keys = ["ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY", "FRED_API_KEY"]
    for key in keys:
        state = "set" if os.getenv(key) else "not set (source disabled)"
        print(f"  {key}: {state}")
    if not any(os.getenv(k) for k in keys[:3]):
        print("  [WARN] No scoring provider key set; scoring runs will fail.")


def verify_pipeline_imports() -> None:
    print("\nVerifying pipeline source imports...")
    try:
        from oqscore.core.config import load_config
        from oqscore.pipeline.engine import DailyUpdater  # noqa: F401

        load_config()
        print("  [OK] All pipeline modules import and config.yaml loads.")
    except Exception as exc:
        print(f"  [ERROR] Pipeline import failed: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    print("=" * 60)
    print("  oqscore: Environment Setup Check")
    print("=" * 60)
    verify_imports()
    report_api_keys()
    verify_pipeline_imports()
    print("\n" + "=" * 60)
    print("  Setup complete. You can now run: python run_pipeline.py cron")
    print("=" * 60)
