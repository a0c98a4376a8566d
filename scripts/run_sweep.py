"""Complete confirmed appointments whose end time has passed.

One pass per invocation; schedule it from cron, e.g.
``*/5 * * * * python scripts/run_sweep.py``.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path so ``studiohub`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from studiohub import create_app
from studiohub.appointments import sweep_auto_completions


def run_once(studio_id: int | None = None) -> int:
    result = sweep_auto_completions(studio_id)
    print(
        f"Completed {result.updated_count} appointment(s) "
        f"({result.completed_without_credit} without credit), {len(result.failures)} failure(s)"
    )
    for failure in result.failures:
        print(f"  - appointment {failure['appointment_id']}: {failure['reason_code']}")
    return 1 if result.failures else 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Auto-complete appointments that have ended.")
    parser.add_argument("--studio-id", type=int, default=None, help="Only sweep this studio")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        return run_once(args.studio_id)


if __name__ == "__main__":
    sys.exit(main())
