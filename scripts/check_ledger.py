"""Report session blocks whose counters disagree with the ledger.

Read-only: discrepancies are data-integrity bugs and are fixed by hand.
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
from studiohub.ledger import find_duplicate_active_blocks, reconcile_block
from studiohub.models import SessionBlock


def check_ledger(studio_id: int | None = None) -> list[str]:
    query = SessionBlock.query
    if studio_id is not None:
        query = query.filter_by(studio_id=studio_id)

    report = []
    for block in query.order_by(SessionBlock.block_id).all():
        for problem in reconcile_block(block):
            report.append(f"block {block.block_id} (customer {block.customer_id}): {problem}")

    for customer_id, block_studio_id, count in find_duplicate_active_blocks():
        if studio_id is None or block_studio_id == studio_id:
            report.append(f"customer {customer_id} has {count} active blocks at studio {block_studio_id}")
    return report


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile session blocks with the ledger.")
    parser.add_argument("--studio-id", type=int, default=None, help="Only check this studio")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    app = create_app()
    with app.app_context():
        report = check_ledger(args.studio_id)

    if not report:
        print("✅ Ledger is consistent")
        return 0
    print(f"❌ {len(report)} problem(s) found:")
    for line in report:
        print(f"  - {line}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
