"""Rewrite legacy (German) appointment status values to the canonical ones."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import text

# Ensure the project root is on sys.path so ``studiohub`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from studiohub import create_app
from studiohub.extensions import db
from studiohub.lifecycle import LEGACY_STATUS_ALIASES


def normalize_statuses(dry_run: bool = False) -> dict[str, int]:
    """Return how many rows each legacy value touched."""
    changed = {}
    # Raw SQL: the ORM refuses to load rows holding values outside the enum.
    # Aliases are lowercase; stored spellings like "Bestätigt" still match.
    for legacy, canonical in LEGACY_STATUS_ALIASES.items():
        if dry_run:
            count = db.session.execute(
                text("SELECT COUNT(*) FROM appointments WHERE lower(status) = :legacy"),
                {"legacy": legacy},
            ).scalar()
        else:
            count = db.session.execute(
                text("UPDATE appointments SET status = :canonical WHERE lower(status) = :legacy"),
                {"canonical": canonical, "legacy": legacy},
            ).rowcount
        if count:
            changed[legacy] = count

    if dry_run:
        db.session.rollback()
    else:
        db.session.commit()
    return changed


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Normalize legacy appointment statuses.")
    parser.add_argument("--dry-run", action="store_true", help="Only count affected rows")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    app = create_app()
    with app.app_context():
        changed = normalize_statuses(dry_run=args.dry_run)

    if not changed:
        print("No legacy statuses found.")
        return
    verb = "Would update" if args.dry_run else "Updated"
    for legacy, count in changed.items():
        print(f"{verb} {count} appointment(s): {legacy} -> {LEGACY_STATUS_ALIASES[legacy]}")


if __name__ == "__main__":
    main()
