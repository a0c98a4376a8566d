#!/usr/bin/env python3
"""Create the StudioHub tables, optionally with a demo studio."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path so ``studiohub`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from studiohub import create_app
from studiohub.extensions import db
from studiohub.models import AppointmentType, Studio, User


def seed_demo_studio() -> Studio:
    owner = User(name="Demo Owner", email="owner@studiohub.local", role="studio_owner")
    db.session.add(owner)
    db.session.flush()

    studio = Studio(owner_id=owner.user_id, name="Demo Studio", city="Berlin", machine_count=2)
    db.session.add(studio)
    db.session.flush()
    owner.studio_id = studio.studio_id

    db.session.add_all([
        AppointmentType(studio_id=studio.studio_id, name="Treatment", duration_minutes=60),
        AppointmentType(
            studio_id=studio.studio_id,
            name="Trial session",
            duration_minutes=30,
            consumes_session=False,
            is_probe=True,
            color="#17a2b8",
        ),
        User(name="Demo Customer", email="customer@studiohub.local", role="customer", studio_id=studio.studio_id),
    ])
    db.session.commit()
    return studio


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize database tables.")
    parser.add_argument("--drop", action="store_true", help="Drop all tables first (destroys data)")
    parser.add_argument("--demo", action="store_true", help="Add a demo studio with two appointment types")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    app = create_app()
    with app.app_context():
        if args.drop:
            db.drop_all()
            print("Dropped existing tables")
        db.create_all()
        print(f"✅ Tables ready: {', '.join(sorted(db.metadata.tables))}")
        if args.demo:
            studio = seed_demo_studio()
            print(f"✅ Demo studio created with id {studio.studio_id}")


if __name__ == "__main__":
    main()
