"""
Release phase: migrate the schema, then seed roles and sections.

Refuses to run against SQLite when ENV is production. Seeding never overwrites
an existing admin password and drops section keys that left the menu.

Usage:
  python scripts/release.py
  python scripts/release.py --skip-seed
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _release_db_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against SQLite in production. Point DATABASE_URL at Postgres.")
    return db_url


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def run_release(*, seed: bool = True) -> None:
    db_url = _release_db_url()
    print("=== release: migrations ===", flush=True)
    migrate(db_url)

    if not seed:
        print("=== release: seed skipped ===", flush=True)
        return

    print("=== release: seed ===", flush=True)
    from scripts import init_db

    pruned = init_db.seed_only(url=db_url)
    if pruned:
        print(f"Removed {pruned} section assignment(s) for sections no longer in the menu.", flush=True)
    print("=== release: done ===", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run migrations and seed data.")
    parser.add_argument("--skip-seed", action="store_true", help="Only run migrations")
    args = parser.parse_args()
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
