"""
Release-phase helper.

Goal:
- Apply the same production guardrails as create_app() before touching the database.
- Run alembic migrations, then confirm every mapped table exists.
- Seed code sequences (idempotent; never lowers a counter).

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def check_guardrails(env: str, db_url: str) -> None:
    if env not in ("prod", "production"):
        return
    if db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")
    # Operations cannot authorize callers without these.
    for name in ("AUTH_JWT_SECRET", "ADMIN_API_URL"):
        _require_env(name)


def missing_tables(db_url: str) -> list[str]:
    from sqlalchemy import create_engine, inspect as sa_inspect

    from app.edms.models import Base

    engine = create_engine(db_url, future=True)
    try:
        insp = sa_inspect(engine)
        return [name for name in sorted(Base.metadata.tables) if not insp.has_table(name)]
    finally:
        engine.dispose()


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    check_guardrails(env, db_url)

    print("=== EDMS release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    print("Running Alembic migrations...", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)

    missing = missing_tables(db_url)
    if missing:
        raise RuntimeError(f"Schema incomplete after migrations; missing tables: {', '.join(missing)}")

    print("Seeding code sequences (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("Seed complete.", flush=True)
    print("=== EDMS release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
