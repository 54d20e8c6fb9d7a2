#!/usr/bin/env python3
import argparse
import os
from pathlib import Path

import psycopg
from psycopg.rows import dict_row

DB_URL_DEFAULT = os.getenv("DATABASE_URL") or "postgresql://localhost/kioskpos"
MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "db" / "migrations"


def get_conn(db_url):
    return psycopg.connect(db_url, row_factory=dict_row)


def ensure_migrations_table(cur):
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          name text PRIMARY KEY,
          applied_at timestamptz NOT NULL DEFAULT now()
        )
        """
    )


def applied_migrations(cur) -> set:
    cur.execute("SELECT name FROM schema_migrations")
    return {r["name"] for r in cur.fetchall()}


def pending_migrations(directory: Path, applied: set) -> list:
    return [p for p in sorted(directory.glob("*.sql")) if p.name not in applied]


def main():
    parser = argparse.ArgumentParser(description="Apply SQL migrations in filename order.")
    parser.add_argument("--db", default=DB_URL_DEFAULT)
    parser.add_argument("--dir", default=str(MIGRATIONS_DIR))
    parser.add_argument("--dry-run", action="store_true", help="List pending migrations without applying them")
    args = parser.parse_args()

    with get_conn(args.db) as conn:
        with conn.cursor() as cur:
            ensure_migrations_table(cur)
            todo = pending_migrations(Path(args.dir), applied_migrations(cur))
        if not todo:
            print("No pending migrations.")
            return
        for path in todo:
            if args.dry_run:
                print(f"pending: {path.name}")
                continue
            # One transaction per file so a broken migration leaves earlier ones applied.
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(path.read_text())
                    cur.execute("INSERT INTO schema_migrations (name) VALUES (%s)", (path.name,))
            print(f"applied: {path.name}")


if __name__ == "__main__":
    main()
