"""Apply the queue engine schema to a Postgres database.

Usage:
    python -m src.scripts.apply_schema [--database-url postgres://...]

Falls back to DATABASE_URL from the environment / .env file.
"""

import argparse
import sys
from pathlib import Path

import psycopg2

from src.config.settings import get_settings

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "db" / "schema.sql"


def apply_schema(connection_string: str, schema_path: Path = SCHEMA_PATH) -> bool:
    print(f"[INFO] Applying {schema_path.name}...")
    try:
        conn = psycopg2.connect(connection_string)
    except psycopg2.OperationalError as e:
        print(f"[ERROR] Could not connect: {e}")
        return False

    try:
        with conn, conn.cursor() as cur:
            cur.execute(schema_path.read_text(encoding="utf-8"))
        print("[SUCCESS] Schema applied successfully!")
        return True
    except psycopg2.Error as e:
        print(f"[ERROR] Failed to apply schema: {e}")
        return False
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args(argv)

    url = args.database_url or get_settings().database_url
    if not url:
        print("[ERROR] DATABASE_URL not set and --database-url not given.")
        return 1
    return 0 if apply_schema(url) else 1


if __name__ == "__main__":
    sys.exit(main())
