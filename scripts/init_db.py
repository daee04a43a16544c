#!/usr/bin/env python3
"""Apply db/schema.sql to the configured PostgreSQL database."""

from __future__ import annotations

import argparse
import asyncio
import os
from pathlib import Path

import asyncpg  # type: ignore[import-untyped]

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "db" / "schema.sql"


async def apply_schema(database_url: str, schema_sql: str) -> None:
    conn = await asyncpg.connect(dsn=database_url)
    try:
        await conn.execute(schema_sql)
    finally:
        await conn.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create jobboard tables if they do not exist.")
    parser.add_argument(
        "--database-url",
        default=os.getenv("JB_DATABASE_URL") or os.getenv("DATABASE_URL"),
        help="PostgreSQL DSN (defaults to JB_DATABASE_URL or DATABASE_URL)",
    )
    parser.add_argument("--print-only", action="store_true", help="Print the schema instead of applying it")
    args = parser.parse_args()

    schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
    if args.print_only:
        print(schema_sql)
        return
    if not args.database_url:
        parser.error("--database-url, JB_DATABASE_URL or DATABASE_URL is required")

    asyncio.run(apply_schema(args.database_url, schema_sql))
    print(f"applied {SCHEMA_PATH.name}")


if __name__ == "__main__":
    main()
