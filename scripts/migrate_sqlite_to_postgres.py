from __future__ import annotations

import argparse
import os
import sqlite3
from typing import Iterable

from presswire.db import connect_db

TABLES = ("source_queue", "articles")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Copy a PressWire SQLite store into PostgreSQL")
    parser.add_argument(
        "--sqlite",
        default=os.path.join(os.environ.get("PW_DATA_DIR", "/data"), "state.sqlite3"),
    )
    parser.add_argument("--pg-url", default=os.environ.get("PW_DB_URL", ""))
    return parser.parse_args()


def _table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def _chunked(rows: Iterable[tuple], size: int = 500) -> Iterable[list[tuple]]:
    batch: list[tuple] = []
    for row in rows:
        batch.append(row)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def main() -> int:
    args = _parse_args()
    if not args.pg_url:
        raise SystemExit("PW_DB_URL is required for Postgres migration")
    os.environ["PW_DB_URL"] = args.pg_url

    sqlite_conn = sqlite3.connect(args.sqlite)
    # connect_db applies the PostgreSQL migrations before anything is copied.
    pg_conn = connect_db(args.sqlite)

    for table in TABLES:
        columns = _table_columns(sqlite_conn, table)
        if not columns:
            continue
        cols_sql = ", ".join(columns)
        placeholders = ", ".join(["?"] * len(columns))
        insert_sql = f"INSERT OR IGNORE INTO {table} ({cols_sql}) VALUES ({placeholders})"
        cursor = sqlite_conn.execute(f"SELECT {cols_sql} FROM {table} ORDER BY id")
        copied = 0
        for batch in _chunked(cursor.fetchall(), 500):
            with pg_conn.transaction():
                pg_conn.executemany(insert_sql, batch)
            copied += len(batch)
        pg_conn.execute(
            f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
            f"COALESCE((SELECT MAX(id) FROM {table}), 1))"
        )
        print(f"{table}: {copied} rows")

    sqlite_conn.close()
    pg_conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
