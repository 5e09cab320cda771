"""Shared DuckDB connection factory."""

import duckdb

from missing_person_watch.config import DB_PATH


def get_connection(
    db_path: str | None = None, init_schema: bool = True
) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection. Defaults to the project-root DB file."""
    path = db_path or str(DB_PATH)
    conn = duckdb.connect(path)

    if init_schema:
        from missing_person_watch.store.schema import ensure_schema

        ensure_schema(conn)
    return conn
