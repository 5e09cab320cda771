"""DuckDB schema definition and migration."""

import duckdb

SCHEMA_VERSION = 2


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables and indexes if they do not exist."""
    # gallery_entries: one row per missing person
    _create_id_sequence(conn, "gallery_entries")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS gallery_entries (
            id           INTEGER PRIMARY KEY DEFAULT nextval('gallery_entries_id_seq'),
            name         VARCHAR NOT NULL,
            age          INTEGER,
            description  VARCHAR,
            contact_info VARCHAR,
            descriptors  FLOAT[][],
            photos       BLOB[],
            date_added   VARCHAR NOT NULL,
            status       VARCHAR DEFAULT 'active'
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_gallery_name ON gallery_entries(name)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_gallery_date_added ON gallery_entries(date_added)"
    )

    # detection_events: person_name is a denormalized copy, not a foreign key
    _create_id_sequence(conn, "detection_events")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS detection_events (
            id          INTEGER PRIMARY KEY DEFAULT nextval('detection_events_id_seq'),
            person_name VARCHAR NOT NULL,
            confidence  DOUBLE NOT NULL,
            timestamp   VARCHAR NOT NULL,
            image       BLOB,
            location    JSON,
            device_info JSON,
            status      VARCHAR DEFAULT 'new'
        )
    """)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_detection_person ON detection_events(person_name)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_detection_timestamp ON detection_events(timestamp)"
    )

    conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key   VARCHAR PRIMARY KEY,
            value JSON
        )
    """)

    # Migration for existing databases
    _migrate(conn)

    conn.execute(
        """
        INSERT INTO settings (key, value) VALUES ('schema_version', ?)
        ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
        """,
        [str(SCHEMA_VERSION)],
    )
    conn.execute(
        "INSERT INTO settings (key, value) VALUES ('gallery_revision', '0') ON CONFLICT DO NOTHING"
    )


def _create_id_sequence(conn: duckdb.DuckDBPyConnection, table: str) -> None:
    """Create ``<table>_id_seq`` starting past any ids already in ``table``.

    Sequence values are never handed out twice, so ids of deleted rows are
    not reused.
    """
    start = 1
    exists = conn.execute(
        "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?", [table]
    ).fetchone()[0]
    if exists:
        start = conn.execute(f"SELECT COALESCE(MAX(id), 0) + 1 FROM {table}").fetchone()[0]
    conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {table}_id_seq START {start}")


def _migrate(conn: duckdb.DuckDBPyConnection) -> None:
    """Add columns that may not exist in older schemas."""
    migrations = [
        "ALTER TABLE gallery_entries ADD COLUMN IF NOT EXISTS status VARCHAR DEFAULT 'active'",
        "ALTER TABLE detection_events ADD COLUMN IF NOT EXISTS status VARCHAR DEFAULT 'new'",
    ]
    for sql in migrations:
        conn.execute(sql)


def get_schema_version(conn: duckdb.DuckDBPyConnection) -> int | None:
    """Return the schema version recorded in settings, if any."""
    row = conn.execute("SELECT value FROM settings WHERE key = 'schema_version'").fetchone()
    if row is None:
        return None
    return int(row[0])
