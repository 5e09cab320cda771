"""CRUD operations for gallery entries in DuckDB."""

import duckdb
import numpy as np

from missing_person_watch.models import GalleryEntry, format_timestamp, parse_timestamp

_COLUMNS = "id, name, age, description, contact_info, descriptors, photos, date_added, status"


def _next_id(conn: duckdb.DuckDBPyConnection) -> int:
    # Skips values already taken by an upsert under an explicit id.
    while True:
        entry_id = conn.execute("SELECT nextval('gallery_entries_id_seq')").fetchone()[0]
        taken = conn.execute(
            "SELECT 1 FROM gallery_entries WHERE id = ?", [entry_id]
        ).fetchone()
        if taken is None:
            return entry_id


def _bump_revision(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        UPDATE settings SET value = to_json(CAST(value AS BIGINT) + 1)
        WHERE key = 'gallery_revision'
        """
    )


def get_gallery_revision(conn: duckdb.DuckDBPyConnection) -> int:
    """Counter bumped by every gallery write; lets other processes spot changes."""
    row = conn.execute("SELECT value FROM settings WHERE key = 'gallery_revision'").fetchone()
    return int(row[0]) if row else 0


def _insert_row(conn: duckdb.DuckDBPyConnection, entry_id: int, entry: GalleryEntry) -> None:
    conn.execute(
        f"""
        INSERT INTO gallery_entries ({_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?::FLOAT[][], ?::BLOB[], ?, ?)
        """,
        [
            entry_id,
            entry.name,
            entry.age,
            entry.description,
            entry.contact_info,
            [np.asarray(d, dtype=np.float32).tolist() for d in entry.descriptors],
            list(entry.photos),
            format_timestamp(entry.date_added),
            entry.status,
        ],
    )


def insert_gallery_entry(conn: duckdb.DuckDBPyConnection, entry: GalleryEntry) -> int:
    """Insert an entry under a newly assigned id and return the id.

    Any id already set on ``entry`` is ignored.
    """
    entry_id = _next_id(conn)
    _insert_row(conn, entry_id, entry)
    _bump_revision(conn)
    return entry_id


def upsert_gallery_entry(conn: duckdb.DuckDBPyConnection, entry: GalleryEntry) -> int:
    """Replace the whole record stored under ``entry.id`` (insert if absent)."""
    if entry.id is None:
        return insert_gallery_entry(conn, entry)
    conn.execute("DELETE FROM gallery_entries WHERE id = ?", [entry.id])
    _insert_row(conn, entry.id, entry)
    _bump_revision(conn)
    return entry.id


def get_gallery_entry(conn: duckdb.DuckDBPyConnection, entry_id: int) -> GalleryEntry | None:
    """Look up a single entry by id."""
    row = conn.execute(
        f"SELECT {_COLUMNS} FROM gallery_entries WHERE id = ?", [entry_id]
    ).fetchone()
    if row is None:
        return None
    return _row_to_gallery_entry(row)


def list_gallery_entries(conn: duckdb.DuckDBPyConnection) -> list[GalleryEntry]:
    """Return every entry. Row order follows the engine and is not guaranteed."""
    rows = conn.execute(f"SELECT {_COLUMNS} FROM gallery_entries").fetchall()
    return [_row_to_gallery_entry(row) for row in rows]


def delete_gallery_entry(conn: duckdb.DuckDBPyConnection, entry_id: int) -> None:
    """Delete an entry. Missing ids are ignored; detection events are left alone."""
    conn.execute("DELETE FROM gallery_entries WHERE id = ?", [entry_id])
    _bump_revision(conn)


def count_gallery_entries(conn: duckdb.DuckDBPyConnection) -> int:
    row = conn.execute("SELECT COUNT(*) FROM gallery_entries").fetchone()
    return row[0] if row else 0


def filter_gallery_entries(entries: list[GalleryEntry], term: str) -> list[GalleryEntry]:
    """Case-insensitive substring match on name or description."""
    needle = term.lower()
    return [
        e
        for e in entries
        if needle in e.name.lower() or (e.description and needle in e.description.lower())
    ]


def _row_to_gallery_entry(row: tuple) -> GalleryEntry:
    """Convert a DB row to a GalleryEntry.

    Column order matches ``_COLUMNS``:
    0:id, 1:name, 2:age, 3:description, 4:contact_info,
    5:descriptors, 6:photos, 7:date_added, 8:status
    """
    descriptors = [np.array(d, dtype=np.float32) for d in (row[5] or [])]
    photos = [bytes(p) for p in (row[6] or [])]
    return GalleryEntry(
        id=row[0],
        name=row[1],
        age=row[2],
        description=row[3] or "",
        contact_info=row[4] or "",
        descriptors=descriptors,
        photos=photos,
        date_added=parse_timestamp(row[7]),
        status=row[8],
    )
