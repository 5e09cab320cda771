"""CRUD operations for detection events in DuckDB."""

import json

import duckdb

from missing_person_watch.models import (
    DetectionEvent,
    GeoLocation,
    format_timestamp,
    parse_timestamp,
)

_COLUMNS = "id, person_name, confidence, timestamp, image, location, device_info, status"


def insert_detection_event(conn: duckdb.DuckDBPyConnection, event: DetectionEvent) -> int:
    """Insert an event under a newly assigned id and return the id.

    Confidence is stored rounded to two decimal places.
    """
    location_json = json.dumps(_location_to_dict(event.location)) if event.location else None
    row = conn.execute(
        """
        INSERT INTO detection_events (
            id, person_name, confidence, timestamp, image, location, device_info, status
        )
        VALUES (nextval('detection_events_id_seq'), ?, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        [
            event.person_name,
            round(float(event.confidence), 2),
            format_timestamp(event.timestamp),
            event.image,
            location_json,
            json.dumps(event.device_info or {}),
            event.status,
        ],
    ).fetchone()
    return row[0]


def list_detection_events(conn: duckdb.DuckDBPyConnection) -> list[DetectionEvent]:
    """Return all events, most recent first.

    Ordering is done here on parsed timestamps rather than relying on the
    timestamp index, since stored strings may carry different UTC offsets.
    """
    rows = conn.execute(f"SELECT {_COLUMNS} FROM detection_events").fetchall()
    events = [_row_to_detection_event(row) for row in rows]
    events.sort(key=lambda e: e.timestamp, reverse=True)
    return events


def list_detection_events_by_person(
    conn: duckdb.DuckDBPyConnection,
    person_name: str,
) -> list[DetectionEvent]:
    """Return events whose person_name equals ``person_name`` exactly."""
    rows = conn.execute(
        f"SELECT {_COLUMNS} FROM detection_events WHERE person_name = ?",
        [person_name],
    ).fetchall()
    return [_row_to_detection_event(row) for row in rows]


def clear_detection_events(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute("DELETE FROM detection_events")


def count_detection_events(conn: duckdb.DuckDBPyConnection) -> int:
    row = conn.execute("SELECT COUNT(*) FROM detection_events").fetchone()
    return row[0] if row else 0


def _location_to_dict(location: GeoLocation) -> dict:
    return {
        "latitude": location.latitude,
        "longitude": location.longitude,
        "accuracy": location.accuracy,
        "timestamp": format_timestamp(location.timestamp),
    }


def _location_from_dict(data: dict | None) -> GeoLocation | None:
    if not data:
        return None
    return GeoLocation(
        latitude=float(data["latitude"]),
        longitude=float(data["longitude"]),
        accuracy=data.get("accuracy"),
        timestamp=parse_timestamp(data["timestamp"]),
    )


def _load_json(raw):
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _row_to_detection_event(row: tuple) -> DetectionEvent:
    """Convert a database row to a DetectionEvent object."""
    return DetectionEvent(
        id=row[0],
        person_name=row[1],
        confidence=row[2],
        timestamp=parse_timestamp(row[3]),
        image=bytes(row[4]) if row[4] is not None else None,
        location=_location_from_dict(_load_json(row[5])),
        device_info=_load_json(row[6]) or {},
        status=row[7],
    )
