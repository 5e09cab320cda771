"""Export-file codec: ExportSnapshot <-> JSON document.

Layout::

    {
      "missingPersons": [{"id": 1, "name": ..., "photos": ["data:image/jpeg;base64,..."], ...}],
      "detections":     [{"id": 1, "personName": ..., "confidence": 0.87, ...}],
      "exportDate":     "2024-06-01T12:00:00+00:00",
      "version":        2
    }

Stored ids are written out for reference; import discards them.
"""

import base64
import binascii
import json
from datetime import UTC, datetime
from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image

from missing_person_watch.models import (
    DetectionEvent,
    ExportSnapshot,
    GalleryEntry,
    GeoLocation,
    format_timestamp,
    parse_timestamp,
)

_MIME_BY_FORMAT = {"JPEG": "image/jpeg", "PNG": "image/png", "GIF": "image/gif", "WEBP": "image/webp"}


def default_export_filename(now: datetime | None = None) -> str:
    """Return ``missing-persons-data-YYYY-MM-DD.json``."""
    now = now or datetime.now(UTC)
    return f"missing-persons-data-{now.date().isoformat()}.json"


def encode_data_url(content: bytes) -> str:
    """Encode image bytes as a ``data:`` URL, sniffing the format with Pillow."""
    try:
        fmt = Image.open(BytesIO(content)).format
    except Exception:
        fmt = None
    mime = _MIME_BY_FORMAT.get(fmt or "", "application/octet-stream")
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def decode_data_url(value: str) -> bytes:
    """Decode a ``data:`` URL (or bare base64 string) into bytes."""
    payload = value.split(",", 1)[1] if value.startswith("data:") else value
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 image payload: {exc}") from exc


def entry_to_dict(entry: GalleryEntry) -> dict:
    return {
        "id": entry.id,
        "name": entry.name,
        "age": entry.age,
        "description": entry.description,
        "contactInfo": entry.contact_info,
        "descriptors": [np.asarray(d, dtype=np.float32).tolist() for d in entry.descriptors],
        "photos": [encode_data_url(p) for p in entry.photos],
        "dateAdded": format_timestamp(entry.date_added),
        "status": entry.status,
    }


def entry_from_dict(data: dict) -> GalleryEntry:
    date_added = data.get("dateAdded")
    return GalleryEntry(
        id=data.get("id"),
        name=data.get("name") or "",
        age=data.get("age"),
        description=data.get("description") or "",
        contact_info=data.get("contactInfo") or "",
        descriptors=[np.array(d, dtype=np.float32) for d in data.get("descriptors") or []],
        photos=[decode_data_url(p) for p in data.get("photos") or []],
        date_added=parse_timestamp(date_added) if date_added else datetime.now(UTC),
        status=data.get("status") or "active",
    )


def event_to_dict(event: DetectionEvent) -> dict:
    location = None
    if event.location is not None:
        location = {
            "latitude": event.location.latitude,
            "longitude": event.location.longitude,
            "accuracy": event.location.accuracy,
            "timestamp": format_timestamp(event.location.timestamp),
        }
    return {
        "id": event.id,
        "personName": event.person_name,
        "confidence": event.confidence,
        "timestamp": format_timestamp(event.timestamp),
        "image": encode_data_url(event.image) if event.image else None,
        "location": location,
        "deviceInfo": event.device_info,
        "status": event.status,
    }


def event_from_dict(data: dict) -> DetectionEvent:
    loc = data.get("location")
    location = None
    if loc:
        location = GeoLocation(
            latitude=float(loc["latitude"]),
            longitude=float(loc["longitude"]),
            accuracy=loc.get("accuracy"),
            timestamp=parse_timestamp(loc["timestamp"]),
        )
    image = data.get("image")
    return DetectionEvent(
        id=data.get("id"),
        person_name=data["personName"],
        confidence=float(data["confidence"]),
        timestamp=parse_timestamp(data["timestamp"]),
        image=decode_data_url(image) if image else None,
        location=location,
        device_info=data.get("deviceInfo") or {},
        status=data.get("status") or "new",
    )


def snapshot_to_dict(snapshot: ExportSnapshot) -> dict:
    return {
        "missingPersons": [entry_to_dict(e) for e in snapshot.missing_persons],
        "detections": [event_to_dict(e) for e in snapshot.detections],
        "exportDate": format_timestamp(snapshot.export_date),
        "version": snapshot.version,
    }


def snapshot_from_dict(data: dict) -> ExportSnapshot:
    export_date = data.get("exportDate")
    return ExportSnapshot(
        missing_persons=[entry_from_dict(e) for e in data.get("missingPersons") or []],
        detections=[event_from_dict(e) for e in data.get("detections") or []],
        export_date=parse_timestamp(export_date) if export_date else datetime.now(UTC),
        version=int(data.get("version") or 0),
    )


def write_snapshot(snapshot: ExportSnapshot, path: Path) -> None:
    path.write_text(json.dumps(snapshot_to_dict(snapshot), indent=2), encoding="utf-8")


def read_snapshot(path: Path) -> ExportSnapshot:
    return snapshot_from_dict(json.loads(path.read_text(encoding="utf-8")))
