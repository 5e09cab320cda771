"""Data models for gallery entries and detection events."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

import numpy as np

from missing_person_watch.errors import ValidationError


@dataclass
class GalleryEntry:
    """A missing person being searched for."""

    id: int | None
    name: str
    age: int | None = None
    description: str = ""
    contact_info: str = ""
    descriptors: list[np.ndarray] = field(default_factory=list)  # each shape (512,)
    photos: list[bytes] = field(default_factory=list)  # encoded images
    date_added: datetime = field(default_factory=lambda: datetime.now(UTC))
    status: str = "active"


@dataclass
class GeoLocation:
    """A single best-effort position fix."""

    latitude: float
    longitude: float
    accuracy: float | None
    timestamp: datetime


@dataclass
class DetectionEvent:
    """One camera frame that matched a gallery entry and passed liveness."""

    id: int | None
    person_name: str  # denormalized copy of GalleryEntry.name, not a key
    confidence: float
    timestamp: datetime
    image: bytes | None = None  # JPEG crop around the face
    location: GeoLocation | None = None
    device_info: dict = field(default_factory=dict)
    status: str = "new"


@dataclass
class FaceObservation:
    """A single face found in a camera frame or photo."""

    bbox: tuple[float, float, float, float]  # (x1, y1, x2, y2)
    det_score: float
    landmarks: np.ndarray | None  # shape (68, 2), iBUG layout
    embedding: np.ndarray | None  # shape (512,), L2-normalized


@dataclass
class ExportSnapshot:
    """Everything in the store at one point in time."""

    missing_persons: list[GalleryEntry]
    detections: list[DetectionEvent]
    export_date: datetime
    version: int


def validate_gallery_entry(entry: GalleryEntry) -> None:
    """Reject entries without a display name."""
    if not entry.name or not entry.name.strip():
        raise ValidationError("Gallery entry requires a non-empty name")


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into an aware datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat()
