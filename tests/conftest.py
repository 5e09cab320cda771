"""Shared test fixtures."""

from datetime import UTC, datetime

import cv2
import duckdb
import numpy as np
import pytest

from missing_person_watch.models import DetectionEvent, FaceObservation, GalleryEntry
from missing_person_watch.store.schema import ensure_schema


@pytest.fixture
def db_conn():
    """In-memory DuckDB connection with schema initialized."""
    conn = duckdb.connect(":memory:")
    ensure_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A small encoded JPEG."""
    img = np.full((32, 32, 3), 128, dtype=np.uint8)
    ok, buf = cv2.imencode(".jpg", img)
    assert ok
    return buf.tobytes()


def unit_vector(seed: int, dim: int = 512) -> np.ndarray:
    rng = np.random.default_rng(seed)
    vec = rng.standard_normal(dim).astype(np.float32)
    return vec / np.linalg.norm(vec)


def make_entry(
    name: str = "Jane Doe",
    descriptors: list[np.ndarray] | None = None,
    photos: list[bytes] | None = None,
    date_added: datetime | None = None,
) -> GalleryEntry:
    """Helper to create a GalleryEntry with sensible defaults."""
    return GalleryEntry(
        id=None,
        name=name,
        age=34,
        description="Last seen near the station",
        contact_info="555-0100",
        descriptors=descriptors if descriptors is not None else [],
        photos=photos if photos is not None else [b"photo-bytes"],
        date_added=date_added or datetime(2024, 1, 1, tzinfo=UTC),
        status="active",
    )


def make_event(
    person_name: str = "Jane Doe",
    timestamp: datetime | None = None,
    confidence: float = 0.87,
) -> DetectionEvent:
    """Helper to create a DetectionEvent with sensible defaults."""
    return DetectionEvent(
        id=None,
        person_name=person_name,
        confidence=confidence,
        timestamp=timestamp or datetime(2024, 1, 1, tzinfo=UTC),
        image=b"crop-bytes",
        location=None,
        device_info={"platform": "test"},
        status="new",
    )


def eye_points(half_height: float = 3.0) -> list[tuple[float, float]]:
    """Six eye points with width 10 and EAR = 2 * half_height / 10."""
    return [
        (0.0, 0.0),
        (3.0, half_height),
        (7.0, half_height),
        (10.0, 0.0),
        (7.0, -half_height),
        (3.0, -half_height),
    ]


def mouth_points(half_gap: float = 1.0) -> list[tuple[float, float]]:
    """Twenty mouth points; inner lips (12-19) give MAR = 2 * half_gap / 10."""
    outer = [(float(i), 10.0) for i in range(12)]
    inner = [
        (0.0, 0.0),  # 12
        (2.0, half_gap),  # 13
        (5.0, half_gap),  # 14
        (8.0, half_gap),  # 15
        (10.0, 0.0),  # 16
        (8.0, -half_gap),  # 17
        (5.0, -half_gap),  # 18
        (2.0, -half_gap),  # 19
    ]
    return outer + inner


def make_landmarks_68(eye_half_height: float = 3.0, mouth_half_gap: float = 1.0) -> np.ndarray:
    """A 68-point landmark array whose eye and mouth groups are well-formed."""
    points = np.zeros((68, 2), dtype=np.float64)
    points[:, 0] = np.arange(68)
    points[36:42] = np.array(eye_points(eye_half_height)) + [100.0, 100.0]
    points[42:48] = np.array(eye_points(eye_half_height)) + [140.0, 100.0]
    points[48:68] = np.array(mouth_points(mouth_half_gap)) + [115.0, 160.0]
    return points


def make_observation(
    embedding: np.ndarray | None,
    landmarks: np.ndarray | None = None,
    bbox: tuple[float, float, float, float] = (40.0, 40.0, 80.0, 90.0),
) -> FaceObservation:
    return FaceObservation(
        bbox=bbox,
        det_score=0.99,
        landmarks=landmarks if landmarks is not None else make_landmarks_68(),
        embedding=embedding,
    )
