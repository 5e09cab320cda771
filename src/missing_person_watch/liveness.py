"""Blink/mouth-shape liveness heuristic over 68-point facial landmarks.

The verdict is a single boolean per face:

    live = mean(EAR(left_eye), EAR(right_eye)) > 0.2 and MAR(mouth) < 0.8

Input that cannot be scored (missing groups, wrong point counts, non-numeric
values) yields ``True``. This fail-open default means a face whose landmarks
are unusable is never flagged as a spoof, which an attacker could exploit.
Degenerate but well-formed geometry (zero eye or mouth width) yields
``False``.
"""

import logging
from collections.abc import Mapping, Sequence

import numpy as np

logger = logging.getLogger(__name__)

EYE_AR_THRESHOLD = 0.2
MOUTH_AR_THRESHOLD = 0.8

EYE_POINTS = 6
MOUTH_POINTS = 20

# iBUG 68-point layout
LEFT_EYE_SLICE = slice(36, 42)
RIGHT_EYE_SLICE = slice(42, 48)
MOUTH_SLICE = slice(48, 68)


def _as_points(points: Sequence, count: int) -> np.ndarray:
    arr = np.asarray(points, dtype=np.float64)
    if arr.shape != (count, 2):
        raise ValueError(f"expected {count} 2-D points, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("landmark points must be finite")
    return arr


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


def eye_aspect_ratio(eye: Sequence) -> float | None:
    """EAR for a 6-point eye contour, or None when the eye has zero width."""
    p = _as_points(eye, EYE_POINTS)
    width = _dist(p[0], p[3])
    if width == 0.0:
        return None
    return (_dist(p[1], p[5]) + _dist(p[2], p[4])) / (2.0 * width)


def mouth_aspect_ratio(mouth: Sequence) -> float | None:
    """MAR over the inner-lip points of a 20-point mouth contour."""
    p = _as_points(mouth, MOUTH_POINTS)
    width = _dist(p[12], p[16])
    if width == 0.0:
        return None
    return (_dist(p[13], p[19]) + _dist(p[14], p[18]) + _dist(p[15], p[17])) / (3.0 * width)


def landmark_groups(points_68: Sequence) -> dict[str, np.ndarray]:
    """Split a (68, 2+) landmark array into the groups ``is_alive`` expects."""
    arr = np.asarray(points_68, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[0] != 68 or arr.shape[1] < 2:
        raise ValueError(f"expected 68 landmark points, got shape {arr.shape}")
    arr = arr[:, :2]
    return {
        "left_eye": arr[LEFT_EYE_SLICE],
        "right_eye": arr[RIGHT_EYE_SLICE],
        "mouth": arr[MOUTH_SLICE],
    }


def is_alive(landmarks: Mapping[str, Sequence] | None) -> bool:
    """Return the liveness verdict for one face. Never raises."""
    try:
        left = eye_aspect_ratio(landmarks["left_eye"])
        right = eye_aspect_ratio(landmarks["right_eye"])
        mouth = mouth_aspect_ratio(landmarks["mouth"])
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        logger.warning("Liveness check failed, treating face as live: %s", exc)
        return True

    if left is None or right is None or mouth is None:
        logger.debug("Degenerate landmark geometry, treating face as not live")
        return False

    avg_ear = (left + right) / 2.0
    return avg_ear > EYE_AR_THRESHOLD and mouth < MOUTH_AR_THRESHOLD
