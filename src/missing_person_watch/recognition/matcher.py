"""Nearest-label matching of a face embedding against the gallery."""

from dataclasses import dataclass

import numpy as np

from missing_person_watch.models import GalleryEntry

UNKNOWN_LABEL = "unknown"


@dataclass(frozen=True)
class Match:
    label: str
    distance: float

    @property
    def is_known(self) -> bool:
        return self.label != UNKNOWN_LABEL

    @property
    def confidence(self) -> float:
        """1 - distance, clamped to [0, 1]."""
        return float(min(1.0, max(0.0, 1.0 - self.distance)))


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return vectors / np.where(norms == 0, 1.0, norms)


class FaceMatcher:
    """Match embeddings against labelled reference descriptors.

    The distance to a label is the mean cosine distance from the query to
    each of that label's descriptors. The closest label wins unless its
    distance is at or above ``distance_threshold``, in which case the
    result is ``unknown``.
    """

    def __init__(
        self,
        labeled: list[tuple[str, list[np.ndarray]]],
        distance_threshold: float,
    ) -> None:
        self.distance_threshold = distance_threshold
        self._labels: list[str] = []
        self._descriptors: list[np.ndarray] = []
        for label, descriptors in labeled:
            if not descriptors:
                continue
            self._labels.append(label)
            self._descriptors.append(_normalize(np.stack(descriptors).astype(np.float32)))
        if not self._labels:
            raise ValueError("FaceMatcher requires at least one labelled descriptor")

    @classmethod
    def from_entries(
        cls,
        entries: list[GalleryEntry],
        distance_threshold: float,
    ) -> "FaceMatcher | None":
        """Build a matcher from gallery entries; None when none has descriptors.

        Entries without descriptors are skipped and can never be matched.
        """
        labeled = [(e.name, e.descriptors) for e in entries if e.descriptors]
        if not labeled:
            return None
        return cls(labeled, distance_threshold)

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    def find_best_match(self, query: np.ndarray) -> Match:
        q = _normalize(np.asarray(query, dtype=np.float32).reshape(-1))
        best_label = UNKNOWN_LABEL
        best_distance = float("inf")
        for label, refs in zip(self._labels, self._descriptors):
            distance = float(np.mean(1.0 - refs @ q))
            if distance < best_distance:
                best_label, best_distance = label, distance
        if best_distance >= self.distance_threshold:
            return Match(UNKNOWN_LABEL, best_distance)
        return Match(best_label, best_distance)
