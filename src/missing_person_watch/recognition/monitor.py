"""Live detection loop: frames -> faces -> match + liveness -> detection events."""

import asyncio
import inspect
import locale
import logging
import platform
import socket
import time
from collections.abc import AsyncIterable, Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import duckdb
import numpy as np

from missing_person_watch.config import (
    CONFIDENCE_THRESHOLD,
    GALLERY_REFRESH_INTERVAL,
    GEOLOCATION_TIMEOUT,
    MATCH_DISTANCE_THRESHOLD,
)
from missing_person_watch.errors import MissingPersonWatchError
from missing_person_watch.liveness import is_alive, landmark_groups
from missing_person_watch.models import DetectionEvent, FaceObservation, GeoLocation
from missing_person_watch.recognition.capture import crop_face
from missing_person_watch.recognition.matcher import FaceMatcher
from missing_person_watch.store.record_store import RecordStore

logger = logging.getLogger(__name__)

AlertHandler = Callable[[DetectionEvent], Awaitable[None] | None]


@dataclass
class FaceResult:
    """Outcome for one face in one frame."""

    bbox: tuple[float, float, float, float]
    person_name: str | None
    confidence: float
    is_missing: bool
    is_alive: bool
    event: DetectionEvent | None = None


def device_info(frame: np.ndarray | None = None) -> dict:
    """Snapshot of the host that produced a detection."""
    info = {
        "platform": platform.platform(),
        "machine": platform.machine(),
        "pythonVersion": platform.python_version(),
        "hostname": socket.gethostname(),
        "language": locale.getlocale()[0],
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if frame is not None:
        height, width = frame.shape[:2]
        info["screenResolution"] = f"{width}x{height}"
    return info


class DetectionMonitor:
    """Run the matching pipeline over a stream of frames.

    Frame policy is *drop*: ``run`` pulls the next frame only once the
    current one is fully processed, and the frame source is expected to
    hand out its newest frame at that point (see ``CameraStream``). Frames
    produced in the meantime are never queued.
    """

    def __init__(
        self,
        store: RecordStore,
        embedder,
        geolocator=None,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        distance_threshold: float = MATCH_DISTANCE_THRESHOLD,
        liveness_enabled: bool = True,
        gallery_refresh_interval: float = GALLERY_REFRESH_INTERVAL,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.geolocator = geolocator
        self.confidence_threshold = confidence_threshold
        self.distance_threshold = distance_threshold
        self.liveness_enabled = liveness_enabled
        self.gallery_refresh_interval = gallery_refresh_interval
        self.matcher: FaceMatcher | None = None
        self.gallery_size = 0
        self.detection_count = 0
        self._alert_handlers: list[AlertHandler] = []
        self._running = False
        self._gallery_revision: int | None = None
        self._last_refresh = 0.0

    def add_alert_handler(self, handler: AlertHandler) -> None:
        self._alert_handlers.append(handler)

    async def reload_gallery(self) -> int:
        """Rebuild the matcher from the store; returns the number of matchable people."""
        # Revision first: a change landing between the two reads triggers one
        # more reload instead of being missed.
        self._gallery_revision = await self.store.get_gallery_revision()
        self._last_refresh = time.monotonic()
        entries = await self.store.get_all_gallery_entries()
        self.gallery_size = len(entries)
        self.matcher = FaceMatcher.from_entries(entries, self.distance_threshold)
        if self.matcher is None:
            logger.warning("No missing persons with face descriptors in database")
            return 0
        logger.info("Loaded %d missing persons", len(self.matcher.labels))
        return len(self.matcher.labels)

    async def refresh_gallery_if_changed(self) -> bool:
        """Reload the gallery if another writer changed it since the last load."""
        self._last_refresh = time.monotonic()
        revision = await self.store.get_gallery_revision()
        if revision is None or revision == self._gallery_revision:
            return False
        logger.info("Gallery changed (revision %s), reloading", revision)
        await self.reload_gallery()
        return True

    # ── per frame ────────────────────────────────────────────────────

    async def process_frame(self, frame: np.ndarray) -> list[FaceResult]:
        faces = await asyncio.to_thread(self.embedder.detect, frame)
        results = []
        for face in faces:
            results.append(await self._process_face(frame, face))
        return results

    async def _process_face(self, frame: np.ndarray, face: FaceObservation) -> FaceResult:
        person = None
        confidence = 0.0
        is_missing = False

        if self.matcher is not None and face.embedding is not None:
            match = self.matcher.find_best_match(face.embedding)
            if match.is_known:
                person = match.label
                confidence = match.confidence
                is_missing = confidence > self.confidence_threshold

        alive = self._check_liveness(face) if self.liveness_enabled else True
        result = FaceResult(
            bbox=face.bbox,
            person_name=person,
            confidence=confidence,
            is_missing=is_missing,
            is_alive=alive,
        )
        if is_missing and alive:
            result.event = await self._record_detection(frame, face, person, confidence)
        return result

    def _check_liveness(self, face: FaceObservation) -> bool:
        try:
            groups = landmark_groups(face.landmarks)
        except (TypeError, ValueError) as exc:
            logger.warning("Landmarks unavailable, treating face as live: %s", exc)
            return True
        return is_alive(groups)

    async def _record_detection(
        self,
        frame: np.ndarray,
        face: FaceObservation,
        person_name: str,
        confidence: float,
    ) -> DetectionEvent | None:
        try:
            image = crop_face(frame, face.bbox)
        except ValueError as exc:
            logger.warning("Could not capture detection image: %s", exc)
            image = None

        event = DetectionEvent(
            id=None,
            person_name=person_name,
            confidence=round(confidence, 2),
            timestamp=datetime.now(UTC),
            image=image,
            location=await self._locate(),
            device_info=device_info(frame),
            status="new",
        )
        try:
            event.id = await self.store.add_detection_event(event)
        except (MissingPersonWatchError, duckdb.Error):
            logger.error("Detection of %s could not be saved", person_name)
            return None

        self.detection_count += 1
        logger.warning("ALERT: Missing person detected - %s (%.2f)", person_name, event.confidence)
        for handler in self._alert_handlers:
            outcome = handler(event)
            if inspect.isawaitable(outcome):
                await outcome
        return event

    async def _locate(self) -> GeoLocation | None:
        if self.geolocator is None:
            return None
        try:
            return await asyncio.wait_for(self.geolocator.locate(), timeout=GEOLOCATION_TIMEOUT)
        except TimeoutError:
            logger.warning("Location lookup timed out")
            return None

    # ── loop ─────────────────────────────────────────────────────────

    async def run(self, frames: AsyncIterable[np.ndarray]) -> None:
        """Process frames until the source ends or ``stop()`` is called."""
        self._running = True
        logger.info("Detection active - monitoring for missing persons")
        async for frame in frames:
            if not self._running:
                break
            try:
                if time.monotonic() - self._last_refresh >= self.gallery_refresh_interval:
                    await self.refresh_gallery_if_changed()
                await self.process_frame(frame)
            except Exception:
                # A failing frame is treated as zero faces; the loop goes on.
                logger.exception("Detection error")
        self._running = False
        logger.info("Detection stopped")

    def stop(self) -> None:
        self._running = False

    @property
    def running(self) -> bool:
        return self._running
