"""Camera capture and face cropping with OpenCV."""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator

import cv2
import numpy as np

from missing_person_watch.config import (
    CAMERA_HEIGHT,
    CAMERA_WIDTH,
    CAPTURE_JPEG_QUALITY,
    CAPTURE_PADDING,
)
from missing_person_watch.errors import CameraUnavailableError

logger = logging.getLogger(__name__)


def crop_face(
    frame: np.ndarray,
    bbox: tuple[float, float, float, float],
    padding: int = CAPTURE_PADDING,
    quality: int = CAPTURE_JPEG_QUALITY,
) -> bytes:
    """Crop ``bbox`` plus ``padding`` pixels on each side and JPEG-encode it.

    The padded box is clamped to the frame.
    """
    height, width = frame.shape[:2]
    x1, y1, x2, y2 = bbox
    left = max(0, int(x1) - padding)
    top = max(0, int(y1) - padding)
    right = min(width, int(x2) + padding)
    bottom = min(height, int(y2) + padding)
    if right <= left or bottom <= top:
        raise ValueError(f"Face box {bbox} lies outside the {width}x{height} frame")
    ok, buf = cv2.imencode(
        ".jpg", frame[top:bottom, left:right], [cv2.IMWRITE_JPEG_QUALITY, quality]
    )
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buf.tobytes()


class CameraStream:
    """Continuously read frames, keeping only the most recent one.

    A reader thread overwrites a single slot, so a consumer that is slower
    than the camera skips frames instead of building a backlog.
    """

    def __init__(
        self,
        source: int | str = 0,
        width: int = CAMERA_WIDTH,
        height: int = CAMERA_HEIGHT,
    ) -> None:
        self.source = source
        self.width = width
        self.height = height
        self._cap: cv2.VideoCapture | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._fresh = threading.Event()
        self._stopped = threading.Event()
        self._frame: np.ndarray | None = None

    def start(self) -> None:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailableError(f"Could not open camera source {self.source!r}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap = cap
        self._stopped.clear()
        self._thread = threading.Thread(target=self._reader, name="camera-reader", daemon=True)
        self._thread.start()
        logger.info(
            "Camera %r started at %dx%d",
            self.source,
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    def stop(self) -> None:
        self._stopped.set()
        self._fresh.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __enter__(self) -> "CameraStream":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _reader(self) -> None:
        while not self._stopped.is_set():
            ok, frame = self._cap.read()
            if not ok:
                logger.warning("Camera %r stopped delivering frames", self.source)
                self._stopped.set()
                self._fresh.set()
                return
            with self._lock:
                self._frame = frame
            self._fresh.set()

    def latest(self) -> np.ndarray | None:
        """Take the newest unread frame, or None if the stream has ended."""
        self._fresh.wait()
        with self._lock:
            frame, self._frame = self._frame, None
            self._fresh.clear()
        return frame

    async def frames(self) -> AsyncIterator[np.ndarray]:
        while not self._stopped.is_set():
            frame = await asyncio.to_thread(self.latest)
            if frame is None:
                continue
            yield frame
