"""Gallery curation: validated add-flow, delete, import, and change notification."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from missing_person_watch.errors import ValidationError
from missing_person_watch.models import ExportSnapshot, GalleryEntry
from missing_person_watch.store.record_store import RecordStore

logger = logging.getLogger(__name__)

GalleryListener = Callable[[], Awaitable[object]]


@dataclass
class AddPersonResult:
    id: int
    descriptor_count: int
    skipped_photos: list[int] = field(default_factory=list)  # 0-based photo positions


class GalleryAdmin:
    """Admin operations on the gallery.

    ``embedder`` is any object with ``embed_photo(bytes) -> ndarray | None``
    (normally an ``InsightFaceEmbedder``). Without one, people are stored
    with no descriptors and cannot be matched until re-enrolled.
    """

    def __init__(self, store: RecordStore, embedder=None) -> None:
        self.store = store
        self.embedder = embedder
        self._listeners: list[GalleryListener] = []

    def add_listener(self, listener: GalleryListener) -> None:
        """Register a coroutine function called after every gallery change."""
        self._listeners.append(listener)

    async def _notify(self) -> None:
        # Runs after the change is committed, so a failing listener must not
        # make the caller report the change as lost.
        for listener in self._listeners:
            try:
                await listener()
            except Exception:
                logger.exception("Gallery change listener failed")

    async def extract_descriptors(self, photos: list[bytes]) -> tuple[list, list[int]]:
        """Embed each photo; photos with no usable face are skipped, not fatal."""
        descriptors = []
        skipped = []
        for i, content in enumerate(photos):
            try:
                embedding = await asyncio.to_thread(self.embedder.embed_photo, content)
            except Exception as exc:
                logger.error("Error processing image %d: %s", i + 1, exc)
                skipped.append(i)
                continue
            if embedding is None:
                logger.warning("No face detected in image %d", i + 1)
                skipped.append(i)
                continue
            descriptors.append(embedding)
        return descriptors, skipped

    async def add_person(
        self,
        name: str,
        photos: list[bytes],
        age: int | None = None,
        description: str = "",
        contact_info: str = "",
    ) -> AddPersonResult:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Please enter a person name")
        if not photos:
            raise ValidationError("Please upload at least one photo")

        if self.embedder is not None:
            descriptors, skipped = await self.extract_descriptors(photos)
            if not descriptors:
                logger.warning(
                    "No faces detected in photos for %s; face recognition will not work", name
                )
        else:
            logger.info("Adding %s without face recognition data (models not loaded)", name)
            descriptors, skipped = [], []

        entry = GalleryEntry(
            id=None,
            name=name,
            age=age,
            description=description.strip(),
            contact_info=contact_info.strip(),
            descriptors=descriptors,
            photos=list(photos),
            date_added=datetime.now(UTC),
            status="active",
        )
        entry_id = await self.store.add_gallery_entry(entry)
        await self._notify()
        return AddPersonResult(entry_id, len(descriptors), skipped)

    async def delete_person(self, entry_id: int) -> None:
        """Remove a person. Their past detection events are kept."""
        await self.store.delete_gallery_entry(entry_id)
        await self._notify()

    async def clear_detections(self) -> None:
        await self.store.clear_all_detection_events()

    async def import_snapshot(self, snapshot: ExportSnapshot | dict) -> tuple[int, int]:
        counts = await self.store.import_all(snapshot)
        await self._notify()
        return counts
