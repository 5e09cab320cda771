"""Async record store for gallery entries and detection events.

The store is an explicitly constructed object with its own lifecycle::

    UNINITIALIZED --open()--> OPENING --> READY
                                     \\--> UNAVAILABLE  (engine could not be opened)

Every operation first waits for initialization, polling every
``poll_interval`` seconds for at most ``max_attempts`` checks. If the store
is still not initialized, writes raise ``StoreTimeoutError`` and reads log
the timeout and return an empty result. UNAVAILABLE counts as initialized:
reads then return empty results and writes raise ``StoreUnavailableError``.

DuckDB calls run on a single dedicated worker thread, so the event loop is
never blocked and a connection is only ever touched from one thread. Each
operation runs in its own transaction; there is no atomicity across
operations.

DuckDB lets only one process at a time open a file read-write. A store
created with ``shared=True`` therefore holds no connection between
operations: each one connects, runs and disconnects, retrying while another
process holds the file. The CLIs use this mode so that the watcher and the
admin tool can work on the same database.
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import UTC, datetime
from enum import Enum

import duckdb
from tenacity import (
    AsyncRetrying,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from missing_person_watch.config import (
    DB_PATH,
    STORE_INIT_MAX_ATTEMPTS,
    STORE_INIT_POLL_INTERVAL,
    STORE_LOCK_MAX_ATTEMPTS,
    STORE_LOCK_RETRY_INTERVAL,
)
from missing_person_watch.db import get_connection
from missing_person_watch.errors import StoreTimeoutError, StoreUnavailableError
from missing_person_watch.models import (
    DetectionEvent,
    ExportSnapshot,
    GalleryEntry,
    validate_gallery_entry,
)
from missing_person_watch.store import detection_repository, gallery_repository
from missing_person_watch.store.schema import SCHEMA_VERSION
from missing_person_watch.store.snapshot import snapshot_from_dict

logger = logging.getLogger(__name__)


class StoreState(Enum):
    UNINITIALIZED = "uninitialized"
    OPENING = "opening"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class _NotInitialized(Exception):
    pass


def _in_transaction(conn: duckdb.DuckDBPyConnection, fn, *args):
    conn.begin()
    try:
        result = fn(conn, *args)
    except Exception:
        conn.rollback()
        raise
    conn.commit()
    return result


def _connect_when_free(
    db_path: str, init_schema: bool, attempts: int, interval: float
) -> duckdb.DuckDBPyConnection:
    """Connect, retrying while another process holds the file lock."""
    for attempt in Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(duckdb.IOException),
        reraise=True,
    ):
        with attempt:
            return get_connection(db_path, init_schema=init_schema)


class RecordStore:
    """Local persistence for the gallery and the detection history."""

    def __init__(
        self,
        db_path: str | None = None,
        poll_interval: float = STORE_INIT_POLL_INTERVAL,
        max_attempts: int = STORE_INIT_MAX_ATTEMPTS,
        shared: bool = False,
        lock_retry_interval: float = STORE_LOCK_RETRY_INTERVAL,
        lock_max_attempts: int = STORE_LOCK_MAX_ATTEMPTS,
    ) -> None:
        self.db_path = db_path or str(DB_PATH)
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.shared = shared
        self.lock_retry_interval = lock_retry_interval
        self.lock_max_attempts = lock_max_attempts
        self.state = StoreState.UNINITIALIZED
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._executor: ThreadPoolExecutor | None = None

    # ── lifecycle ────────────────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self.state in (StoreState.READY, StoreState.UNAVAILABLE)

    @property
    def available(self) -> bool:
        return self.state is StoreState.READY

    async def open(self) -> None:
        """Open the database. Failure leaves the store UNAVAILABLE, never raises."""
        if self.state is not StoreState.UNINITIALIZED:
            return
        self.state = StoreState.OPENING
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="record-store")
        try:
            conn = await self._run(self._connect, True)
            if self.shared:
                await self._run(conn.close)
            else:
                self._conn = conn
        except Exception:
            logger.exception("Record store could not be opened at %s", self.db_path)
            self.state = StoreState.UNAVAILABLE
            return
        self.state = StoreState.READY
        logger.info("Record store opened at %s (schema v%d)", self.db_path, SCHEMA_VERSION)

    async def close(self) -> None:
        if self._conn is not None:
            await self._run(self._conn.close)
            self._conn = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.state = StoreState.UNINITIALIZED

    async def __aenter__(self) -> "RecordStore":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def wait_until_initialized(self) -> None:
        """Poll until open() has finished, or raise StoreTimeoutError."""
        if self.initialized:
            return
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.poll_interval),
                retry=retry_if_exception_type(_NotInitialized),
                reraise=True,
            ):
                with attempt:
                    if not self.initialized:
                        raise _NotInitialized
        except _NotInitialized as exc:
            raise StoreTimeoutError("Record store initialization timeout") from exc

    # ── plumbing ─────────────────────────────────────────────────────

    def _connect(self, init_schema: bool) -> duckdb.DuckDBPyConnection:
        if not self.shared:
            return get_connection(self.db_path, init_schema=init_schema)
        return _connect_when_free(
            self.db_path, init_schema, self.lock_max_attempts, self.lock_retry_interval
        )

    def _call(self, fn, *args):
        """Run ``fn(conn, *args)`` on the worker thread."""
        if self._conn is not None:
            return fn(self._conn, *args)
        conn = self._connect(False)
        try:
            return fn(conn, *args)
        finally:
            conn.close()

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    async def _read(self, what: str, fn, *args, default):
        try:
            await self.wait_until_initialized()
        except StoreTimeoutError:
            logger.error("Error reading %s: record store initialization timeout", what)
            return default
        if not self.available:
            return default
        try:
            return await self._run(self._call, fn, *args)
        except (duckdb.Error, ValueError):
            logger.exception("Error reading %s", what)
            return default

    async def _write(self, what: str, fn, *args):
        await self.wait_until_initialized()
        if not self.available:
            raise StoreUnavailableError("Database not available")
        try:
            return await self._run(self._call, _in_transaction, fn, *args)
        except Exception:
            logger.exception("Error %s", what)
            raise

    # ── gallery entries ──────────────────────────────────────────────

    async def add_gallery_entry(self, entry: GalleryEntry) -> int:
        """Persist a new entry and return its assigned id."""
        validate_gallery_entry(entry)
        entry_id = await self._write(
            "adding gallery entry", gallery_repository.insert_gallery_entry, entry
        )
        logger.info("Gallery entry %d added (%s)", entry_id, entry.name)
        return entry_id

    async def get_all_gallery_entries(self) -> list[GalleryEntry]:
        return await self._read(
            "gallery entries", gallery_repository.list_gallery_entries, default=[]
        )

    async def get_gallery_entry(self, entry_id: int) -> GalleryEntry | None:
        return await self._read(
            "gallery entry", gallery_repository.get_gallery_entry, entry_id, default=None
        )

    async def update_gallery_entry(self, entry: GalleryEntry) -> int:
        """Replace the whole stored record with ``entry`` (upsert by id)."""
        validate_gallery_entry(entry)
        return await self._write(
            "updating gallery entry", gallery_repository.upsert_gallery_entry, entry
        )

    async def delete_gallery_entry(self, entry_id: int) -> None:
        await self._write(
            "deleting gallery entry", gallery_repository.delete_gallery_entry, entry_id
        )
        logger.info("Gallery entry %d deleted", entry_id)

    async def count_gallery_entries(self) -> int:
        return await self._read(
            "gallery entry count", gallery_repository.count_gallery_entries, default=0
        )

    async def get_gallery_revision(self) -> int | None:
        """Counter that moves on every gallery write, from any process.

        None when it cannot be read.
        """
        return await self._read(
            "gallery revision", gallery_repository.get_gallery_revision, default=None
        )

    # ── detection events ─────────────────────────────────────────────

    async def add_detection_event(self, event: DetectionEvent) -> int:
        event_id = await self._write(
            "saving detection", detection_repository.insert_detection_event, event
        )
        logger.info("Detection %d saved (%s, %.2f)", event_id, event.person_name, event.confidence)
        return event_id

    async def get_all_detection_events(self) -> list[DetectionEvent]:
        """All events, most recent first."""
        return await self._read(
            "detections", detection_repository.list_detection_events, default=[]
        )

    async def get_detection_events_by_person_name(self, name: str) -> list[DetectionEvent]:
        return await self._read(
            "detections by person",
            detection_repository.list_detection_events_by_person,
            name,
            default=[],
        )

    async def clear_all_detection_events(self) -> None:
        await self._write("clearing detections", detection_repository.clear_detection_events)
        logger.info("All detections cleared")

    async def count_detection_events(self) -> int:
        return await self._read(
            "detection count", detection_repository.count_detection_events, default=0
        )

    # ── export / import ──────────────────────────────────────────────

    async def export_all(self) -> ExportSnapshot:
        entries, events = await asyncio.gather(
            self.get_all_gallery_entries(),
            self.get_all_detection_events(),
        )
        return ExportSnapshot(
            missing_persons=entries,
            detections=events,
            export_date=datetime.now(UTC),
            version=SCHEMA_VERSION,
        )

    async def import_all(self, snapshot: ExportSnapshot | dict) -> tuple[int, int]:
        """Insert every record in ``snapshot`` as new, discarding stored ids.

        Importing the same snapshot twice duplicates its records. Returns
        ``(entries_added, events_added)``.
        """
        if isinstance(snapshot, dict):
            snapshot = snapshot_from_dict(snapshot)
        for entry in snapshot.missing_persons:
            await self.add_gallery_entry(replace(entry, id=None))
        for event in snapshot.detections:
            await self.add_detection_event(replace(event, id=None))
        logger.info(
            "Imported %d gallery entries and %d detections",
            len(snapshot.missing_persons),
            len(snapshot.detections),
        )
        return len(snapshot.missing_persons), len(snapshot.detections)
