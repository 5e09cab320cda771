"""Tests for the async RecordStore: lifecycle, CRUD, export/import."""

import asyncio
import subprocess
import sys
from dataclasses import replace
from datetime import UTC, datetime

import numpy as np
import pytest
from conftest import make_entry, make_event, unit_vector

from missing_person_watch.errors import StoreTimeoutError, StoreUnavailableError, ValidationError
from missing_person_watch.store.record_store import RecordStore, StoreState
from missing_person_watch.store.schema import SCHEMA_VERSION
from missing_person_watch.store.snapshot import snapshot_to_dict


def run(coro):
    return asyncio.run(coro)


def test_lifecycle_states():
    async def scenario():
        store = RecordStore(":memory:")
        assert store.state is StoreState.UNINITIALIZED
        assert not store.initialized
        await store.open()
        assert store.state is StoreState.READY
        assert store.available
        await store.close()
        assert store.state is StoreState.UNINITIALIZED

    run(scenario())


def test_operation_waits_for_concurrent_open():
    async def scenario():
        store = RecordStore(":memory:")
        opening = asyncio.create_task(store.open())
        entries = await store.get_all_gallery_entries()
        await opening
        await store.close()
        return entries

    assert run(scenario()) == []


def test_wait_times_out_when_never_opened():
    async def scenario():
        store = RecordStore(":memory:", poll_interval=0.001, max_attempts=3)
        assert await store.get_all_gallery_entries() == []
        assert await store.get_gallery_entry(1) is None
        assert await store.get_all_detection_events() == []
        assert await store.get_detection_events_by_person_name("Jane Doe") == []
        assert await store.get_gallery_revision() is None
        with pytest.raises(StoreTimeoutError):
            await store.add_gallery_entry(make_entry())
        with pytest.raises(StoreTimeoutError):
            await store.add_detection_event(make_event())

    run(scenario())


def test_unavailable_reads_empty_writes_fail(tmp_path):
    async def scenario():
        store = RecordStore(str(tmp_path / "no-such-dir" / "db.duckdb"))
        await store.open()
        assert store.state is StoreState.UNAVAILABLE
        assert store.initialized

        assert await store.get_all_gallery_entries() == []
        assert await store.get_gallery_entry(1) is None
        assert await store.get_all_detection_events() == []
        assert await store.get_detection_events_by_person_name("Alice") == []
        assert await store.count_gallery_entries() == 0

        with pytest.raises(StoreUnavailableError):
            await store.add_gallery_entry(make_entry())
        with pytest.raises(StoreUnavailableError):
            await store.add_detection_event(make_event())
        with pytest.raises(StoreUnavailableError):
            await store.delete_gallery_entry(1)
        with pytest.raises(StoreUnavailableError):
            await store.clear_all_detection_events()
        await store.close()

    run(scenario())


def test_add_entry_without_descriptors():
    async def scenario():
        async with RecordStore(":memory:") as store:
            entry_id = await store.add_gallery_entry(
                make_entry("Jane Doe", photos=[b"img"], descriptors=[])
            )
            entries = await store.get_all_gallery_entries()
            return entry_id, entries

    entry_id, entries = run(scenario())
    assert isinstance(entry_id, int)
    matching = [e for e in entries if e.name == "Jane Doe"]
    assert len(matching) == 1
    assert matching[0].descriptors == []


def test_add_entry_blank_name_rejected_before_store():
    async def scenario():
        async with RecordStore(":memory:") as store:
            with pytest.raises(ValidationError):
                await store.add_gallery_entry(make_entry(name=""))
            return await store.count_gallery_entries()

    assert run(scenario()) == 0


def test_get_update_delete():
    async def scenario():
        async with RecordStore(":memory:") as store:
            entry_id = await store.add_gallery_entry(make_entry("Jane Doe"))
            entry = await store.get_gallery_entry(entry_id)
            await store.update_gallery_entry(replace(entry, status="found"))
            updated = await store.get_gallery_entry(entry_id)

            await store.delete_gallery_entry(entry_id)
            await store.delete_gallery_entry(entry_id)  # idempotent
            await store.delete_gallery_entry(9999)
            return updated, await store.get_gallery_entry(entry_id)

    updated, missing = run(scenario())
    assert updated.status == "found"
    assert updated.name == "Jane Doe"
    assert missing is None


def test_delete_entry_keeps_its_detections():
    async def scenario():
        async with RecordStore(":memory:") as store:
            entry_id = await store.add_gallery_entry(make_entry("Jane Doe"))
            await store.add_detection_event(make_event("Jane Doe"))
            await store.delete_gallery_entry(entry_id)
            return await store.get_detection_events_by_person_name("Jane Doe")

    assert len(run(scenario())) == 1


def test_detection_events_order_and_filter():
    t1 = datetime(2024, 1, 1, tzinfo=UTC)
    t2 = datetime(2024, 6, 1, tzinfo=UTC)
    t3 = datetime(2023, 12, 1, tzinfo=UTC)

    async def scenario():
        async with RecordStore(":memory:") as store:
            await store.add_detection_event(make_event("Alice", timestamp=t1))
            await store.add_detection_event(make_event("alice", timestamp=t2))
            await store.add_detection_event(make_event("Alice ", timestamp=t3))
            all_events = await store.get_all_detection_events()
            alice = await store.get_detection_events_by_person_name("Alice")
            await store.clear_all_detection_events()
            return all_events, alice, await store.get_all_detection_events()

    all_events, alice, after_clear = run(scenario())
    assert [e.timestamp for e in all_events] == [t2, t1, t3]
    assert [e.person_name for e in alice] == ["Alice"]
    assert after_clear == []


def test_export_snapshot_contents():
    async def scenario():
        async with RecordStore(":memory:") as store:
            await store.add_gallery_entry(make_entry("Jane Doe", descriptors=[unit_vector(1)]))
            await store.add_detection_event(make_event("Jane Doe"))
            return await store.export_all()

    snapshot = run(scenario())
    assert snapshot.version == SCHEMA_VERSION
    assert len(snapshot.missing_persons) == 1
    assert len(snapshot.detections) == 1
    assert snapshot.export_date.tzinfo is not None


def test_export_import_doubles_records_with_new_ids():
    async def scenario():
        async with RecordStore(":memory:") as store:
            await store.add_gallery_entry(make_entry("Jane Doe", descriptors=[unit_vector(1)]))
            await store.add_gallery_entry(make_entry("John Smith"))
            await store.add_detection_event(make_event("Jane Doe"))
            first = await store.export_all()
            counts = await store.import_all(first)
            second = await store.export_all()
            return first, counts, second

    first, counts, second = run(scenario())
    assert counts == (2, 1)
    assert len(second.missing_persons) == 4
    assert len(second.detections) == 2

    ids = [e.id for e in second.missing_persons]
    assert len(set(ids)) == 4
    for original in first.missing_persons:
        copies = [e for e in second.missing_persons if e.name == original.name]
        assert len(copies) == 2
        assert len({c.id for c in copies}) == 2
        for copy in copies:
            assert copy.photos == original.photos
            assert len(copy.descriptors) == len(original.descriptors)
            for a, b in zip(copy.descriptors, original.descriptors):
                np.testing.assert_allclose(a, b)
    assert {e.person_name for e in second.detections} == {"Jane Doe"}
    assert len({e.id for e in second.detections}) == 2


def test_import_into_empty_store_from_dict():
    async def scenario():
        async with RecordStore(":memory:") as source:
            await source.add_gallery_entry(make_entry("Jane Doe"))
            await source.add_detection_event(make_event("Jane Doe"))
            exported = snapshot_to_dict(await source.export_all())

        async with RecordStore(":memory:") as target:
            await target.import_all(exported)
            return await target.export_all()

    snapshot = run(scenario())
    assert [e.name for e in snapshot.missing_persons] == ["Jane Doe"]
    assert [e.person_name for e in snapshot.detections] == ["Jane Doe"]


def test_import_rejects_blank_name():
    async def scenario():
        async with RecordStore(":memory:") as store:
            snapshot = await store.export_all()
            snapshot.missing_persons.append(make_entry(name=""))
            with pytest.raises(ValidationError):
                await store.import_all(snapshot)

    run(scenario())


def test_concurrent_adds_get_distinct_ids():
    async def scenario():
        async with RecordStore(":memory:") as store:
            ids = await asyncio.gather(
                *(store.add_gallery_entry(make_entry(f"P{i}")) for i in range(5))
            )
            return ids

    ids = run(scenario())
    assert len(set(ids)) == 5


def test_deleted_ids_are_not_reused():
    async def scenario():
        async with RecordStore(":memory:") as store:
            await store.add_gallery_entry(make_entry("A"))
            b = await store.add_gallery_entry(make_entry("B"))
            await store.delete_gallery_entry(b)
            c = await store.add_gallery_entry(make_entry("C"))

            event = await store.add_detection_event(make_event("A"))
            await store.clear_all_detection_events()
            next_event = await store.add_detection_event(make_event("A"))
            return b, c, event, next_event

    b, c, event, next_event = run(scenario())
    assert c > b
    assert next_event > event


def test_gallery_revision_moves_on_gallery_writes_only():
    async def scenario():
        async with RecordStore(":memory:") as store:
            revisions = [await store.get_gallery_revision()]
            entry_id = await store.add_gallery_entry(make_entry("Jane Doe"))
            revisions.append(await store.get_gallery_revision())
            await store.add_detection_event(make_event("Jane Doe"))
            revisions.append(await store.get_gallery_revision())
            entry = await store.get_gallery_entry(entry_id)
            await store.update_gallery_entry(replace(entry, status="found"))
            revisions.append(await store.get_gallery_revision())
            await store.delete_gallery_entry(entry_id)
            revisions.append(await store.get_gallery_revision())
            return revisions

    assert run(scenario()) == [0, 1, 1, 2, 3]


def test_shared_stores_see_each_others_writes(tmp_path):
    path = str(tmp_path / "shared.duckdb")

    async def scenario():
        async with (
            RecordStore(path, shared=True) as first,
            RecordStore(path, shared=True) as second,
        ):
            await first.add_gallery_entry(make_entry("Jane Doe"))
            await second.add_detection_event(make_event("Jane Doe"))
            return (
                [e.name for e in await second.get_all_gallery_entries()],
                await first.count_detection_events(),
                await second.get_gallery_revision(),
            )

    names, events, revision = run(scenario())
    assert names == ["Jane Doe"]
    assert events == 1
    assert revision == 1


def test_shared_store_leaves_file_free_for_other_processes(tmp_path):
    path = str(tmp_path / "shared.duckdb")
    script = (
        "import sys, duckdb\n"
        "conn = duckdb.connect(sys.argv[1])\n"
        "conn.execute(\"UPDATE gallery_entries SET status = 'found'\")\n"
        "print(conn.execute('SELECT name FROM gallery_entries').fetchone()[0])\n"
        "conn.close()\n"
    )

    async def scenario():
        async with RecordStore(path, shared=True) as store:
            entry_id = await store.add_gallery_entry(make_entry("Jane Doe"))
            assert store._conn is None
            other = subprocess.run(
                [sys.executable, "-c", script, path],
                capture_output=True,
                text=True,
                timeout=120,
            )
            return other, await store.get_gallery_entry(entry_id)

    other, entry = run(scenario())
    assert other.returncode == 0, other.stderr
    assert other.stdout.strip() == "Jane Doe"
    assert entry.status == "found"
