"""Gallery admin CLI: curate missing persons and manage detection history."""

import argparse
import asyncio


def main() -> None:
    """CLI entry point for gallery administration."""
    parser = argparse.ArgumentParser(description="Missing person gallery admin")
    parser.add_argument("--db", help="Database file (default: MPW_DB_PATH or project root)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # init-db
    subparsers.add_parser("init-db", help="Initialize the database schema")

    # list
    list_parser = subparsers.add_parser("list", help="List missing persons")
    list_parser.add_argument("--search", help="Filter by name or description")

    # show
    show_parser = subparsers.add_parser("show", help="Show one person and their detections")
    show_parser.add_argument("id", type=int, help="Person ID")

    # add
    add_parser = subparsers.add_parser("add", help="Add a missing person")
    add_parser.add_argument("--name", required=True, help="Display name")
    add_parser.add_argument(
        "--photo", action="append", default=[], help="Reference photo (repeatable)"
    )
    add_parser.add_argument("--age", type=int, help="Age")
    add_parser.add_argument("--description", default="", help="Free-text description")
    add_parser.add_argument("--contact", default="", help="Contact information")
    add_parser.add_argument(
        "--device", default="cuda", help="Device: cuda or cpu (default: cuda)"
    )
    add_parser.add_argument(
        "--no-embed",
        action="store_true",
        help="Store without face descriptors (the person cannot be matched)",
    )

    # delete
    del_parser = subparsers.add_parser("delete", help="Delete a missing person")
    del_parser.add_argument("id", type=int, help="Person ID")
    del_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    # detections
    det_parser = subparsers.add_parser("detections", help="List detection history")
    det_parser.add_argument("--person", help="Only detections for this exact name")

    # clear-detections
    clear_parser = subparsers.add_parser("clear-detections", help="Delete all detections")
    clear_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    # export
    exp_parser = subparsers.add_parser("export", help="Export everything to JSON")
    exp_parser.add_argument(
        "--output", help="Output file (default: missing-persons-data-YYYY-MM-DD.json)"
    )

    # import
    imp_parser = subparsers.add_parser("import", help="Import a JSON export (always additive)")
    imp_parser.add_argument("file", help="Export file to import")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    from missing_person_watch.errors import MissingPersonWatchError
    from missing_person_watch.log import configure_logging

    configure_logging(args.verbose)

    if args.command == "init-db":
        from missing_person_watch.db import get_connection

        conn = get_connection(args.db)
        conn.close()
        print("Database initialized successfully.")
        return

    commands = {
        "list": _cmd_list,
        "show": _cmd_show,
        "add": _cmd_add,
        "delete": _cmd_delete,
        "detections": _cmd_detections,
        "clear-detections": _cmd_clear_detections,
        "export": _cmd_export,
        "import": _cmd_import,
    }
    try:
        asyncio.run(_with_store(args, commands[args.command]))
    except (MissingPersonWatchError, OSError, ValueError) as exc:
        print(f"Error: {exc}")
        raise SystemExit(1) from exc


async def _with_store(args: argparse.Namespace, command) -> None:
    from missing_person_watch.store.record_store import RecordStore

    async with RecordStore(args.db, shared=True) as store:
        await command(args, store)


def _format_entry(entry) -> str:
    age = f"  age {entry.age}" if entry.age else ""
    return (
        f"  [{entry.id}] {entry.name}{age}"
        f"  photos:{len(entry.photos)} descriptors:{len(entry.descriptors)}"
        f"  added {entry.date_added.date().isoformat()}"
    )


def _format_event(event) -> str:
    where = (
        f"  @ {event.location.latitude:.4f}, {event.location.longitude:.4f}"
        if event.location
        else ""
    )
    return (
        f"  [{event.id}] {event.timestamp.isoformat(timespec='seconds')}"
        f"  {event.person_name}  {event.confidence:.0%}{where}"
    )


async def _cmd_list(args: argparse.Namespace, store) -> None:
    """List missing persons, optionally filtered."""
    from missing_person_watch.store.gallery_repository import filter_gallery_entries

    total = await store.count_gallery_entries()
    entries = await store.get_all_gallery_entries()
    if args.search:
        entries = filter_gallery_entries(entries, args.search)
        print(f"{len(entries)} of {total} persons match '{args.search}'")
    else:
        print(f"{total} persons")
    for entry in sorted(entries, key=lambda e: e.id):
        print(_format_entry(entry))


async def _cmd_show(args: argparse.Namespace, store) -> None:
    """Show one person's details and their detection history."""
    entry = await store.get_gallery_entry(args.id)
    if entry is None:
        print(f"Person {args.id} not found.")
        raise SystemExit(1)
    print(_format_entry(entry))
    if entry.description:
        print(f"  Description: {entry.description}")
    if entry.contact_info:
        print(f"  Contact: {entry.contact_info}")
    print(f"  Status: {entry.status}")

    events = await store.get_detection_events_by_person_name(entry.name)
    print(f"Detections: {len(events)}")
    for event in sorted(events, key=lambda e: e.timestamp, reverse=True):
        print(_format_event(event))


async def _cmd_add(args: argparse.Namespace, store) -> None:
    """Add a missing person from photo files."""
    from pathlib import Path

    from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

    from missing_person_watch.store.admin import GalleryAdmin

    photos = [Path(p).read_bytes() for p in args.photo]

    embedder = None
    if not args.no_embed and photos:
        print(f"Loading InsightFace model on {args.device}...")
        from missing_person_watch.recognition.insightface_embedder import InsightFaceEmbedder

        embedder = InsightFaceEmbedder(device=args.device)

    admin = GalleryAdmin(store, embedder=embedder)

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        transient=True,
    ) as progress:
        progress.add_task("Adding person", total=None)
        result = await admin.add_person(
            args.name,
            photos,
            age=args.age,
            description=args.description,
            contact_info=args.contact,
        )

    print(f"{args.name.strip()} has been added to the database (id {result.id}).")
    print(f"  Face descriptors: {result.descriptor_count}/{len(photos)} photos")
    for i in result.skipped_photos:
        print(f"  Skipped: {args.photo[i]} (no usable face)")
    if result.descriptor_count == 0:
        print("  Warning: face recognition will not work for this person.")


async def _cmd_delete(args: argparse.Namespace, store) -> None:
    """Delete a missing person; their detection history is kept."""
    from rich.prompt import Confirm

    from missing_person_watch.store.admin import GalleryAdmin

    entry = await store.get_gallery_entry(args.id)
    label = entry.name if entry else f"person {args.id}"
    if not args.yes and not Confirm.ask(
        f"Delete {label} from the database? This action cannot be undone."
    ):
        print("Cancelled.")
        return
    await GalleryAdmin(store).delete_person(args.id)
    print(f"{label} has been removed from the database.")


async def _cmd_detections(args: argparse.Namespace, store) -> None:
    """List detection history, most recent first."""
    if args.person:
        events = await store.get_detection_events_by_person_name(args.person)
        events.sort(key=lambda e: e.timestamp, reverse=True)
    else:
        events = await store.get_all_detection_events()
    print(f"{len(events)} detections")
    for event in events:
        print(_format_event(event))


async def _cmd_clear_detections(args: argparse.Namespace, store) -> None:
    """Delete the whole detection history."""
    from rich.prompt import Confirm

    if not args.yes and not Confirm.ask(
        "Clear all detection history? This action cannot be undone."
    ):
        print("Cancelled.")
        return
    await store.clear_all_detection_events()
    print("All detections have been cleared.")


async def _cmd_export(args: argparse.Namespace, store) -> None:
    """Write every record to a JSON export file."""
    from pathlib import Path

    from missing_person_watch.store.snapshot import default_export_filename, write_snapshot

    snapshot = await store.export_all()
    path = Path(args.output or default_export_filename(snapshot.export_date))
    write_snapshot(snapshot, path)
    print(
        f"Exported {len(snapshot.missing_persons)} persons and "
        f"{len(snapshot.detections)} detections to {path}"
    )


async def _cmd_import(args: argparse.Namespace, store) -> None:
    """Import a JSON export; every record is added as new."""
    from pathlib import Path

    from missing_person_watch.store.admin import GalleryAdmin
    from missing_person_watch.store.snapshot import read_snapshot

    snapshot = read_snapshot(Path(args.file))
    persons, detections = await GalleryAdmin(store).import_snapshot(snapshot)
    print(f"Imported {persons} persons and {detections} detections.")
