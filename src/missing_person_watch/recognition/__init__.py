"""Watch CLI: run live missing-person detection on a camera or video."""

import argparse
import asyncio


def main() -> None:
    """CLI entry point for live detection."""
    parser = argparse.ArgumentParser(description="Missing person camera watcher")
    parser.add_argument("--db", help="Database file (default: MPW_DB_PATH or project root)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # watch
    watch_parser = subparsers.add_parser("watch", help="Monitor a camera for missing persons")
    watch_parser.add_argument(
        "--camera", default="0", help="Camera index or video file/URL (default: 0)"
    )
    watch_parser.add_argument(
        "--device", default="cuda", help="Device: cuda or cpu (default: cuda)"
    )
    watch_parser.add_argument(
        "--confidence",
        type=float,
        default=None,
        help="Match confidence threshold (default: CONFIDENCE_THRESHOLD)",
    )
    watch_parser.add_argument(
        "--no-liveness", action="store_true", help="Disable the blink/mouth liveness check"
    )

    # status
    subparsers.add_parser("status", help="Show gallery and detection counts")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    from missing_person_watch.errors import MissingPersonWatchError
    from missing_person_watch.log import configure_logging

    configure_logging(args.verbose)

    command = _cmd_status if args.command == "status" else _cmd_watch
    try:
        asyncio.run(command(args))
    except KeyboardInterrupt:
        print("\nDetection stopped.")
    except (MissingPersonWatchError, OSError) as exc:
        print(f"Error: {exc}")
        raise SystemExit(1) from exc


async def _cmd_status(args: argparse.Namespace) -> None:
    """Show gallery and detection counts."""
    from missing_person_watch.store.record_store import RecordStore

    async with RecordStore(args.db, shared=True) as store:
        entries = await store.get_all_gallery_entries()
        detections = await store.count_detection_events()
    matchable = sum(1 for e in entries if e.descriptors)
    print(f"DB: {store.db_path}")
    print(f"Database: {len(entries)} persons ({matchable} with face descriptors)")
    print(f"Detections: {detections}")


async def _cmd_watch(args: argparse.Namespace) -> None:
    """Run the detection loop until the stream ends or Ctrl-C."""
    from rich.console import Console

    from missing_person_watch.config import CONFIDENCE_THRESHOLD, GEOLOCATION_URL
    from missing_person_watch.recognition.capture import CameraStream
    from missing_person_watch.recognition.geolocation import HttpGeolocator
    from missing_person_watch.recognition.monitor import DetectionMonitor
    from missing_person_watch.store.record_store import RecordStore

    console = Console()
    source = int(args.camera) if args.camera.isdigit() else args.camera

    # Camera first, so a bad source fails before the model is loaded.
    with CameraStream(source) as camera:
        from missing_person_watch.recognition.insightface_embedder import InsightFaceEmbedder

        console.print(f"Loading InsightFace model on {args.device}...")
        embedder = InsightFaceEmbedder(device=args.device)

        async with RecordStore(args.db, shared=True) as store:
            monitor = DetectionMonitor(
                store,
                embedder,
                geolocator=HttpGeolocator() if GEOLOCATION_URL else None,
                confidence_threshold=(
                    CONFIDENCE_THRESHOLD if args.confidence is None else args.confidence
                ),
                liveness_enabled=not args.no_liveness,
            )

            def _alert(event) -> None:
                location = (
                    f"{event.location.latitude:.6f}, {event.location.longitude:.6f}"
                    if event.location
                    else "Not available"
                )
                console.print(
                    f"[bold red]MISSING PERSON DETECTED[/] {event.person_name} "
                    f"({event.confidence:.0%})  location: {location}"
                )

            monitor.add_alert_handler(_alert)
            await monitor.reload_gallery()
            console.print(f"Database: {monitor.gallery_size} persons")
            await monitor.run(camera.frames())

    console.print(f"Detections this session: {monitor.detection_count}")
