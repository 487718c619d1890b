"""Command line interface for the S3 photo frame helper."""

import argparse
import logging
import sys
import time

from s3photos.config import SECONDS_PER_DAY, load_config
from s3photos.errors import S3PhotosError
from s3photos.notifications import Notifier, json_lines_subscriber
from s3photos.scheduler import build_scheduler, queue_initial_sync
from s3photos.syncer import PhotoSync


def setup_logging(level: str, debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if not debug:
        for name in ("boto3", "botocore", "urllib3", "s3transfer", "apscheduler"):
            logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="s3photos",
        description="Keep the photo frame cache in sync with an S3 bucket",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("sync", help="Run one sync pass")
    subparsers.add_parser("refresh", help="Sync (falling back to the cache) and print notifications")

    purge = subparsers.add_parser("purge", help="Delete old cache files and resync everything")
    purge.add_argument("--days", type=float, help="Max age in days (default: cacheLifeDays)")

    ingest = subparsers.add_parser("ingest", help="Upload a local photo and add it to the cache")
    ingest.add_argument("path", help="Photo to upload")
    ingest.add_argument("--folder", help="Bucket folder (default: selfieFolder)")

    subparsers.add_parser("delete-samples", help="Remove the sample photos from the bucket")
    subparsers.add_parser("run", help="Run the scheduler until interrupted")
    return parser


def run_forever(syncer: PhotoSync):
    scheduler = build_scheduler(syncer, syncer.config)
    queue_initial_sync(scheduler, syncer)
    scheduler.start()
    print("Photo sync running. Press Ctrl+C to stop.", file=sys.stderr)
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping photo sync...", file=sys.stderr)
    finally:
        scheduler.shutdown(wait=True)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config()
    except S3PhotosError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    setup_logging(config.log_level, args.debug)

    notifier = Notifier()
    notifier.subscribe(json_lines_subscriber())
    syncer = PhotoSync(config, notifier=notifier)

    try:
        if args.command == "sync":
            try:
                manifest = syncer.sync()
            except S3PhotosError as e:
                notifier.photos_error(str(e))
                raise
            notifier.photos_updated(manifest)
            print(f"Sync complete. {len(manifest)} photo(s) in cache.", file=sys.stderr)

        elif args.command == "refresh":
            if syncer.refresh() is None:
                return 1

        elif args.command == "purge":
            days = config.cache_life_days if args.days is None else args.days
            if days <= 0:
                print("Cache cleanup disabled (cacheLifeDays = 0)", file=sys.stderr)
            elif syncer.purge(days * SECONDS_PER_DAY) is None:
                return 1

        elif args.command == "ingest":
            entry = syncer.handle_new_photo(args.path, args.folder)
            if entry is None:
                return 1
            print(f"Uploaded {entry.key}", file=sys.stderr)

        elif args.command == "delete-samples":
            deleted = syncer.delete_samples()
            print(f"Deleted {len(deleted)} sample photo(s).", file=sys.stderr)

        elif args.command == "run":
            run_forever(syncer)

    except S3PhotosError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        syncer.close()

    return 0
