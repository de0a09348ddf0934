#!/usr/bin/env python3
"""
fotopim-batch: trim, resize and rename a folder of product photos.

Usage:
    fotopim-batch input_folder --base-name "Produkt Łąka" --start-number P01 --zip out.zip
    fotopim-batch input_folder --output ./processed --lifestyle "*_ls.jpg"
"""

import argparse
import fnmatch
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from ..errors import CancelledError, FotopimError
from ..models.batch_job import BatchJob, CancellationSource, NamingSpec
from ..models.transform_settings import TransformSettings
from ..pipeline.batch_orchestrator import BatchOrchestrator
from ..repositories.item_repository import ItemRepository
from ..repositories.settings_repository import SettingsRepository
from ..services.sink_service import ARCHIVE_NAME, ArchiveSink, DirectorySink

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    # --- Centralized Logging Configuration ---
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s',
        datefmt='%H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Trim the background around product photos, fit them to size limits and rename them.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fotopim-batch ./photos --base-name "Krzesło dębowe" --start-number 001
  fotopim-batch ./photos --output ./out --threshold 30 --no-min-size

Settings not given on the command line come from the persisted settings file
(SETTINGS_PATH, default data/settings.json).
        """
    )
    parser.add_argument("input", help="Folder with source images")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--zip", dest="zip_path", help=f"Write a zip archive (default: ./{ARCHIVE_NAME})")
    target.add_argument("--output", help="Write individual files to this folder instead of a zip")
    parser.add_argument("--recursive", action="store_true", help="Include sub-folders")

    naming = parser.add_argument_group("naming")
    naming.add_argument("--base-name", default="", help="Product name; empty keeps the original filenames")
    naming.add_argument("--start-number", default="1", help="First number with optional prefix, e.g. P001")
    naming.add_argument("--lifestyle", action="append", default=[], metavar="PATTERN",
                        help="Filename glob of lifestyle shots (repeatable)")

    transform = parser.add_argument_group("transform")
    transform.add_argument("--threshold", type=int, help="Background tolerance 0-255 for every file")
    transform.add_argument("--margin", type=int)
    transform.add_argument("--max-side", type=int)
    transform.add_argument("--min-size", type=int)
    transform.add_argument("--max-mb", type=float)
    transform.add_argument("--no-margin", action="store_true", help="Crop tight, ignore --margin")
    transform.add_argument("--no-max-side", action="store_true", help="Never downscale")
    transform.add_argument("--no-min-size", action="store_true", help="Never pad")
    transform.add_argument("--no-max-mb", action="store_true", help="No file size cap")
    transform.add_argument("--save-settings", action="store_true", help="Persist the resulting settings")

    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def resolve_settings(args, base: TransformSettings) -> TransformSettings:
    overrides = {
        "margin": args.margin,
        "maxSide": args.max_side,
        "minSize": args.min_size,
        "maxMb": args.max_mb,
    }
    raw = {key: value for key, value in overrides.items() if value is not None}
    if args.no_margin:
        raw["useMargin"] = False
    if args.no_max_side:
        raw["useMaxSide"] = False
    if args.no_min_size:
        raw["useMinSize"] = False
    if args.no_max_mb:
        raw["useMaxMb"] = False
    return TransformSettings.from_dict(raw, base=base)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    settings_repository = SettingsRepository()
    try:
        settings = resolve_settings(args, settings_repository.load())
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    if args.save_settings:
        settings_repository.save(settings)

    items = ItemRepository()
    try:
        items.add_dir(args.input, recursive=args.recursive)
    except NotADirectoryError:
        print(f"Error: Input folder '{args.input}' not found.", file=sys.stderr)
        return 2
    if len(items) == 0:
        print("Warning: No image files found.", file=sys.stderr)
        return 1

    for item in items:
        if args.threshold is not None:
            try:
                item.set_threshold(args.threshold)
            except ValueError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 2
        item.flagged = any(fnmatch.fnmatch(item.name, pattern) for pattern in args.lifestyle)

    if args.output:
        sink = DirectorySink(args.output)
    else:
        sink = ArchiveSink(archive_path=args.zip_path or ARCHIVE_NAME)

    cancellation = CancellationSource()
    job = BatchJob(
        items=items.items,
        naming=NamingSpec(base_name=args.base_name, start_number=args.start_number),
        settings=settings,
        sink=sink,
        cancellation=cancellation,
    )

    def request_cancel(signum, frame):
        print("\nCancelling after the current file...", file=sys.stderr)
        cancellation.cancel()

    previous_handler = signal.signal(signal.SIGINT, request_cancel)

    def on_progress(processed, total, label):
        percent = round(100 * processed / total)
        print(f"  [{processed}/{total}] {percent:3d}%  {label}")

    print(f"Processing {job.total} file(s) from {args.input}")
    try:
        result = BatchOrchestrator().run(job, on_progress)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    for item in items:
        if item.error:
            print(f"  Error: {item.name}: {item.error}", file=sys.stderr)
    print(result.summary())

    try:
        result.raise_for_outcome()
    except CancelledError:
        return 130
    except FotopimError:
        return 1
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
