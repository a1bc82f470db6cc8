"""
Research tracker command line — export, import and migrate stored state.

Usage:
    python scripts/research_io.py export --out research.json
    python scripts/research_io.py import research.json --dry-run
    python scripts/research_io.py import research.json
    python scripts/research_io.py migrate --dry-run

Configuration comes from the environment / .env (see tools/settings.py).
"""

import sys
import os
import asyncio
import argparse
import json
import logging
from pathlib import Path

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.research import needs_migration
from tools.bootstrap import build_backend, build_tracker, configure_logging, shutdown
from tools.import_export import export_json, import_topics, sanitize_payload
from tools.settings import TrackerSettings
from tools.tracker_errors import TrackerError

logger = logging.getLogger("ResearchIO")


async def run_export(settings: TrackerSettings, out: str) -> int:
    tracker, _ = await build_tracker(settings)
    try:
        Path(out).write_text(export_json(tracker), encoding="utf-8")
        logger.info(f"Exported {len(tracker.get_topics())} topics to {out}")
    finally:
        await shutdown(tracker)
    return 0


async def run_import(settings: TrackerSettings, path: str, dry_run: bool) -> int:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Could not read import file {path}: {e}")
        return 1

    topics = sanitize_payload(payload)
    if dry_run:
        for topic in topics:
            logger.info(f"  [OK] Topic: {topic['name']}")
        logger.info(f"DRY RUN: {len(topics)} topics would be imported.")
        return 0

    tracker, _ = await build_tracker(settings)
    try:
        summary = await import_topics(tracker, payload)
    finally:
        await shutdown(tracker)
    logger.info(f"Import complete: {len(summary.created)} created, {len(summary.updated)} updated")
    return 0


async def run_migrate(settings: TrackerSettings, dry_run: bool) -> int:
    if dry_run:
        backend = await build_backend(settings)
        blob = await backend.load()
        state = "needs migration" if needs_migration(blob) else "is already canonical"
        logger.info(f"DRY RUN: stored research state {state}.")
        close = getattr(backend, "close", None)
        if close is not None:
            await close()
        return 0

    # Loading through the tracker performs the one-time migration save.
    tracker, _ = await build_tracker(settings)
    await shutdown(tracker)
    logger.info("Migration check complete.")
    return 0


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Research tracker data tools")
    sub = parser.add_subparsers(dest="command", required=True)

    export_parser = sub.add_parser("export", help="Write all topics to a JSON file")
    export_parser.add_argument("--out", required=True, help="Destination JSON path")

    import_parser = sub.add_parser("import", help="Merge topics from a JSON file")
    import_parser.add_argument("path", help="Source JSON path")
    import_parser.add_argument("--dry-run", action="store_true", help="Validate only, don't write")

    migrate_parser = sub.add_parser("migrate", help="Re-save legacy state in canonical form")
    migrate_parser.add_argument("--dry-run", action="store_true", help="Report only, don't write")

    args = parser.parse_args(argv)
    settings = TrackerSettings.from_env()
    configure_logging(settings)

    try:
        if args.command == "export":
            return await run_export(settings, args.out)
        if args.command == "import":
            return await run_import(settings, args.path, args.dry_run)
        return await run_migrate(settings, args.dry_run)
    except TrackerError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
