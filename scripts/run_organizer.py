#!/usr/bin/env python3
"""Run the organizing engine against one or more folders from the shell.

Every ``--folder`` shares the same prompt and filters. Backend, retry and
timing settings come from the environment (see ``app.utils.config``).
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from app.models.schemas import FolderConfig, RenameMode
from app.utils.config import get_settings
from domains.organizing.engine import OrganizingEngine


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description="Watch folders and organize new files with a language model.",
    )
    parser.add_argument(
        "--folder",
        type=Path,
        action="append",
        required=True,
        help="Folder to watch (can be repeated).",
    )
    parser.add_argument(
        "--prompt",
        default="Sort files into folders by topic.",
        help="Organization instructions given to the classifier.",
    )
    parser.add_argument(
        "--extensions",
        default="",
        help="Comma separated extension allow-list, e.g. 'pdf,png' (default: all).",
    )
    parser.add_argument(
        "--depth",
        type=int,
        default=0,
        help="Subfolder levels to watch: 0 = root only, -1 = unbounded.",
    )
    parser.add_argument(
        "--rename",
        choices=[mode.value for mode in RenameMode],
        default=None,
        help="Let the classifier rename files using this mode.",
    )
    parser.add_argument(
        "--rename-rule",
        default="",
        help="Rule text for --rename rule-based.",
    )
    parser.add_argument(
        "--no-extract",
        action="store_true",
        help="Do not read file contents before classifying.",
    )
    parser.add_argument(
        "--scan-existing",
        action="store_true",
        help="Also organize files already present when starting.",
    )

    return parser.parse_args(argv)


def build_configs(args: argparse.Namespace) -> list[FolderConfig]:
    """Turn CLI arguments into one FolderConfig per folder."""

    extensions = [ext for ext in args.extensions.split(",") if ext.strip()]
    return [
        FolderConfig(
            path=folder,
            prompt=args.prompt,
            extraction_enabled=not args.no_extract,
            extensions=extensions,
            rename_enabled=args.rename is not None,
            rename_mode=RenameMode(args.rename or RenameMode.FREE_FORM.value),
            rename_rule=args.rename_rule,
            watch_depth=args.depth,
        )
        for folder in args.folder
    ]


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = get_settings()

    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {message}",
        level=settings.log_level,
    )

    configs = build_configs(args)
    missing = [config.path for config in configs if not config.path.is_dir()]
    if missing:
        for path in missing:
            logger.error(f"Not a directory: {path}")
        return 1

    engine = OrganizingEngine.from_settings(settings)
    for config in configs:
        engine.add_folder(config)

    if not engine.is_running:
        logger.error("No folder could be watched.")
        engine.shutdown()
        return 1

    if args.scan_existing:
        engine.scan_all_existing_files()

    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    finally:
        engine.shutdown()

    logger.info("Organizer stopped.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
