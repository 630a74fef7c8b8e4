from __future__ import annotations

import argparse
import logging
import os
import time
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from archiver.config import DEFAULT_CONFIG_PATH, init_config, load_config
from archiver.dedup import TaskDeduplicator
from archiver.errors import ArchiveError
from archiver.pipeline import ArchivePipeline, ArchiveTask
from archiver.supervisor import Supervisor
from archiver.upload import RcloneUploader

DEFAULT_LOG_DIR = os.path.join(os.path.expanduser("~"), ".mva", "logs")


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def setup_logger(logfile: str) -> logging.Logger:
    logger = logging.getLogger("mv_archive")
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    # Rotating file handler to avoid unbounded log growth
    handler = RotatingFileHandler(logfile, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Also log to console for immediate feedback
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    return logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mva",
        description="Watch directories, archive settled files to rclone remotes and remove the originals",
    )
    parser.add_argument(
        "--config", "-c",
        default=DEFAULT_CONFIG_PATH,
        help=f"Configuration file (default {DEFAULT_CONFIG_PATH})"
    )
    parser.add_argument(
        "--logdir", "-l",
        default=DEFAULT_LOG_DIR,
        help=f"Directory to write logs to (default {DEFAULT_LOG_DIR})"
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init", help="Write a default configuration file")
    sub.add_parser("start", help="Run the daemon until interrupted")
    archive = sub.add_parser("archive", help="Archive files now to a configured destination")
    archive.add_argument("files", nargs="+", help="Files to archive")
    archive.add_argument("--destination", "-d", required=True, help="Destination name from config")
    sub.add_parser("status", help="Show configuration and pending files")
    sub.add_parser("setup-directories", help="Create the configured watch directories")
    return parser.parse_args(argv)


def cmd_init(args: argparse.Namespace, logger: logging.Logger) -> int:
    init_config(args.config)
    logger.info("Configuration initialized at %s", args.config)
    return 0


def cmd_start(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    supervisor = Supervisor(config, logger=logger)
    supervisor.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutdown requested, stopping daemon")
    supervisor.stop()
    logger.info("Stopped")
    return 0


def cmd_archive(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    entry = config.find_destination(args.destination)
    pipeline = ArchivePipeline(RcloneUploader(config.upload_command, logger=logger), logger=logger)
    deduplicator = TaskDeduplicator()

    failures = 0
    for name in args.files:
        path = os.path.abspath(name)
        if not os.path.exists(path):
            logger.error("File not found: %s", name)
            failures += 1
            continue
        with deduplicator.claim(path) as acquired:
            if not acquired:
                continue
            try:
                pipeline.archive(ArchiveTask(source_path=path, config=entry))
            except (ArchiveError, OSError) as exc:
                logger.error("Failed to archive %s to %s: %s", name, entry.destination, exc)
                failures += 1
    return 1 if failures else 0


def pending_files(path: str) -> int:
    try:
        with os.scandir(path) as it:
            return sum(1 for entry in it if entry.is_file())
    except OSError:
        return 0


def cmd_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    print("mva configuration:")
    print(f"Config file: {args.config}")
    print()
    print("Directories:")
    for entry in config.directories:
        print(f"  - {entry.path}")
        print(f"    Schedule: {entry.schedule}" + (f" ({entry.timezone})" if entry.timezone else ""))
        print(f"    Format: {entry.naming_template}")
        print(f"    Compression: {entry.compression}")
        print(f"    Destination: {entry.destination}")
        print(f"    Pending files: {pending_files(entry.path)}")
        print()
    return 0


def cmd_setup_directories(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    for entry in config.directories:
        ensure_dir(entry.path)
        logger.info("Created watch directory: %s", entry.path)
    return 0


COMMANDS = {
    "init": cmd_init,
    "start": cmd_start,
    "archive": cmd_archive,
    "status": cmd_status,
    "setup-directories": cmd_setup_directories,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    log_dir = os.path.abspath(args.logdir)
    ensure_dir(log_dir)
    logger = setup_logger(os.path.join(log_dir, "mv_archive.log"))

    try:
        return COMMANDS[args.command](args, logger)
    except ArchiveError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    except OSError:
        logger.exception("%s failed", args.command)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
