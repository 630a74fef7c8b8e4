"""Configuration loading for mv-archive.

The configuration lives in a YAML file (default ``~/.mva/config.yml``)::

    directories:
      - directory: /srv/mva/gdrive
        at: "0 2 * * *"
        format: "{humanTime}-{filename}.{ext}"
        compress: tar.gz
        destination: "gdrive:archive"

Optional top-level keys tune the daemon: ``settle`` (``initial`` and
``confirm`` seconds), ``upload`` (``command``), ``workers`` and
``scan_on_start``.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from croniter import croniter

from archiver.errors import ConfigurationError

DEFAULT_CONFIG_PATH = os.path.join(os.path.expanduser("~"), ".mva", "config.yml")

COMPRESSION_KINDS = ("tar.gz", "none")

DEFAULT_SETTLE_INITIAL = 1.0
DEFAULT_SETTLE_CONFIRM = 0.5
DEFAULT_UPLOAD_COMMAND = "rclone"
DEFAULT_WORKERS = 4


@dataclass(frozen=True)
class DirectoryConfig:
    path: str
    schedule: str
    naming_template: str
    compression: str
    destination: str
    timezone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "DirectoryConfig":
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid directory configuration: {data!r}")
        entry = cls(
            path=str(data.get("directory") or ""),
            schedule=str(data.get("at") or ""),
            naming_template=str(data.get("format") or ""),
            compression=str(data.get("compress") or ""),
            destination=str(data.get("destination") or ""),
            timezone=data.get("timezone"),
        )
        entry.validate()
        return entry

    def to_dict(self) -> dict:
        data = {
            "directory": self.path,
            "at": self.schedule,
            "format": self.naming_template,
            "compress": self.compression,
            "destination": self.destination,
        }
        if self.timezone:
            data["timezone"] = self.timezone
        return data

    def validate(self) -> None:
        """Raise ConfigurationError unless every field is usable."""
        if not (self.path and self.schedule and self.naming_template and self.compression and self.destination):
            raise ConfigurationError(f"Invalid directory configuration: {self.to_dict()}")
        if len(self.schedule.split()) != 5 or not croniter.is_valid(self.schedule):
            raise ConfigurationError(f"Invalid cron format: {self.schedule}")
        if self.compression not in COMPRESSION_KINDS:
            raise ConfigurationError(
                f"Unsupported compression format: {self.compression} (expected one of {', '.join(COMPRESSION_KINDS)})"
            )
        if self.timezone:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ConfigurationError(f"Unknown timezone: {self.timezone}") from exc


@dataclass
class ArchiverConfig:
    directories: List[DirectoryConfig] = field(default_factory=list)
    settle_initial: float = DEFAULT_SETTLE_INITIAL
    settle_confirm: float = DEFAULT_SETTLE_CONFIRM
    upload_command: str = DEFAULT_UPLOAD_COMMAND
    workers: int = DEFAULT_WORKERS
    scan_on_start: bool = True

    @classmethod
    def from_dict(cls, data: Any) -> "ArchiverConfig":
        if not isinstance(data, dict) or not isinstance(data.get("directories"), list):
            raise ConfigurationError("Invalid configuration: missing directories array")

        settle = data.get("settle") or {}
        upload = data.get("upload") or {}
        try:
            config = cls(
                directories=[DirectoryConfig.from_dict(d) for d in data["directories"]],
                settle_initial=float(settle.get("initial", DEFAULT_SETTLE_INITIAL)),
                settle_confirm=float(settle.get("confirm", DEFAULT_SETTLE_CONFIRM)),
                upload_command=str(upload.get("command", DEFAULT_UPLOAD_COMMAND)),
                workers=int(data.get("workers", DEFAULT_WORKERS)),
                scan_on_start=bool(data.get("scan_on_start", True)),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

        if config.settle_initial < 0 or config.settle_confirm < 0:
            raise ConfigurationError("Invalid configuration: settle intervals must not be negative")
        if config.workers < 1:
            raise ConfigurationError("Invalid configuration: workers must be at least 1")
        return config

    def to_dict(self) -> dict:
        return {
            "directories": [d.to_dict() for d in self.directories],
            "settle": {"initial": self.settle_initial, "confirm": self.settle_confirm},
            "upload": {"command": self.upload_command},
            "workers": self.workers,
            "scan_on_start": self.scan_on_start,
        }

    def find_destination(self, destination: str) -> DirectoryConfig:
        """Return the first directory entry uploading to `destination`."""
        for entry in self.directories:
            if entry.destination == destination:
                return entry
        raise ConfigurationError(f"Destination '{destination}' not found in config")


def default_config() -> ArchiverConfig:
    return ArchiverConfig(
        directories=[
            DirectoryConfig(
                path="/srv/mva/gdrive",
                schedule="0 2 * * *",  # daily at 2 AM
                naming_template="{humanTime}-{filename}.{ext}",
                compression="tar.gz",
                destination="gdrive:archive",
            ),
            DirectoryConfig(
                path="/srv/mva/azure/archive",
                schedule="0 3 * * *",  # daily at 3 AM
                naming_template="{humanTime}-{filename}.{ext}",
                compression="tar.gz",
                destination="azure:backup",
            ),
        ]
    )


def load_config(path: str = DEFAULT_CONFIG_PATH) -> ArchiverConfig:
    if not os.path.exists(path):
        raise ConfigurationError(f"Configuration file not found: {path}. Run 'mva init' to create it.")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Could not parse {path}: {exc}") from exc

    return ArchiverConfig.from_dict(data)


def save_config(config: ArchiverConfig, path: str = DEFAULT_CONFIG_PATH) -> None:
    for entry in config.directories:
        entry.validate()

    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, indent=2, sort_keys=False)


def init_config(path: str = DEFAULT_CONFIG_PATH) -> ArchiverConfig:
    """Write the default configuration to `path` and return it.

    - Creates the parent directory if needed.
    - Refuses to overwrite an existing file.
    """
    if os.path.exists(path):
        raise ConfigurationError(f"Configuration file already exists: {path}")

    config = default_config()
    save_config(config, path)
    return config
