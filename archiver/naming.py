"""Archive name rendering.

Templates use ``{placeholder}`` tokens:

- ``{filename}``  file name without extension
- ``{ext}``       extension without the leading dot
- ``{humanTime}`` ``YYYY-MM-DD_HH-MM-SS``
- ``{timestamp}`` epoch milliseconds
- ``{date}``      ``YYYY-MM-DD``
- ``{time}``      ``HH-MM-SS``

Unknown placeholders are left in the output as written.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class FileMetadata:
    path: str
    filename: str
    extension: str
    size: int
    detected_at: datetime

    @classmethod
    def from_path(cls, path: str, detected_at: datetime | None = None) -> "FileMetadata":
        """Stat `path` and split its name. Raises OSError if it cannot be read."""
        st = os.stat(path)
        stem, ext = os.path.splitext(os.path.basename(path))
        return cls(
            path=path,
            filename=stem,
            extension=ext,
            size=st.st_size,
            detected_at=detected_at or datetime.now(timezone.utc),
        )


def human_time(when: datetime) -> str:
    return when.strftime("%Y-%m-%d_%H-%M-%S")


def render_name(metadata: FileMetadata, template: str) -> str:
    when = metadata.detected_at
    values = {
        "{humanTime}": human_time(when),
        "{filename}": metadata.filename,
        "{ext}": metadata.extension.lstrip("."),
        "{timestamp}": str(int(when.timestamp() * 1000)),
        "{date}": when.strftime("%Y-%m-%d"),
        "{time}": when.strftime("%H-%M-%S"),
    }
    name = template
    for token, value in values.items():
        name = name.replace(token, value)
    return name
