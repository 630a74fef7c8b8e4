"""Archiver package for mv-archive.

Keep the archive logic (stability, dedup, pipeline, sessions) here so the
watcher entry point remains small and testable.
"""

__all__ = [
    "config",
    "dedup",
    "errors",
    "naming",
    "pipeline",
    "schedule",
    "session",
    "stability",
    "supervisor",
    "upload",
]
