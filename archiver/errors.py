"""Exception types raised by the archiver."""
from __future__ import annotations


class ArchiveError(Exception):
    """Base class for all archiver errors."""


class ConfigurationError(ArchiveError):
    """Missing or malformed configuration, unknown destination or compression kind."""


class SourceFileError(ArchiveError):
    """The source file is missing, unreadable or not a regular file."""


class CompressionError(ArchiveError):
    """Building the archive artifact failed."""


class UploadError(ArchiveError):
    """The upload collaborator reported failure."""

    def __init__(self, destination: str, detail: str, returncode: int | None = None) -> None:
        self.destination = destination
        self.detail = detail
        self.returncode = returncode
        if returncode is None:
            msg = f"upload to {destination} failed: {detail}"
        else:
            msg = f"upload to {destination} failed with code {returncode}: {detail}"
        super().__init__(msg)


class SupervisorStateError(ArchiveError):
    """Invalid supervisor transition, such as starting twice."""


class SessionSetupError(ArchiveError):
    """A directory could not be created or watched."""
