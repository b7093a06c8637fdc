"""Error kinds raised while mirroring."""

from __future__ import annotations


class MirrorError(Exception):
    """Base class for failures during a mirror run."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(f"{target}: {reason}")
        self.target = target
        self.reason = reason


class RemoteUnavailable(MirrorError):
    """A directory listing could not be fetched or decoded."""


class DownloadFailed(MirrorError):
    """A single remote file could not be fetched."""


class FilesystemError(MirrorError):
    """A local create, write or delete failed."""
