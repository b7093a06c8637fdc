"""Delete local files and directories that the remote listing no longer has."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from autoindex_sync.errors import FilesystemError


@dataclass(slots=True)
class PruneReport:
    """Paths deleted by one prune pass, or that would be in dry-run mode."""

    files: list[Path] = field(default_factory=list)
    directories: list[Path] = field(default_factory=list)
    dry_run: bool = False


def relative_key(root: Path, path: Path) -> str:
    """Slash-separated path of ``path`` under ``root``, as kept in the remote file set."""
    return path.relative_to(root).as_posix()


def iter_local_files(root: Path) -> Iterator[Path]:
    """Yield every non-directory under root. Symlinks are treated as files."""
    for path in sorted(root.rglob("*")):
        if path.is_symlink() or not path.is_dir():
            yield path


def _remove(path: Path, op: Callable[[], None]) -> None:
    try:
        op()
    except OSError as exc:
        raise FilesystemError(str(path), exc.strerror or str(exc)) from exc


def prune(local_root: Path, remote_files: set[str], dry_run: bool = False) -> PruneReport:
    """Delete files under local_root missing from remote_files, then empty directories.

    Directories are visited deepest first and a directory counts as empty when
    everything in it was removed in this pass, so chains of empty directories
    disappear in one call. local_root itself is never removed.

    Only files are matched against the remote set, so a directory that is
    empty remotely is recreated by every walk and removed again here; such a
    tree shows up in ``directories`` on every run.
    """
    report = PruneReport(dry_run=dry_run)
    removed: set[Path] = set()
    verb = "Would delete" if dry_run else "Delete"

    for path in iter_local_files(local_root):
        if relative_key(local_root, path) in remote_files:
            continue
        logging.info("%s %s", verb, path)
        if not dry_run:
            _remove(path, path.unlink)
        removed.add(path)
        report.files.append(path)

    directories = [p for p in local_root.rglob("*") if p.is_dir() and not p.is_symlink()]
    for directory in sorted(directories, key=lambda p: (-len(p.parts), p)):
        if any(child not in removed for child in directory.iterdir()):
            continue
        logging.info("%s empty directory %s", verb, directory)
        if not dry_run:
            _remove(directory, directory.rmdir)
        removed.add(directory)
        report.directories.append(directory)

    return report
