#!/usr/bin/env python3
"""Mirror an Apache-style autoindex directory tree into a local directory.

Phases:
A) Walk the remote listings depth first, creating local directories and
   downloading files that do not exist locally yet.
B) Prune local files and empty directories that the walk did not see.

Phase B only runs when phase A visited every listing.
"""

from __future__ import annotations

import argparse
import asyncio
import html
import logging
import re
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

import aiohttp
import yaml

from autoindex_sync.errors import DownloadFailed, FilesystemError, MirrorError, RemoteUnavailable
from autoindex_sync.prune import PruneReport, prune

DEFAULT_CONFIG = "config.yaml"
DEFAULT_TIMEOUT_SEC = 30.0
HREF_RE = re.compile(r'<a\s+href="([^"]+)"', re.IGNORECASE)


@dataclass(slots=True)
class Config:
    """Runtime configuration loaded from config.yaml and command line flags."""

    remote_url: str = ""
    local_root: str = ""
    verify_tls: bool = False
    timeout_sec: float | None = DEFAULT_TIMEOUT_SEC
    prune: bool = True
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class RemoteEntry:
    """One child link scraped from a listing page."""

    href: str

    @property
    def is_dir(self) -> bool:
        return self.href.endswith("/")

    @property
    def name(self) -> str:
        """Decoded name without the trailing slash."""
        return unquote(self.href.rstrip("/"))


@dataclass(slots=True)
class MirrorReport:
    """Counters and the remote file set collected during one run."""

    remote_files: set[str] = field(default_factory=set)
    directories: int = 0
    downloaded: int = 0
    skipped: int = 0
    missing: int = 0
    errors: list[MirrorError] = field(default_factory=list)
    complete: bool = True
    pruned: PruneReport | None = None


def normalize_root_url(url: str) -> str:
    """Return url with exactly one trailing slash; reject non-HTTP schemes."""
    url = url.strip()
    if urlsplit(url).scheme not in ("http", "https"):
        raise ValueError(f"remote_url must be an http(s) URL: {url!r}")
    return url.rstrip("/") + "/"


def is_child_href(href: str) -> bool:
    """Sort links, absolute links and the parent link are not children."""
    return not (href.startswith("?") or href.startswith("/") or href == "../")


def is_safe_segment(name: str) -> bool:
    """True if a decoded path segment stays inside its parent directory."""
    if name in ("", ".", ".."):
        return False
    return not any(ch in name for ch in ("/", "\\", "\x00"))


def parse_listing(page: str) -> list[RemoteEntry]:
    """Extract child entries from an autoindex page, in page order.

    This is a regex scan for ``<a href="...">``, not an HTML parser: markup
    that does not look like an Apache listing gives odd or missing entries.
    Character references in the attribute (``&amp;``) are unescaped and
    repeated hrefs (icon and name links for one entry) are collapsed.
    """
    hrefs = (html.unescape(m.group(1)) for m in HREF_RE.finditer(page))
    return [RemoteEntry(href) for href in dict.fromkeys(hrefs) if is_child_href(href)]


class MirrorContext:
    """Context/state shared by the whole walk."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.root_url = normalize_root_url(config.remote_url)
        self.local_root = Path(config.local_root)
        self.report = MirrorReport()

    def url_to_relpath(self, url: str) -> str | None:
        """Convert URL to a decoded, slash-separated path under the remote root.

        Returns None for URLs outside the root and for paths with a segment
        that would escape its directory once decoded.
        """
        if not url.startswith(self.root_url):
            return None
        rel = url[len(self.root_url) :].rstrip("/")
        if not rel:
            return None
        parts = [unquote(part) for part in rel.split("/")]
        if not all(is_safe_segment(part) for part in parts):
            return None
        return "/".join(parts)

    def local_path(self, relpath: str) -> Path:
        return self.local_root.joinpath(*relpath.split("/"))


def open_session(config: Config) -> aiohttp.ClientSession:
    """One connection, one request at a time; certificate checks per config."""
    connector = aiohttp.TCPConnector(limit=1, ssl=config.verify_tls)
    timeout = aiohttp.ClientTimeout(total=config.timeout_sec or None)
    return aiohttp.ClientSession(connector=connector, timeout=timeout)


async def fetch_listing(session: aiohttp.ClientSession, url: str) -> str:
    """Fetch a directory listing page. Raise RemoteUnavailable on any failure."""
    try:
        async with session.get(url) as resp:
            if not 200 <= resp.status < 300:
                raise RemoteUnavailable(url, f"HTTP {resp.status}")
            return await resp.text()
    except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as exc:
        raise RemoteUnavailable(url, str(exc) or type(exc).__name__) from exc


async def download_file(session: aiohttp.ClientSession, url: str, dest: Path) -> int:
    """Fetch url into dest and return the number of bytes written.

    The body goes to a ``.part`` sibling first and is renamed into place, so
    an interrupted write never leaves a file the next run would skip.
    """
    try:
        async with session.get(url) as resp:
            if not 200 <= resp.status < 300:
                raise DownloadFailed(url, f"HTTP {resp.status}")
            body = await resp.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise DownloadFailed(url, str(exc) or type(exc).__name__) from exc

    part = dest.with_name(dest.name + ".part")
    try:
        part.write_bytes(body)
        part.replace(dest)
    except OSError as exc:
        if part.is_file():
            part.unlink()
        raise FilesystemError(str(dest), exc.strerror or str(exc)) from exc
    return len(body)


def ensure_directory(path: Path, dry_run: bool = False) -> None:
    if dry_run or path.is_dir():
        return
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FilesystemError(str(path), exc.strerror or str(exc)) from exc


async def sync_file(
    ctx: MirrorContext,
    session: aiohttp.ClientSession,
    url: str,
    relpath: str,
    dest: Path,
) -> None:
    """Record a remote file and download it if nothing exists at dest."""
    ctx.report.remote_files.add(relpath)
    if dest.exists():
        logging.info("Skip existing %s", dest)
        ctx.report.skipped += 1
        return
    if ctx.config.dry_run:
        logging.info("Would download %s", url)
        ctx.report.missing += 1
        return

    logging.info("Download %s", url)
    try:
        size = await download_file(session, url, dest)
    except (DownloadFailed, FilesystemError) as exc:
        logging.error("Download failed: %s", exc)
        ctx.report.errors.append(exc)
        return
    ctx.report.downloaded += 1
    logging.info("Saved %s (%s bytes)", dest, size)


async def synchronize(ctx: MirrorContext, session: aiohttp.ClientSession, url: str) -> None:
    """Mirror one remote directory, recursing depth first into subdirectories.

    RemoteUnavailable for this listing or any listing below it propagates to
    the caller. Per-file download errors are logged and recorded instead.
    """
    logging.info("Sync %s", url)
    ctx.report.directories += 1
    entries = parse_listing(await fetch_listing(session, url))
    logging.debug("Found %s entries in %s", len(entries), url)

    for entry in entries:
        child_url = f"{url}{entry.href}"
        relpath = ctx.url_to_relpath(child_url)
        if relpath is None:
            logging.warning("Skip unsafe entry %r in %s", entry.href, url)
            continue
        dest = ctx.local_path(relpath)
        if entry.is_dir:
            ensure_directory(dest, ctx.config.dry_run)
            await synchronize(ctx, session, child_url)
        else:
            await sync_file(ctx, session, child_url, relpath, dest)


async def mirror(config: Config) -> MirrorReport:
    """Walk the remote tree, then prune the local tree if the walk completed."""
    ctx = MirrorContext(config)
    report = ctx.report
    if not config.verify_tls:
        logging.warning("TLS certificate validation is disabled")
    ensure_directory(ctx.local_root, config.dry_run)

    async with open_session(config) as session:
        try:
            await synchronize(ctx, session, ctx.root_url)
        except MirrorError as exc:
            logging.error("Synchronization error: %s", exc)
            report.errors.append(exc)
            report.complete = False

    if not config.prune:
        logging.info("Pruning disabled")
    elif not report.complete:
        logging.error("Remote walk incomplete; skipping prune of %s", ctx.local_root)
    elif ctx.local_root.is_dir():
        report.pruned = prune(ctx.local_root, report.remote_files, dry_run=config.dry_run)
    return report


def load_config(config_path: Path | None, overrides: dict[str, Any] | None = None) -> Config:
    """Load config.yaml (if any), apply overrides, then defaults for missing keys."""
    data: dict[str, Any] = {}
    if config_path is not None:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{config_path} must be a mapping")
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    remote_url = str(data.get("remote_url") or "")
    local_root = str(data.get("local_root") or "")
    if not remote_url:
        raise ValueError("remote_url is required")
    if not local_root:
        raise ValueError("local_root is required")
    timeout = data.get("timeout_sec", DEFAULT_TIMEOUT_SEC)

    return Config(
        remote_url=normalize_root_url(remote_url),
        local_root=local_root,
        verify_tls=bool(data.get("verify_tls", False)),
        timeout_sec=float(timeout) if timeout else None,
        prune=bool(data.get("prune", True)),
        dry_run=bool(data.get("dry_run", False)),
    )


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Path to config YAML file")
    parser.add_argument("--remote-url", dest="remote_url", help="Remote directory URL")
    parser.add_argument("--local-root", dest="local_root", help="Local mirror directory")
    parser.add_argument(
        "--verify-tls",
        dest="verify_tls",
        action="store_const",
        const=True,
        help="Validate TLS certificates (disabled by default)",
    )
    parser.add_argument(
        "--timeout",
        dest="timeout_sec",
        type=float,
        help="Per-request timeout in seconds, 0 to wait forever",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """CLI options."""
    parser = argparse.ArgumentParser(description="Mirror an Apache autoindex directory locally")
    add_common_arguments(parser)
    parser.add_argument(
        "--no-prune",
        dest="prune",
        action="store_const",
        const=False,
        help="Keep local files that are gone remotely",
    )
    parser.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_const",
        const=True,
        help="Log what would change without touching the local tree",
    )
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> Config:
    """Build Config from --config plus flag overrides.

    A missing default config.yaml is fine when the flags carry everything;
    an explicitly named config file must exist.
    """
    config_path: Path | None = Path(args.config)
    if not config_path.exists():
        if args.config != DEFAULT_CONFIG:
            raise ValueError(f"config file not found: {config_path}")
        config_path = None
    overrides = {f.name: getattr(args, f.name, None) for f in fields(Config)}
    return load_config(config_path, overrides)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stdout,
    )


async def run(config: Config) -> int:
    """Execute the mirror. Partial failures are logged; return process exit code."""
    logging.info("Starting sync with config: %s", config)
    report = await mirror(config)
    pruned = report.pruned
    logging.info(
        "Summary: directories=%s remote_files=%s downloaded=%s skipped=%s missing=%s "
        "errors=%s complete=%s deleted_files=%s deleted_dirs=%s",
        report.directories,
        len(report.remote_files),
        report.downloaded,
        report.skipped,
        report.missing,
        len(report.errors),
        report.complete,
        len(pruned.files) if pruned else 0,
        len(pruned.directories) if pruned else 0,
    )
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)
    configure_logging(args.verbose)
    try:
        config = config_from_args(args)
    except (ValueError, yaml.YAMLError) as exc:
        raise SystemExit(f"config error: {exc}") from exc
    raise SystemExit(asyncio.run(run(config)))


if __name__ == "__main__":
    main()
