#!/usr/bin/env python3
"""Compare a local mirror with the remote listing without changing either side."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys
from pathlib import Path

import yaml

from autoindex_sync.errors import RemoteUnavailable
from autoindex_sync.prune import iter_local_files, relative_key
from autoindex_sync.sync import (
    Config,
    add_common_arguments,
    config_from_args,
    configure_logging,
    mirror,
)


def compare(remote_files: set[str], local_root: Path) -> tuple[list[str], list[str]]:
    """Return (missing, extra): remote files absent locally and local files absent remotely."""
    local: set[str] = set()
    if local_root.is_dir():
        local = {relative_key(local_root, path) for path in iter_local_files(local_root)}
    return sorted(remote_files - local), sorted(local - remote_files)


async def check(config: Config) -> int:
    ng_count = 0
    report = await mirror(dataclasses.replace(config, dry_run=True, prune=False))
    missing, extra = compare(report.remote_files, Path(config.local_root))

    for exc in report.errors:
        if isinstance(exc, RemoteUnavailable):
            ng_count += 1
            print(f"[NG] remote listing unavailable: {exc}")
    for rel in missing:
        ng_count += 1
        print(f"[NG] missing file: {rel}")
    for rel in extra:
        ng_count += 1
        print(f"[NG] extra file not on remote: {rel}")
    if not report.complete and extra:
        print("[WARN] remote walk incomplete; extra files may exist remotely")

    print(f"OK: {len(report.remote_files) - len(missing)}")
    print(f"NG: {ng_count}")
    return 1 if ng_count > 0 else 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check a local mirror against its remote listing")
    add_common_arguments(parser)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    try:
        config = config_from_args(args)
    except (ValueError, yaml.YAMLError) as exc:
        print(f"[NG] config error: {exc}")
        return 1
    return asyncio.run(check(config))


if __name__ == "__main__":
    sys.exit(main())
