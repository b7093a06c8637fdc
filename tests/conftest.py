"""Shared fixtures.

``remote`` runs an in-process aiohttp server that serves Apache-style
autoindex pages and file bodies from a dict, and records every GET path.
pytest-asyncio runs with ``asyncio_mode = "auto"`` (see pyproject.toml).
"""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from autoindex_sync.sync import Config

PREFIX = "/mirror/"


def listing(*hrefs: str) -> bytes:
    """Render an Apache-style autoindex page with one row per href."""
    rows = "\n".join(
        f'<tr><td valign="top"><img src="/icons/unknown.gif" alt="[   ]"></td>'
        f'<td><a href="{href}">{href}</a></td><td align="right">-</td></tr>'
        for href in hrefs
    )
    return (
        '<!DOCTYPE HTML PUBLIC "-//W3C//DTD HTML 3.2 Final//EN">\n'
        "<html>\n<head>\n<title>Index of /mirror</title>\n</head>\n<body>\n"
        "<h1>Index of /mirror</h1>\n<table>\n"
        '<tr><th><a href="?C=N;O=D">Name</a></th>'
        '<th><a href="?C=M;O=A">Last modified</a></th>'
        '<th><a href="?C=S;O=A">Size</a></th></tr>\n'
        '<tr><td><a href="/">Parent Directory</a></td></tr>\n'
        f"{rows}\n</table>\n</body></html>\n"
    ).encode("utf-8")


class FakeAutoindex:
    """Pages keyed by decoded request path; every GET path is recorded."""

    def __init__(self) -> None:
        self.url = ""
        self.pages: dict[str, tuple[bytes, str]] = {}
        self.statuses: dict[str, int] = {}
        self.delays: dict[str, float] = {}
        self.requests: list[str] = []

    def add_dir(self, path: str, *hrefs: str) -> None:
        self.pages[PREFIX + path] = (listing(*hrefs), "text/html")

    def add_file(self, path: str, body: bytes) -> None:
        self.pages[PREFIX + path] = (body, "application/octet-stream")

    def fail(self, path: str, status: int = 500) -> None:
        self.statuses[PREFIX + path] = status

    def stall(self, path: str, seconds: float) -> None:
        self.delays[PREFIX + path] = seconds

    def downloads(self) -> list[str]:
        return [p for p in self.requests if not p.endswith("/")]

    async def handle(self, request: web.Request) -> web.Response:
        path = request.path
        self.requests.append(path)
        if path in self.delays:
            await asyncio.sleep(self.delays[path])
        if path in self.statuses:
            return web.Response(status=self.statuses[path], text="unavailable")
        if path not in self.pages:
            raise web.HTTPNotFound()
        body, content_type = self.pages[path]
        charset = "utf-8" if content_type == "text/html" else None
        return web.Response(body=body, content_type=content_type, charset=charset)


@pytest.fixture()
async def remote():
    site = FakeAutoindex()
    app = web.Application()
    app.router.add_route("GET", "/{tail:.*}", site.handle)
    server = TestServer(app)
    await server.start_server()
    site.url = str(server.make_url(PREFIX))
    yield site
    await server.close()


@pytest.fixture()
def local_root(tmp_path):
    return tmp_path / "local"


@pytest.fixture()
def make_config(remote, local_root):
    def factory(**overrides) -> Config:
        values = {
            "remote_url": remote.url,
            "local_root": str(local_root),
            "timeout_sec": 5.0,
        }
        values.update(overrides)
        return Config(**values)

    return factory
