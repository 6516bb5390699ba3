"""Local preview server for the build output.

`PreviewSession` owns one Starlette app served by an embedded uvicorn server.
Its lifecycle is explicit (`start()` / `stop()`), it lives on the build
context, and `reload()` tells every connected page to refresh through a
server-sent-events stream.
"""

from __future__ import annotations

import asyncio
import contextlib
import html
import logging
import socket
from pathlib import Path
from typing import AsyncIterator, Iterator

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import (
    FileResponse,
    HTMLResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
    StreamingResponse,
)
from starlette.routing import Route

from epub_build.framework.errors import PreviewError

RELOAD_ENDPOINT = "/__reload"
RELOAD_SNIPPET = (
    "<script>(function(){"
    f'var source=new EventSource("{RELOAD_ENDPOINT}");'
    'source.addEventListener("reload",function(){window.location.reload();});'
    "})();</script>"
)
_INJECTABLE_SUFFIXES = (".html", ".htm")


def inject_reload_snippet(page: str) -> str:
    """Insert the reload client before the last `</body>` (or append it)."""

    marker = page.lower().rfind("</body>")
    if marker == -1:
        return page + RELOAD_SNIPPET
    return page[:marker] + RELOAD_SNIPPET + page[marker:]


def render_listing(directory: Path, url_path: str) -> str:
    entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
    items = []
    if url_path.rstrip("/"):
        items.append('<li><a href="../">../</a></li>')
    for entry in entries:
        if entry.name.startswith("."):
            continue
        name = entry.name + ("/" if entry.is_dir() else "")
        items.append(f'<li><a href="{html.escape(name, quote=True)}">{html.escape(name)}</a></li>')
    title = html.escape(url_path)
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>Index of {title}</title></head>"
        f"<body><h1>Index of {title}</h1><ul>{''.join(items)}</ul></body></html>"
    )


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the application."""

    def install_signal_handlers(self) -> None:
        return

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class PreviewSession:
    def __init__(
        self,
        root: str | Path,
        *,
        host: str = "127.0.0.1",
        port: int = 3000,
        start_path: str = "/xhtml",
        logger: logging.Logger | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.host = host
        self.port = port
        self.start_path = start_path if start_path.startswith("/") else f"/{start_path}"
        self.logger = logger or logging.getLogger(__name__)
        self.app = Starlette(
            routes=[
                Route(RELOAD_ENDPOINT, self._reload_stream),
                Route("/{path:path}", self._serve_path),
            ]
        )
        self._clients: set[asyncio.Queue[str | None]] = set()
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def _bind(self) -> socket.socket:
        # Bound here rather than by uvicorn, which exits the process on bind errors.
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            raise PreviewError(f"Cannot listen on {self.url}: {exc}") from exc
        self.port = sock.getsockname()[1]
        return sock

    async def start(self) -> None:
        if self._task is not None:
            raise PreviewError("Preview session already started")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            lifespan="off",
        )
        sock = self._bind()
        server = _EmbeddedServer(config)
        self._server = server
        self._task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if self._task.done():
                try:
                    self._task.result()
                except Exception as exc:
                    raise PreviewError(f"Preview server failed to start on {self.url}: {exc}") from exc
                raise PreviewError(f"Preview server stopped during startup on {self.url}")
            await asyncio.sleep(0.05)

        self.logger.info("Preview server running at %s%s (serving %s)", self.url, self.start_path, self.root)

    def reload(self) -> int:
        """Signal every connected page to reload; returns the number notified."""

        clients = list(self._clients)
        for queue in clients:
            queue.put_nowait("reload")
        self.logger.info("Reloading %d preview client(s)", len(clients))
        return len(clients)

    async def stop(self) -> None:
        for queue in list(self._clients):
            queue.put_nowait(None)
        if self._server is None or self._task is None:
            return

        self._server.should_exit = True
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._server = None
        self._task = None
        self.logger.info("Preview server stopped")

    async def _reload_stream(self, request: Request) -> Response:
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._clients.add(queue)

        async def events() -> AsyncIterator[str]:
            try:
                yield ": connected\n\n"
                while True:
                    message = await queue.get()
                    if message is None:
                        break
                    yield f"event: {message}\ndata: {message}\n\n"
            finally:
                self._clients.discard(queue)

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    async def _serve_path(self, request: Request) -> Response:
        rel_path = request.path_params.get("path", "")
        if not rel_path:
            return RedirectResponse(self.start_path)

        target = (self.root / rel_path).resolve()
        if target != self.root and self.root not in target.parents:
            return PlainTextResponse("Forbidden", status_code=403)

        if target.is_dir():
            if not request.url.path.endswith("/"):
                return RedirectResponse(request.url.path + "/")
            return HTMLResponse(render_listing(target, request.url.path))

        if target.is_file():
            if target.suffix.lower() in _INJECTABLE_SUFFIXES:
                page = target.read_text(encoding="utf-8", errors="replace")
                return HTMLResponse(inject_reload_snippet(page))
            return FileResponse(target)

        return PlainTextResponse("Not Found", status_code=404)
