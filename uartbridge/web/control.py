"""Minimal HTTP control surface: health probe, config dump, metrics, static UI."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Final
from urllib.parse import unquote

from ..const import HTTP_MAX_HEADER_LINES
from ..metrics import MetricsRenderer
from ..state.context import BridgeContext

logger = logging.getLogger("uartbridge.http")

_PHRASES: Final[dict[int, str]] = {
    200: "OK",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
}
_TEXT: Final[str] = "text/plain; charset=utf-8"


class HttpResponse:
    __slots__ = ("status", "body", "content_type")

    def __init__(self, status: int, body: bytes = b"", content_type: str = _TEXT) -> None:
        self.status = status
        self.body = body
        self.content_type = content_type


class ControlServer:
    """Serves the bridge's HTTP API and web UI on one asyncio listener."""

    def __init__(self, context: BridgeContext, metrics: MetricsRenderer | None = None) -> None:
        self.context = context
        config = context.config
        self._host = config.http_address.host
        self._port = config.http_address.port
        self._web_root = Path(config.web_root).resolve()
        if metrics is None and config.metrics_enabled:
            metrics = MetricsRenderer(context)
        self._metrics = metrics
        self._server: asyncio.AbstractServer | None = None
        self._resolved_port: int | None = None

    @property
    def port(self) -> int:
        return self._resolved_port or self._port

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await asyncio.start_server(self._handle_client, host=self._host, port=self._port)
        sockets = self._server.sockets or []
        if sockets:
            self._resolved_port = sockets[0].getsockname()[1]
        logger.info("HTTP control server listening on %s:%d", self._host, self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("HTTP control server stopped")

    async def run(self) -> None:
        await self.start()
        assert self._server is not None
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    # Routing -------------------------------------------------------------

    def route(self, method: str, target: str) -> HttpResponse:
        path = target.split("?", 1)[0].split("#", 1)[0]
        if method not in {"GET", "HEAD"}:
            return HttpResponse(405)
        if path == "/api/hi":
            return HttpResponse(200, b"hi\n")
        if path == "/api/config/get":
            return HttpResponse(200, self.context.state.config_json(), "application/json")
        if path == "/metrics" and self._metrics is not None:
            return HttpResponse(200, self._metrics.render(), self._metrics.content_type)
        return self._static(path)

    def _static(self, path: str) -> HttpResponse:
        relative = unquote(path).lstrip("/") or "index.html"
        candidate = (self._web_root / relative).resolve()
        if not candidate.is_relative_to(self._web_root):
            logger.warning("Rejected path outside web root: %s", path)
            return HttpResponse(403)
        if candidate.is_dir():
            candidate = candidate / "index.html"
        if not candidate.is_file():
            return HttpResponse(404)
        content_type = mimetypes.guess_type(candidate.name)[0] or "application/octet-stream"
        return HttpResponse(200, candidate.read_bytes(), content_type)

    # Wire ----------------------------------------------------------------

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request_line = await reader.readline()
            if not request_line:
                return
            parts = request_line.decode("ascii", errors="ignore").split()
            if len(parts) < 2:
                await self._write_response(writer, HttpResponse(400))
                return
            method, target = parts[0].upper(), parts[1]
            for _ in range(HTTP_MAX_HEADER_LINES):
                line = await reader.readline()
                if not line or line in {b"\r\n", b"\n"}:
                    break
            response = self.route(method, target)
            logger.debug("HTTP %s %s -> %d", method, target, response.status)
            await self._write_response(writer, response, include_body=method != "HEAD")
        except (OSError, ValueError) as exc:
            logger.warning("HTTP client request error: %s", exc)
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (OSError, RuntimeError):
                logger.debug("Error closing HTTP client connection", exc_info=True)

    async def _write_response(
        self,
        writer: asyncio.StreamWriter,
        response: HttpResponse,
        *,
        include_body: bool = True,
    ) -> None:
        status_line = f"HTTP/1.1 {response.status} {_PHRASES.get(response.status, 'Error')}\r\n"
        headers = (
            f"Content-Type: {response.content_type}\r\n"
            f"Content-Length: {len(response.body)}\r\n"
            "Connection: close\r\n\r\n"
        )
        body = response.body if include_body else b""
        writer.write(status_line.encode("ascii") + headers.encode("ascii") + body)
        await writer.drain()


__all__ = ["ControlServer", "HttpResponse"]
