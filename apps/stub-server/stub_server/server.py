"""Threaded HTTP listener dispatching requests to stubbed interactions."""

from __future__ import annotations

import json
import socketserver
import threading
import time
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Mapping, Optional

import structlog
from pydantic import BaseModel, Field

from .errors import ServerStartupError
from .models import CaptureCallback, ContentType, StubOptions, StubRecord
from .registry import InteractionRegistry
from .rendering import (
    INVALID_CONTENT_LENGTH_MESSAGE,
    RENDER_FAILURE_MESSAGE,
    error_payload,
    no_interaction_error,
    render_body,
)

LOGGER = structlog.get_logger("stub_server")


class ServerConfig(BaseModel):
    """Bind address and lifecycle timeouts for a stub server."""

    host: str = "127.0.0.1"
    port: int = Field(default=0, ge=0, le=65535, description="0 picks a free port.")
    startup_timeout: float = Field(default=3.0, gt=0)
    shutdown_timeout: float = Field(default=15.0, gt=0)


@dataclass
class StubRequest:
    method: str
    path: str
    headers: dict[str, str]
    body: bytes


class ThreadedHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


class StubServer:
    """HTTP server answering each request with the next stub for its method and path."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        registry: InteractionRegistry | None = None,
    ) -> None:
        self._config = config or ServerConfig()
        self.registry = registry or InteractionRegistry()
        self._httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._logger = LOGGER.bind(component="server")

    @property
    def port(self) -> int:
        if not self._httpd:
            return self._config.port
        return self._httpd.server_address[1]

    @property
    def base_url(self) -> str:
        return f"http://{self._config.host}:{self.port}"

    @property
    def running(self) -> bool:
        return self._httpd is not None

    def start(self) -> "StubServer":
        if self._httpd:
            return self
        self._logger.info("server_starting", host=self._config.host, port=self._config.port)
        try:
            httpd = ThreadedHTTPServer((self._config.host, self._config.port), self._build_handler_factory())
        except OSError as exc:
            raise ServerStartupError(
                f"Unable to bind stub server on {self._config.host}:{self._config.port}: {exc}"
            ) from exc
        self._httpd = httpd
        self._ready.clear()
        self._thread = threading.Thread(target=self._serve, args=(httpd,), name="stub-server", daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout=self._config.startup_timeout):
            httpd.server_close()
            self._httpd = None
            self._thread = None
            raise ServerStartupError(
                f"Stub server did not start within {self._config.startup_timeout}s"
            )
        self._logger = self._logger.bind(host=httpd.server_address[0], port=httpd.server_address[1])
        self._logger.info("server_started")
        return self

    def stop(self) -> None:
        if not self._httpd:
            return
        self._logger.info("server_stopping")
        httpd, thread = self._httpd, self._thread
        self._httpd = None
        self._thread = None
        try:
            httpd.shutdown()
            httpd.server_close()
        finally:
            if thread:
                thread.join(timeout=self._config.shutdown_timeout)
                if thread.is_alive():
                    self._logger.error("server_stop_timed_out", timeout=self._config.shutdown_timeout)
        self._logger.info("server_stopped")

    def wait_until_ready(self, timeout: float = 1.0) -> bool:
        return self._ready.wait(timeout=timeout)

    def add_interaction(
        self,
        method: str,
        path: str,
        status: int,
        body: Any = None,
        content_type: ContentType | str = ContentType.JSON,
        capture_callback: Optional[CaptureCallback] = None,
        options: StubOptions | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> None:
        self.registry.add(method, path, status, body, content_type, capture_callback, options, **overrides)

    def interaction(self, method: str, path: str, attempt: int) -> StubRecord | None:
        return self.registry.read_at(method, path, attempt)

    def interactions(self, method: str, path: str) -> list[StubRecord]:
        return self.registry.read_all(method, path)

    def reset(self) -> None:
        self.registry.reset()

    def __enter__(self) -> "StubServer":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _serve(self, httpd: ThreadedHTTPServer) -> None:
        self._ready.set()
        httpd.serve_forever()

    def _build_handler_factory(self) -> type[BaseHTTPRequestHandler]:
        registry = self.registry
        handler_logger = LOGGER.bind(component="handler")

        class Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - avoid stderr
                handler_logger.debug(
                    "http_trace",
                    client_ip=self.client_address[0],
                    message=format % args,
                )

            def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler requirement)
                self._handle()

            def do_POST(self) -> None:  # noqa: N802
                self._handle()

            def do_PUT(self) -> None:  # noqa: N802
                self._handle()

            def do_DELETE(self) -> None:  # noqa: N802
                self._handle()

            def do_PATCH(self) -> None:  # noqa: N802
                self._handle()

            def do_HEAD(self) -> None:  # noqa: N802
                self._handle(head_only=True)

            def do_OPTIONS(self) -> None:  # noqa: N802
                self._handle()

            def _handle(self, *, head_only: bool = False) -> None:
                method, path = self.command, self.path.split("?", 1)[0]
                raw_length = self.headers.get("Content-Length", 0) or 0
                try:
                    length = int(raw_length)
                    if length < 0:
                        raise ValueError(raw_length)
                except ValueError:
                    handler_logger.warning("request_rejected", method=method, path=path, content_length=raw_length)
                    # body length unknown, the connection cannot be reused
                    self.close_connection = True
                    self._respond_json(
                        HTTPStatus.BAD_REQUEST,
                        error_payload(INVALID_CONTENT_LENGTH_MESSAGE, method, path),
                        head_only=head_only,
                    )
                    return
                request = StubRequest(
                    method=method,
                    path=path,
                    headers={key: value for key, value in self.headers.items()},
                    body=self.rfile.read(length),
                )
                request_logger = handler_logger.bind(method=request.method, path=request.path)
                request_logger.info(
                    "request_received",
                    headers=request.headers,
                    body=request.body.decode("utf-8", errors="replace"),
                )
                stub = registry.match_next(request.method, request.path)
                if stub is None:
                    request_logger.warning("request_unmatched")
                    self._respond_json(
                        HTTPStatus.NOT_IMPLEMENTED,
                        no_interaction_error(request.method, request.path),
                        head_only=head_only,
                    )
                    return
                try:
                    self._respond_with_stub(stub, request, request_logger, head_only=head_only)
                except Exception:
                    request_logger.exception("request_failed", attempt=stub.attempt)
                    self._respond_json(
                        HTTPStatus.INTERNAL_SERVER_ERROR,
                        error_payload(RENDER_FAILURE_MESSAGE, request.method, request.path),
                        head_only=head_only,
                    )

            def _respond_with_stub(
                self,
                stub: StubRecord,
                request: StubRequest,
                logger: Any,
                *,
                head_only: bool = False,
            ) -> None:
                if stub.delay > 0:
                    logger.info("response_delayed", delay=stub.delay)
                    time.sleep(stub.delay)
                registry.record_capture(stub, request.body, request.headers)
                if stub.body is None:
                    self._send(stub.status, b"", None, head_only=head_only)
                    logger.info("request_served", status=stub.status, attempt=stub.attempt, body=None)
                    return
                payload, media_type = render_body(stub.body, stub.content_type)
                self._send(stub.status, payload, media_type, head_only=head_only)
                logger.info(
                    "request_served",
                    status=stub.status,
                    attempt=stub.attempt,
                    content_type=stub.content_type.value,
                    body=payload.decode("utf-8"),
                )

            def _respond_json(self, status: HTTPStatus, payload: dict[str, Any], *, head_only: bool = False) -> None:
                body = json.dumps(payload).encode("utf-8")
                self._send(status, body, "application/json", head_only=head_only)

            def _send(self, status: int, body: bytes, media_type: str | None, *, head_only: bool) -> None:
                self.send_response(status)
                if media_type:
                    self.send_header("Content-Type", f"{media_type}; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                if body and not head_only:
                    self.wfile.write(body)

        return Handler


def start_default_server(**config: Any) -> StubServer:
    """Start a stub server on a free local port with default timeouts."""

    return StubServer(ServerConfig(**config)).start()
