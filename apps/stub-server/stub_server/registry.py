"""Interaction registry: per (method, path) replay-once queues of stubs."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import structlog

from .errors import InvalidStubError
from .models import CaptureCallback, ContentType, StubOptions, StubRecord, resolve_options

LOGGER = structlog.get_logger("stub_server")


def interaction_key(method: str, path: str) -> str:
    return f"{method.upper()}_{path}"


@dataclass
class _InteractionQueue:
    records: list[StubRecord] = field(default_factory=list)
    cursor: int = 0

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self.records)


class InteractionRegistry:
    """Thread-safe store of stubbed interactions.

    Each key owns an append-only list of ``StubRecord`` objects and a cursor
    pointing at the next record to hand out. A single lock serializes every
    operation, so concurrent matches for one key never receive the same record
    and records leave strictly in insertion order. Callers only ever see
    detached copies; the queued records stay owned by the registry.
    """

    def __init__(self, logger: Any | None = None) -> None:
        self._table: dict[str, _InteractionQueue] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._logger = logger or LOGGER.bind(component="registry")
        self._logger.debug("registry_created")

    def add(
        self,
        method: str,
        path: str,
        status: int,
        body: Any = None,
        content_type: ContentType | str = ContentType.JSON,
        capture_callback: Optional[CaptureCallback] = None,
        options: StubOptions | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> "InteractionRegistry":
        """Append a stub to the queue for ``method`` + ``path``.

        Options are resolved before the lock is taken, so a misconfigured stub
        raises ``InvalidOptionError`` and nothing is registered.
        """

        _validate_stub(method, path, status)
        resolved = resolve_options(options, **overrides)
        record = StubRecord.build(method.upper(), path, status, body, content_type, capture_callback, resolved)
        key = interaction_key(method, path)
        with self._lock:
            queue = self._table.get(key)
            if queue is None:
                queue = _InteractionQueue()
                self._table[key] = queue
                self._logger.debug("interaction_key_created", key=key)
            record.attempt = len(queue.records)
            record.stub_id = next(self._ids)
            queue.records.append(record)
        self._logger.info(
            "stub_added",
            method=record.method,
            path=path,
            status=status,
            attempt=record.attempt,
            delay=resolved.delay,
        )
        return self

    def match_next(self, method: str, path: str) -> StubRecord | None:
        """Consume the next unconsumed stub for the key, or ``None`` when exhausted."""

        key = interaction_key(method, path)
        with self._lock:
            queue = self._table.get(key)
            if queue is None or queue.exhausted:
                record = None
            else:
                record = queue.records[queue.cursor].snapshot()
                queue.cursor += 1
        if record is None:
            self._logger.warning("stub_exhausted", key=key)
        else:
            self._logger.debug("stub_matched", key=key, attempt=record.attempt)
        return record

    def read_at(self, method: str, path: str, attempt: int) -> StubRecord | None:
        with self._lock:
            stored = self._stored(method, path, attempt)
            return stored.snapshot() if stored is not None else None

    def read_all(self, method: str, path: str) -> list[StubRecord]:
        with self._lock:
            queue = self._table.get(interaction_key(method, path))
            if queue is None:
                return []
            return [record.snapshot() for record in queue.records]

    def record_capture(
        self,
        consumed: StubRecord,
        body: bytes,
        headers: Mapping[str, str],
    ) -> StubRecord | None:
        """Capture a request on the stored record ``consumed`` was copied from.

        The callback runs once, after the lock is released, with exactly the
        body and headers that ``read_at`` reports afterwards. When the stored
        record is gone (the registry was reset while the request was in
        flight) the capture lands on ``consumed`` only, its callback still
        runs, and ``None`` is returned.
        """

        with self._lock:
            stored = self._stored(consumed.method, consumed.path, consumed.attempt)
            if stored is not None and stored.stub_id == consumed.stub_id:
                stored.store_capture(body, headers)
                snapshot = stored.snapshot()
            else:
                stored = None
        if stored is None:
            self._logger.warning(
                "stub_capture_orphaned",
                method=consumed.method,
                path=consumed.path,
                attempt=consumed.attempt,
            )
            consumed.capture(body, headers)
            return None
        snapshot.notify_capture()
        return snapshot

    def pending(self, method: str, path: str) -> int:
        with self._lock:
            queue = self._table.get(interaction_key(method, path))
            if queue is None:
                return 0
            return len(queue.records) - queue.cursor

    def keys(self) -> list[tuple[str, str]]:
        with self._lock:
            return [(queue.records[0].method, queue.records[0].path) for queue in self._table.values() if queue.records]

    def reset(self) -> None:
        with self._lock:
            discarded = len(self._table)
            self._table = {}
        self._logger.info("registry_reset", discarded_keys=discarded)

    def _stored(self, method: str, path: str, attempt: int) -> StubRecord | None:
        queue = self._table.get(interaction_key(method, path))
        if queue is None or attempt < 0 or attempt >= len(queue.records):
            return None
        return queue.records[attempt]


def _validate_stub(method: Any, path: Any, status: Any) -> None:
    if not isinstance(method, str) or not method.strip():
        raise InvalidStubError("Stub method must be a non-empty string")
    if not isinstance(path, str) or not path:
        raise InvalidStubError("Stub path must be a non-empty string")
    if isinstance(status, bool) or not isinstance(status, int) or not 100 <= status <= 599:
        raise InvalidStubError(f"Stub status must be an HTTP status code, got {status!r}")
