"""Stub records, content types and per-stub options."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidOptionError, StubAlreadyCapturedError

LOGGER = structlog.get_logger("stub_server")

CaptureCallback = Callable[[bytes, dict[str, str]], None]


class ContentType(str, Enum):
    """Serialization applied to a stub's response body."""

    JSON = "JSON"
    XML = "XML"

    @classmethod
    def coerce(cls, value: Any) -> "ContentType":
        """Map any caller value onto a content type, defaulting to JSON."""

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        LOGGER.warning("content_type_unrecognized", content_type=repr(value), fallback=cls.JSON.value)
        return cls.JSON


class StubOptions(BaseModel):
    """Resolved per-stub behaviour applied by the transport layer."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    delay: float = Field(default=0.0, ge=0.0, description="Seconds to wait before responding.")

    @field_validator("delay", mode="before")
    @classmethod
    def _delay_seconds(cls, value: Any) -> Any:
        if isinstance(value, timedelta):
            return value.total_seconds()
        return value


def with_response_delay(delay: float | timedelta) -> StubOptions:
    """Shortcut for options that only delay the response."""

    return resolve_options(delay=delay)


def resolve_options(
    options: StubOptions | Mapping[str, Any] | None = None,
    **overrides: Any,
) -> StubOptions:
    """Merge ``options`` and keyword overrides into validated ``StubOptions``.

    Raises:
        InvalidOptionError: unknown option names, wrong types or negative delays.
    """

    if options is None:
        payload: dict[str, Any] = {}
    elif isinstance(options, StubOptions):
        payload = options.model_dump()
    elif isinstance(options, Mapping):
        payload = dict(options)
    else:
        raise InvalidOptionError(f"Options must be StubOptions or a mapping, got {type(options).__name__}")
    payload.update(overrides)
    try:
        return StubOptions.model_validate(payload)
    except ValidationError as exc:
        raise InvalidOptionError(f"Invalid stub options: {exc}") from exc


@dataclass
class StubRecord:
    """One expected request and the canned response returned for it."""

    method: str
    path: str
    status: int
    body: Any = None
    content_type: ContentType = ContentType.JSON
    delay: float = 0.0
    capture_callback: Optional[CaptureCallback] = field(default=None, repr=False, compare=False)
    captured_body: Optional[bytes] = None
    captured_headers: Optional[dict[str, str]] = None
    captured: bool = False
    attempt: int = 0
    stub_id: int = 0

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        status: int,
        body: Any,
        content_type: ContentType | str,
        capture_callback: Optional[CaptureCallback],
        options: StubOptions,
    ) -> "StubRecord":
        return cls(
            method=method,
            path=path,
            status=status,
            body=body,
            content_type=ContentType.coerce(content_type),
            delay=options.delay,
            capture_callback=capture_callback,
        )

    def capture(self, body: bytes, headers: Mapping[str, str]) -> None:
        """Store the consumed request and hand it to the capture callback."""

        self.store_capture(body, headers)
        self.notify_capture()

    def store_capture(self, body: bytes, headers: Mapping[str, str]) -> None:
        if self.captured:
            raise StubAlreadyCapturedError(self.method, self.path)
        self.captured_body = body
        self.captured_headers = dict(headers)
        self.captured = True

    def notify_capture(self) -> None:
        if self.capture_callback is not None and self.captured:
            self.capture_callback(self.captured_body or b"", dict(self.captured_headers or {}))

    def snapshot(self) -> "StubRecord":
        """Detached copy safe to hand out while the queued record stays put.

        The body is deep-copied, so mutating a snapshot's body never changes
        what the registry serves or reports later.
        """

        headers = dict(self.captured_headers) if self.captured_headers is not None else None
        return replace(self, body=copy.deepcopy(self.body), captured_headers=headers)
