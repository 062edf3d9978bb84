"""Exception hierarchy for the stub server."""

from __future__ import annotations


class StubServerError(Exception):
    """Base class for every error raised by the stub server."""


class InvalidOptionError(StubServerError):
    """Per-stub options could not be resolved into a valid configuration."""


class InvalidStubError(StubServerError):
    """A stub definition is malformed (empty method/path, bad status)."""


class StubAlreadyCapturedError(StubServerError):
    """A consumed stub was asked to capture a request a second time."""

    def __init__(self, method: str, path: str) -> None:
        super().__init__(f"Stub for {method} {path} already captured a request")
        self.method = method
        self.path = path


class ServerStartupError(StubServerError):
    """The HTTP listener did not come up within the startup timeout."""


class StubFileError(StubServerError):
    """A stub file is unreadable or does not describe valid stubs."""
