"""Test bootstrap for stub-server."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

APP_ROOT = Path(__file__).resolve().parents[1]

if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from stub_server.registry import InteractionRegistry  # noqa: E402
from stub_server.server import ServerConfig, StubServer  # noqa: E402


@pytest.fixture
def registry() -> InteractionRegistry:
    return InteractionRegistry()


@pytest.fixture
def stub_server() -> Iterator[StubServer]:
    server = StubServer(ServerConfig(shutdown_timeout=2.0)).start()
    try:
        yield server
    finally:
        server.stop()
