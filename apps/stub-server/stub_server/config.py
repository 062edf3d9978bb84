"""Stub definition files (YAML or JSON) loaded into a registry."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import StubFileError
from .models import ContentType
from .registry import InteractionRegistry


class StubDefinition(BaseModel):
    """One stub entry of a stub file."""

    method: str = Field(min_length=1)
    path: str = Field(min_length=1)
    status: int = Field(default=200, ge=100, le=599)
    body: Any = None
    content_type: str = ContentType.JSON.value
    delay: float = Field(default=0.0, ge=0.0)

    def describe(self) -> str:
        suffix = f" (+{self.delay:g}s)" if self.delay else ""
        return f"{self.method.upper()} {self.path} -> {self.status} {ContentType.coerce(self.content_type).value}{suffix}"


class StubFile(BaseModel):
    """Ordered stubs; entries sharing a method and path are served in file order."""

    stubs: list[StubDefinition] = Field(default_factory=list)

    def register(self, registry: InteractionRegistry) -> InteractionRegistry:
        for stub in self.stubs:
            registry.add(
                stub.method,
                stub.path,
                stub.status,
                stub.body,
                stub.content_type,
                delay=stub.delay,
            )
        return registry


def load_stub_file(path: Path) -> StubFile:
    """Load and validate a stub file; JSON is parsed as YAML."""

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise StubFileError(f"Stub file {path} cannot be read: {exc}") from exc
    except yaml.YAMLError as exc:
        raise StubFileError(f"Stub file {path} is not valid YAML/JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise StubFileError(f"Stub file {path} must contain a mapping")
    try:
        return StubFile.model_validate(data)
    except ValidationError as exc:
        raise StubFileError(f"Stub file {path} is invalid: {exc}") from exc
