"""Response body encoding for stubbed interactions."""

from __future__ import annotations

import dataclasses
import json
import xml.etree.ElementTree as ET
from enum import Enum
from typing import Any

from pydantic import BaseModel

from .models import ContentType

JSON_MEDIA_TYPE = "application/json"
XML_MEDIA_TYPE = "application/xml"
XML_ROOT_TAG = "response"
NO_INTERACTION_MESSAGE = "[STUB SERVER ERROR] does not have (any more) stub interactions for path/method"
RENDER_FAILURE_MESSAGE = "[STUB SERVER ERROR] failed to render stub response"
INVALID_CONTENT_LENGTH_MESSAGE = "[STUB SERVER ERROR] request has an invalid Content-Length header"


def render_body(body: Any, content_type: ContentType) -> tuple[bytes, str]:
    """Encode ``body`` for the wire, returning the bytes and their media type."""

    plain = _to_plain(body)
    if content_type is ContentType.XML:
        root = ET.Element(XML_ROOT_TAG)
        _fill_element(root, plain)
        return ET.tostring(root, encoding="utf-8", xml_declaration=True), XML_MEDIA_TYPE
    return json.dumps(plain).encode("utf-8"), JSON_MEDIA_TYPE


def error_payload(message: str, method: str, path: str) -> dict[str, str]:
    return {"message": message, "path": path, "method": method}


def no_interaction_error(method: str, path: str) -> dict[str, str]:
    """Payload returned when no stub is left for ``method`` + ``path``."""

    return error_payload(NO_INTERACTION_MESSAGE, method, path)


def _to_plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _to_plain(dataclasses.asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, dict):
        return {str(key): _to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_plain(item) for item in value]
    return value


def _fill_element(element: ET.Element, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, dict):
        for key, item in value.items():
            _fill_element(ET.SubElement(element, key), item)
    elif isinstance(value, list):
        for item in value:
            _fill_element(ET.SubElement(element, "item"), item)
    elif isinstance(value, bool):
        element.text = "true" if value else "false"
    else:
        element.text = str(value)
