"""
pattern_monitor/records.py - Inbound record parsing

One message body is one JSON object whose values are scalars. Parsing maps
each value into a closed tagged variant (string, number, boolean); anything
else is rejected here, before any field is encoded.
"""
from __future__ import annotations

import json
import math
import numbers
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from .errors import ParseError, UnsupportedValueError


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class FieldValue:
    """A scalar field value tagged with its kind."""

    kind: ValueKind
    value: str | float | bool

    @classmethod
    def from_python(cls, value: Any, field: str | None = None) -> FieldValue:
        """Tag a decoded JSON value.

        Raises:
            UnsupportedValueError: for objects, arrays, null and non-finite numbers
        """
        # bool is a subclass of int, so it must be checked first
        if isinstance(value, bool):
            return cls(ValueKind.BOOLEAN, value)
        if isinstance(value, str):
            if not _encodable(value):
                raise UnsupportedValueError(
                    field, value, "string is not valid UTF-8 (lone surrogate)"
                )
            return cls(ValueKind.STRING, value)
        if isinstance(value, numbers.Real):
            try:
                number = float(value)
            except OverflowError:
                raise UnsupportedValueError(field, value, "number out of float range") from None
            if not math.isfinite(number):
                raise UnsupportedValueError(field, value, "number is not finite")
            return cls(ValueKind.NUMBER, number)
        raise UnsupportedValueError(field, value)

    def json_text(self) -> str:
        """JSON text of the value (strings quoted, booleans lower-case)."""
        if self.kind is ValueKind.NUMBER:
            return repr(float(self.value))
        return json.dumps(self.value, ensure_ascii=False)


@dataclass(frozen=True)
class FieldRecord:
    name: str
    value: FieldValue


@dataclass(frozen=True)
class Record:
    """A subject plus the ordered fields of one inbound message."""

    subject: str
    fields: tuple[FieldRecord, ...]

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def __len__(self) -> int:
        return len(self.fields)


def parse_payload(body: bytes | bytearray | str) -> dict[str, Any]:
    """Decode a message body into a JSON object.

    Raises:
        ParseError: if the body is not UTF-8 JSON or not an object
    """
    if isinstance(body, (bytes, bytearray, memoryview)):
        try:
            text = bytes(body).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"message body is not valid UTF-8: {e}") from e
    else:
        text = body

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"JSON parse error: {e}") from e

    if not isinstance(payload, dict):
        raise ParseError(
            f"message body is not a JSON object (got {type(payload).__name__})"
        )
    return payload


def parse_record(subject: str, body: bytes | bytearray | str) -> Record:
    """Parse a message body into a Record.

    Every field is validated before the Record is built, so a single
    unsupported value rejects the whole message.

    Raises:
        ParseError: body is not a JSON object
        UnsupportedValueError: a field value is not a supported scalar
    """
    return record_from_mapping(subject, parse_payload(body))


def record_from_mapping(subject: str, payload: Mapping[str, Any]) -> Record:
    """Build a Record from an already-decoded object.

    Raises:
        ParseError: a field name cannot be encoded as UTF-8
        UnsupportedValueError: a field value is not a supported scalar
    """
    for name in payload:
        if not _encodable(str(name)):
            raise ParseError(f"field name {str(name)!r} is not valid UTF-8 (lone surrogate)")
    fields = tuple(
        FieldRecord(str(name), FieldValue.from_python(value, str(name)))
        for name, value in payload.items()
    )
    return Record(subject=subject, fields=fields)


def _encodable(text: str) -> bool:
    # json.loads accepts "\ud800" escapes, which cannot become UTF-8 seeds or keys
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True
