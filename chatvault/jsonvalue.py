"""Dynamic JSON values for export payloads whose schema is not known up front.

``decode`` turns raw bytes into a ``JSONValue``. Every accessor is partial:
``as_object()``, ``as_array()``, ``as_string()`` and friends return ``None``
when the value holds a different kind, so validation reads as a chain of
lookups instead of nested try/except blocks::

    root = decode(data)
    convos = (root.as_object() or {}).get("conversations")
    items = convos.as_array() if convos else None
"""

import json
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple

from .errors import MalformedJSON


class Kind(Enum):
    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    INT = "int"
    DOUBLE = "double"
    BOOL = "bool"
    NULL = "null"


def _kind_of(raw: Any) -> Kind:
    # bool is a subclass of int, so it has to be checked first
    if raw is None:
        return Kind.NULL
    if isinstance(raw, bool):
        return Kind.BOOL
    if isinstance(raw, int):
        return Kind.INT
    if isinstance(raw, float):
        return Kind.DOUBLE
    if isinstance(raw, str):
        return Kind.STRING
    if isinstance(raw, list):
        return Kind.ARRAY
    if isinstance(raw, dict):
        return Kind.OBJECT
    raise TypeError(f"Not a JSON value: {type(raw).__name__}")


class JSONValue:
    """Immutable view over one decoded JSON value.

    Children are wrapped lazily on access, so wrapping a large export costs
    nothing until a caller walks into it.
    """

    __slots__ = ("_raw", "_kind")

    def __init__(self, raw: Any):
        object.__setattr__(self, "_kind", _kind_of(raw))
        object.__setattr__(self, "_raw", raw)

    def __setattr__(self, name, value):
        raise AttributeError("JSONValue is immutable")

    @property
    def kind(self) -> Kind:
        return self._kind

    @property
    def is_null(self) -> bool:
        return self._kind is Kind.NULL

    def as_object(self) -> Optional[Dict[str, "JSONValue"]]:
        if self._kind is not Kind.OBJECT:
            return None
        return {k: JSONValue(v) for k, v in self._raw.items()}

    def as_array(self) -> Optional[Tuple["JSONValue", ...]]:
        if self._kind is not Kind.ARRAY:
            return None
        return tuple(JSONValue(v) for v in self._raw)

    def as_string(self) -> Optional[str]:
        return self._raw if self._kind is Kind.STRING else None

    def as_int(self) -> Optional[int]:
        return self._raw if self._kind is Kind.INT else None

    def as_double(self) -> Optional[float]:
        """Numeric value as float; ints widen, bools do not."""
        if self._kind in (Kind.INT, Kind.DOUBLE):
            return float(self._raw)
        return None

    def as_bool(self) -> Optional[bool]:
        return self._raw if self._kind is Kind.BOOL else None

    def get(self, key: str) -> Optional["JSONValue"]:
        """Member lookup on an object; ``None`` for non-objects and missing keys."""
        if self._kind is not Kind.OBJECT or key not in self._raw:
            return None
        return JSONValue(self._raw[key])

    def keys(self) -> Iterator[str]:
        if self._kind is Kind.OBJECT:
            yield from self._raw.keys()

    def __len__(self) -> int:
        if self._kind in (Kind.OBJECT, Kind.ARRAY, Kind.STRING):
            return len(self._raw)
        return 0

    def to_python(self) -> Any:
        """Deep copy of the underlying plain Python structure."""
        return json.loads(json.dumps(self._raw))

    def dumps(self) -> str:
        """Canonical compact serialisation, used when persisting raw mappings."""
        return json.dumps(self._raw, ensure_ascii=False, separators=(",", ":"))

    def __eq__(self, other):
        if not isinstance(other, JSONValue):
            return NotImplemented
        return self._kind is other._kind and self._raw == other._raw

    def __hash__(self):
        return hash((self._kind, self.dumps()))

    def __repr__(self):
        text = self.dumps()
        if len(text) > 60:
            text = text[:57] + "..."
        return f"JSONValue({self._kind.value}: {text})"


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def decode(data) -> JSONValue:
    """Decode UTF-8 JSON bytes (or an already-decoded str) into a JSONValue.

    Raises MalformedJSON for empty input, invalid syntax and non-UTF-8 bytes.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        try:
            text = bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedJSON(f"File is not valid UTF-8: {e}") from e
    else:
        text = data
    if text.startswith("\ufeff"):
        text = text[1:]
    if not text.strip():
        raise MalformedJSON("No JSON content")
    try:
        raw = json.loads(text, parse_constant=_reject_constant)
    except (json.JSONDecodeError, ValueError) as e:
        raise MalformedJSON(str(e)) from e
    except RecursionError as e:
        raise MalformedJSON("JSON nesting is too deep") from e
    return JSONValue(raw)
