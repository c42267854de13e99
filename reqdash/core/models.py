"""
ReqDash Request / Response Descriptors
======================================
Plain data models shared by the parser, the relay and the web layer.

Headers are kept as an ordered multi-map so repeated names (``Set-Cookie``
and friends) survive; the JSON wire form flattens them with the last value
winning.
"""

from __future__ import annotations

import json
from collections.abc import Iterable as IterableABC, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

# ── Enums ────────────────────────────────────────────────────────────────────


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def from_str(cls, method: str) -> Optional["HttpMethod"]:
        try:
            return cls(method.strip().upper())
        except ValueError:
            return None


#: Methods whose outbound call never carries a body.
BODYLESS_METHODS = frozenset({HttpMethod.GET.value, HttpMethod.HEAD.value})


def normalize_method(method: Optional[str]) -> str:
    """Upper-case a method name, defaulting to GET. Unknown verbs pass through."""
    if not method or not str(method).strip():
        return HttpMethod.GET.value
    return str(method).strip().upper()


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def loads_json(text: str) -> Any:
    """``json.loads`` without the ``NaN``/``Infinity`` extensions."""
    return json.loads(text, parse_constant=_reject_constant)


# ── Headers ──────────────────────────────────────────────────────────────────

HeadersInput = Union["Headers", Mapping[str, Any], Iterable[Tuple[str, Any]], None]


class Headers:
    """Ordered multi-map of header name/value pairs.

    Names keep the case they were typed with; lookups are case-insensitive.
    """

    def __init__(self, pairs: Optional[Iterable[Tuple[str, str]]] = None):
        self._pairs: List[Tuple[str, str]] = []
        for name, value in pairs or ():
            self.add(name, value)

    @classmethod
    def from_value(cls, value: HeadersInput) -> "Headers":
        if value is None:
            return cls()
        if isinstance(value, Headers):
            return cls(value.items())
        if isinstance(value, Mapping):
            return cls((str(k), "" if v is None else str(v)) for k, v in value.items())
        if isinstance(value, (str, bytes)) or not isinstance(value, IterableABC):
            raise ValueError(
                f"Headers must be a mapping or a list of name/value pairs, got {type(value).__name__}"
            )
        pairs: List[Tuple[str, str]] = []
        for item in value:
            if isinstance(item, (str, bytes)) or not isinstance(item, Sequence) or len(item) != 2:
                raise ValueError(f"Invalid header entry {item!r}; expected a name/value pair")
            name, v = item
            pairs.append((str(name), "" if v is None else str(v)))
        return cls(pairs)

    def add(self, name: str, value: str) -> None:
        """Append a header, keeping any earlier ones with the same name."""
        self._pairs.append((name, value))

    def set(self, name: str, value: str) -> None:
        """Replace every header called ``name`` with a single value."""
        self.remove(name)
        self._pairs.append((name, value))

    def remove(self, name: str) -> int:
        lowered = name.lower()
        before = len(self._pairs)
        self._pairs = [(k, v) for k, v in self._pairs if k.lower() != lowered]
        return before - len(self._pairs)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Last value for ``name`` (case-insensitive)."""
        values = self.get_all(name)
        return values[-1] if values else default

    def get_all(self, name: str) -> List[str]:
        lowered = name.lower()
        return [v for k, v in self._pairs if k.lower() == lowered]

    def items(self) -> List[Tuple[str, str]]:
        return list(self._pairs)

    def to_pairs(self) -> List[List[str]]:
        return [[k, v] for k, v in self._pairs]

    def to_dict(self) -> Dict[str, str]:
        """Flatten to a plain mapping; repeated names keep the last value."""
        flat: Dict[str, str] = {}
        for k, v in self._pairs:
            flat[k] = v
        return flat

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        lowered = name.lower()
        return any(k.lower() == lowered for k, _ in self._pairs)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(list(self._pairs))

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return self._pairs == other._pairs
        if isinstance(other, Mapping):
            return self.to_dict() == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"Headers({self._pairs!r})"


# ── Descriptors ──────────────────────────────────────────────────────────────


@dataclass
class RequestDescriptor:
    """An editable HTTP request: what the parser produces and the relay executes."""
    url: str = ""
    method: str = HttpMethod.GET.value
    headers: Headers = field(default_factory=Headers)
    data: Any = None

    def __post_init__(self) -> None:
        self.method = normalize_method(self.method)
        if not isinstance(self.headers, Headers):
            self.headers = Headers.from_value(self.headers)

    @property
    def has_body(self) -> bool:
        """True when the outbound call would carry a payload."""
        return self.data is not None and self.method not in BODYLESS_METHODS

    def body_text(self) -> Optional[str]:
        """Serialized payload for the wire, or None when nothing is sent."""
        if not self.has_body:
            return None
        # Strings included: "hello" goes out as "\"hello\""
        return json.dumps(self.data, allow_nan=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method,
            "headers": self.headers.to_dict(),
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RequestDescriptor":
        return cls(
            url=str(data.get("url") or ""),
            method=data.get("method") or HttpMethod.GET.value,
            headers=Headers.from_value(data.get("headers")),
            data=data.get("data"),
        )


@dataclass
class ResponseDescriptor:
    """Normalized outcome of an outbound call."""
    status: int
    status_text: str = ""
    headers: Headers = field(default_factory=Headers)
    data: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.headers, Headers):
            self.headers = Headers.from_value(self.headers)

    @property
    def is_json(self) -> bool:
        return "application/json" in (self.headers.get("content-type") or "").lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "statusText": self.status_text,
            "headers": self.headers.to_dict(),
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResponseDescriptor":
        return cls(
            status=int(data.get("status", 0)),
            status_text=data.get("statusText", ""),
            headers=Headers.from_value(data.get("headers")),
            data=data.get("data"),
        )
