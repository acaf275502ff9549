# src/hecship/contracts/records.py
"""Record and event contracts.

Record is the read-only snapshot handed over by the upstream stream.
EnrichedEvent is the wire-ready document derived from exactly one Record.

Design notes:
- Known fields are explicit attributes; everything else lives in the
  ``extra`` extension map so the wire format stays stable as upstream
  producers add fields.
- EnrichedEvent carries no reference back to its Record, so records are
  released as soon as a flush cycle has enriched them.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import Any

from hecship.contracts.enums import RecordStatus

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Scalar types allowed in the extension map
_SCALAR_TYPES = (str, int, float, bool)

# JSON keys understood by Record.from_dict(); everything else becomes extra
_KNOWN_KEYS = frozenset(
    {
        "identifier",
        "status",
        "hostname",
        "url",
        "requestTime",
        "responseTime",
        "requestHeaders",
        "responseHeaders",
    }
)


def epoch_millis(value: datetime) -> int:
    """Convert an aware datetime to integer milliseconds since the epoch."""
    return (value - _EPOCH) // timedelta(milliseconds=1)


def normalize_header_name(name: str) -> str:
    """Normalize a header name into a searchable field key.

    Lower-cases the name and replaces every character outside ``[a-z0-9]``
    with ``_``. Idempotent: normalizing a normalized name is a no-op.

    Example:
        >>> normalize_header_name("X-Forwarded-For")
        'x_forwarded_for'
    """
    return "".join(ch if ("a" <= ch <= "z" or "0" <= ch <= "9") else "_" for ch in name.lower())


def headers_to_fields(headers: Iterable[Header]) -> dict[str, str]:
    """Map headers to normalized-name keys.

    Later headers overwrite earlier ones that normalize to the same key.
    """
    fields: dict[str, str] = {}
    for header in headers:
        fields[normalize_header_name(header.name)] = header.value
    return fields


@dataclass(frozen=True, slots=True)
class Header:
    """One HTTP header as a name/value pair."""

    name: str
    value: str


@dataclass(frozen=True, slots=True)
class Record:
    """Immutable snapshot of one logged HTTP transaction.

    Attributes:
        identifier: Upstream identifier of the transaction
        status: Processing status at the time of hand-over
        hostname: Target host, if known
        url: Full request URL, if known
        request_time: When the request was sent (timezone-aware)
        response_time: When the response arrived (timezone-aware)
        request_headers: Ordered request headers, None if not captured
        response_headers: Ordered response headers, None if not captured
        extra: Additional scalar fields (read-only)
    """

    identifier: str | int
    status: RecordStatus
    hostname: str | None = None
    url: str | None = None
    request_time: datetime | None = None
    response_time: datetime | None = None
    request_headers: tuple[Header, ...] | None = None
    response_headers: tuple[Header, ...] | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("request_time", "response_time"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                raise ValueError(f"{name} must be timezone-aware, got naive datetime {value!r}")
        for key, value in self.extra.items():
            if value is not None and not isinstance(value, _SCALAR_TYPES):
                raise ValueError(f"extra field {key!r} must be a scalar, got {type(value).__name__}")
        # Freeze the extension map so no caller can mutate it through the record
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Record:
        """Build a Record from a decoded JSON object.

        Timestamps may be ISO 8601 strings (naive values are taken as UTC)
        or integer epoch milliseconds. Headers may be a list of
        ``{"name": ..., "value": ...}`` objects, a list of ``[name, value]``
        pairs, or an object mapping names to values.

        Raises:
            ValueError: If a field has an unusable shape or value.
        """
        if "identifier" not in data:
            raise ValueError("record is missing 'identifier'")
        try:
            status = RecordStatus(data.get("status", RecordStatus.PROCESSED))
        except ValueError as e:
            raise ValueError(f"unknown record status {data.get('status')!r}") from e

        return cls(
            identifier=data["identifier"],
            status=status,
            hostname=data.get("hostname"),
            url=data.get("url"),
            request_time=_parse_timestamp(data.get("requestTime"), "requestTime"),
            response_time=_parse_timestamp(data.get("responseTime"), "responseTime"),
            request_headers=_parse_headers(data.get("requestHeaders"), "requestHeaders"),
            response_headers=_parse_headers(data.get("responseHeaders"), "responseHeaders"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    def filter_view(self) -> dict[str, Any]:
        """Return the plain dict that filter expressions evaluate against."""
        view: dict[str, Any] = dict(self.extra)
        view.update(
            {
                "identifier": self.identifier,
                "status": self.status.value,
                "hostname": self.hostname,
                "url": self.url,
                "requestTime": epoch_millis(self.request_time) if self.request_time else None,
                "responseTime": epoch_millis(self.response_time) if self.response_time else None,
                "requestHeaders": headers_to_fields(self.request_headers or ()),
                "responseHeaders": headers_to_fields(self.response_headers or ()),
            }
        )
        return view


@dataclass(frozen=True, slots=True)
class EnrichedEvent:
    """Wire-ready event document.

    Created fresh per flush cycle and never mutated afterwards.
    """

    fields: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def to_payload(self) -> dict[str, Any]:
        """Return a fresh, mutable copy of the event fields."""
        return {k: dict(v) if isinstance(v, Mapping) else v for k, v in self.fields.items()}

    def to_json(self) -> bytes:
        """Serialize to compact UTF-8 JSON.

        Raises:
            ValueError: If a float field is NaN or infinite (not valid JSON)
        """
        return json.dumps(self.to_payload(), separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")


def _parse_timestamp(value: Any, name: str) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an ISO 8601 string or epoch milliseconds, got bool")
    if isinstance(value, int):
        try:
            return _EPOCH + timedelta(milliseconds=value)
        except OverflowError as e:
            raise ValueError(f"{name} is out of range: {value}") from e
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise ValueError(f"{name} is not a valid ISO 8601 timestamp: {value!r}") from e
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError(f"{name} must be an ISO 8601 string or epoch milliseconds, got {type(value).__name__}")


def _parse_headers(value: Any, name: str) -> tuple[Header, ...] | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return tuple(Header(str(k), _header_value(v, name)) for k, v in value.items())
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list or an object, got {type(value).__name__}")

    headers: list[Header] = []
    for item in value:
        match item:
            case {"name": str() as header_name, "value": header_value}:
                headers.append(Header(header_name, _header_value(header_value, name)))
            case [str() as header_name, header_value]:
                headers.append(Header(header_name, _header_value(header_value, name)))
            case _:
                raise ValueError(f"{name} entry has unsupported shape: {item!r}")
    return tuple(headers)


def _header_value(value: Any, name: str) -> str:
    if value is None:
        raise ValueError(f"{name} entry has a null value")
    return str(value)
