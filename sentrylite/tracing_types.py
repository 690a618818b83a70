"""Value types used by tracing: identifiers, statuses, sampling decisions and trace headers."""

from __future__ import annotations

import enum
import json
import re
import secrets
from dataclasses import dataclass, field
from typing import Any, ClassVar

SENTRY_TRACE_HEADER = "sentry-trace"
SENTRY_BAGGAGE_HEADER = "baggage"

_SENTRY_TRACE_PATTERN = re.compile(
    r"([0-9a-fA-F]{32})-([0-9a-fA-F]{16})(?:-([01]))?"
)


def _checked_bytes(kind: str, raw: bytes, size: int) -> bytes:
    data = bytes(raw) if raw else bytes(size)
    if len(data) != size:
        raise ValueError(f"{kind} needs {size} bytes, got {len(data)}")
    return data


def _bytes_from_hex(kind: str, text: str | bytes, size: int) -> bytes:
    if isinstance(text, bytes):
        text = text.decode("ascii")
    if len(text) != 2 * size:
        raise ValueError(f"{kind} needs {2 * size} hex digits, got {len(text)}")
    return bytes.fromhex(text)


@dataclass(frozen=True)
class TraceID:
    """Identifies a trace (16 bytes), shown as lowercase hex."""

    raw: bytes = b""
    SIZE: ClassVar[int] = 16

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "raw", _checked_bytes(type(self).__name__, self.raw, self.SIZE)
        )

    @classmethod
    def random(cls) -> "TraceID":
        """Return an identifier made of cryptographically random bytes."""
        return cls(secrets.token_bytes(cls.SIZE))

    @classmethod
    def from_hex(cls, text: str | bytes) -> "TraceID":
        """Parse an identifier from its hex form."""
        return cls(_bytes_from_hex(cls.__name__, text, cls.SIZE))

    def hex(self) -> str:
        """Return the identifier as lowercase hex."""
        return self.raw.hex()

    def is_zero(self) -> bool:
        """Tell whether every byte is zero."""
        return not any(self.raw)

    def __str__(self) -> str:
        return self.hex()


@dataclass(frozen=True)
class SpanID:
    """Identifies a span (8 bytes), shown as lowercase hex."""

    raw: bytes = b""
    SIZE: ClassVar[int] = 8

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "raw", _checked_bytes(type(self).__name__, self.raw, self.SIZE)
        )

    @classmethod
    def random(cls) -> "SpanID":
        """Return an identifier made of cryptographically random bytes."""
        return cls(secrets.token_bytes(cls.SIZE))

    @classmethod
    def from_hex(cls, text: str | bytes) -> "SpanID":
        """Parse an identifier from its hex form."""
        return cls(_bytes_from_hex(cls.__name__, text, cls.SIZE))

    def hex(self) -> str:
        """Return the identifier as lowercase hex."""
        return self.raw.hex()

    def is_zero(self) -> bool:
        """Tell whether every byte is zero."""
        return not any(self.raw)

    def __str__(self) -> str:
        return self.hex()


class SpanStatus(enum.IntEnum):
    """The status of a span."""

    UNDEFINED = 0
    OK = 1
    CANCELED = 2
    UNKNOWN = 3
    INVALID_ARGUMENT = 4
    DEADLINE_EXCEEDED = 5
    NOT_FOUND = 6
    ALREADY_EXISTS = 7
    PERMISSION_DENIED = 8
    RESOURCE_EXHAUSTED = 9
    FAILED_PRECONDITION = 10
    ABORTED = 11
    OUT_OF_RANGE = 12
    UNIMPLEMENTED = 13
    INTERNAL_ERROR = 14
    UNAVAILABLE = 15
    DATA_LOSS = 16
    UNAUTHENTICATED = 17

    def wire_name(self) -> str:
        """Return the protocol name; "" for an undefined status."""
        return _STATUS_NAMES[self]

    def to_json(self) -> str:
        """Return the JSON text: the quoted name, or null when undefined."""
        name = self.wire_name()
        return json.dumps(name) if name else "null"

    def __str__(self) -> str:
        return self.wire_name()


_STATUS_NAMES = {
    SpanStatus.UNDEFINED: "",
    SpanStatus.OK: "ok",
    SpanStatus.CANCELED: "cancelled",
    SpanStatus.UNKNOWN: "unknown",
    SpanStatus.INVALID_ARGUMENT: "invalid_argument",
    SpanStatus.DEADLINE_EXCEEDED: "deadline_exceeded",
    SpanStatus.NOT_FOUND: "not_found",
    SpanStatus.ALREADY_EXISTS: "already_exists",
    SpanStatus.PERMISSION_DENIED: "permission_denied",
    SpanStatus.RESOURCE_EXHAUSTED: "resource_exhausted",
    SpanStatus.FAILED_PRECONDITION: "failed_precondition",
    SpanStatus.ABORTED: "aborted",
    SpanStatus.OUT_OF_RANGE: "out_of_range",
    SpanStatus.UNIMPLEMENTED: "unimplemented",
    SpanStatus.INTERNAL_ERROR: "internal_error",
    SpanStatus.UNAVAILABLE: "unavailable",
    SpanStatus.DATA_LOSS: "data_loss",
    SpanStatus.UNAUTHENTICATED: "unauthenticated",
}


class Sampled(enum.IntEnum):
    """A sampling decision."""

    FALSE = -1
    UNDEFINED = 0
    TRUE = 1

    def as_bool(self) -> bool:
        """Return True only for a positive decision."""
        return self is Sampled.TRUE

    def __str__(self) -> str:
        return {
            Sampled.FALSE: "SampledFalse",
            Sampled.UNDEFINED: "SampledUndefined",
            Sampled.TRUE: "SampledTrue",
        }[self]


class TransactionSource(str, enum.Enum):
    """How the name of a transaction was determined."""

    CUSTOM = "custom"
    URL = "url"
    ROUTE = "route"
    VIEW = "view"
    COMPONENT = "component"
    TASK = "task"

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        """Tell whether ``value`` is a source known to the protocol."""
        try:
            cls(value)
        except ValueError:
            return False
        return True

    def __str__(self) -> str:
        return self.value


@dataclass
class TraceContext:
    """Information about an ongoing trace, as stored in event contexts."""

    trace_id: TraceID = field(default_factory=TraceID)
    span_id: SpanID = field(default_factory=SpanID)
    parent_span_id: SpanID = field(default_factory=SpanID)
    op: str = ""
    description: str = ""
    status: SpanStatus = SpanStatus.UNDEFINED

    def to_map(self) -> dict[str, Any]:
        """Return the context as a mapping, leaving out unset fields."""
        result: dict[str, Any] = {
            "trace_id": self.trace_id.hex(),
            "span_id": self.span_id.hex(),
        }
        if not self.parent_span_id.is_zero():
            result["parent_span_id"] = self.parent_span_id.hex()
        if self.op:
            result["op"] = self.op
        if self.description:
            result["description"] = self.description
        if self.status != SpanStatus.UNDEFINED:
            result["status"] = self.status.wire_name()
        return result

    def to_json(self) -> str:
        """Return the compact JSON form; a zero parent span id is omitted."""
        payload: dict[str, Any] = {
            "trace_id": self.trace_id.hex(),
            "span_id": self.span_id.hex(),
        }
        if self.op:
            payload["op"] = self.op
        if self.description:
            payload["description"] = self.description
        if self.status != SpanStatus.UNDEFINED:
            payload["status"] = self.status.wire_name()
        if not self.parent_span_id.is_zero():
            payload["parent_span_id"] = self.parent_span_id.hex()
        return json.dumps(payload, separators=(",", ":"))


@dataclass(frozen=True)
class TraceParentContext:
    """The context of a (remote) parent span, as read from a sentry-trace header."""

    trace_id: TraceID = field(default_factory=TraceID)
    parent_span_id: SpanID = field(default_factory=SpanID)
    sampled: Sampled = Sampled.UNDEFINED


def parse_sentry_trace(header: str | bytes) -> TraceParentContext | None:
    """Parse a sentry-trace header; return None if it is not recognised."""
    if isinstance(header, bytes):
        try:
            header = header.decode("ascii")
        except UnicodeDecodeError:
            return None
    match = _SENTRY_TRACE_PATTERN.fullmatch(header)
    if match is None:
        return None
    trace_hex, span_hex, flag = match.groups()
    sampled = Sampled.UNDEFINED
    if flag == "1":
        sampled = Sampled.TRUE
    elif flag == "0":
        sampled = Sampled.FALSE
    return TraceParentContext(
        trace_id=TraceID.from_hex(trace_hex),
        parent_span_id=SpanID.from_hex(span_hex),
        sampled=sampled,
    )


def parse_trace_parent_context(header: str | bytes) -> TraceParentContext:
    """Parse a sentry-trace header, raising ValueError if it is empty or malformed."""
    context = parse_sentry_trace(header)
    if context is None:
        raise ValueError(f"malformed sentry-trace header: {header!r}")
    return context


def format_sentry_trace(
    trace_id: TraceID, span_id: SpanID, sampled: Sampled = Sampled.UNDEFINED
) -> str:
    """Return the sentry-trace header value for the given identifiers."""
    text = f"{trace_id.hex()}-{span_id.hex()}"
    if sampled is Sampled.TRUE:
        text += "-1"
    elif sampled is Sampled.FALSE:
        text += "-0"
    return text


_CLIENT_ERROR_STATUSES = {
    401: SpanStatus.UNAUTHENTICATED,
    403: SpanStatus.PERMISSION_DENIED,
    404: SpanStatus.NOT_FOUND,
    409: SpanStatus.ALREADY_EXISTS,
    413: SpanStatus.FAILED_PRECONDITION,
    429: SpanStatus.RESOURCE_EXHAUSTED,
}

_SERVER_ERROR_STATUSES = {
    501: SpanStatus.UNIMPLEMENTED,
    503: SpanStatus.UNAVAILABLE,
    504: SpanStatus.DEADLINE_EXCEEDED,
}


def http_to_span_status(code: int) -> SpanStatus:
    """Map an HTTP status code to a span status."""
    if code < 400:
        return SpanStatus.OK
    if code < 500:
        return _CLIENT_ERROR_STATUSES.get(code, SpanStatus.INVALID_ARGUMENT)
    if code < 600:
        return _SERVER_ERROR_STATUSES.get(code, SpanStatus.INTERNAL_ERROR)
    return SpanStatus.UNKNOWN