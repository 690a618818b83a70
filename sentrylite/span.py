"""Spans: timed operations that form a tree and are sent as one transaction."""

from __future__ import annotations

import json
import logging
import random
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sentrylite.tracing_types import (
    SENTRY_TRACE_HEADER,
    Sampled,
    SpanID,
    SpanStatus,
    TraceContext,
    TraceID,
    TransactionSource,
    format_sentry_trace,
    parse_sentry_trace,
)
from sentrylite.util import monotonic_time_since

logger = logging.getLogger("sentrylite")

TRANSACTION_TYPE = "transaction"

_ZERO_TIME = "0001-01-01T00:00:00Z"

_current_span: ContextVar[Optional["Span"]] = ContextVar("sentrylite_span", default=None)

# Marks that the parent of a new span is taken from the active span.
_FROM_CONTEXT: Any = object()

SpanOption = Callable[["Span"], None]
EventCallback = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class SamplingContext:
    """What a traces sampler is given to make its decision."""

    span: "Span"
    parent: Optional["Span"] = None


@dataclass
class TracingOptions:
    """Settings that decide whether spans are sampled."""

    enable_tracing: bool = False
    traces_sample_rate: float = 0.0
    traces_sampler: Optional[Callable[[SamplingContext], float]] = None


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.astimezone()
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    total = int(offset.total_seconds()) if offset else 0
    if total == 0:
        return text + "Z"
    sign = "+" if total > 0 else "-"
    total = abs(total)
    return f"{text}{sign}{total // 3600:02d}:{total % 3600 // 60:02d}"


class _SpanRecorder:
    """Keeps every span of one transaction, the root first."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._spans: list[Span] = []

    def record(self, span: "Span") -> None:
        with self._lock:
            self._spans.append(span)

    @property
    def root(self) -> Optional["Span"]:
        with self._lock:
            return self._spans[0] if self._spans else None

    @property
    def children(self) -> list["Span"]:
        with self._lock:
            return self._spans[1:]


@dataclass(eq=False)
class Span:
    """A timed operation; a span without a parent is a transaction."""

    trace_id: TraceID = field(default_factory=TraceID)
    span_id: SpanID = field(default_factory=SpanID)
    parent_span_id: SpanID = field(default_factory=SpanID)
    name: str = ""
    op: str = ""
    description: str = ""
    status: SpanStatus = SpanStatus.UNDEFINED
    tags: dict[str, str] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    data: dict[str, Any] = field(default_factory=dict)
    sampled: Sampled = Sampled.UNDEFINED
    source: Any = ""
    parent: Optional["Span"] = field(default=None, repr=False)
    options: TracingOptions = field(default_factory=TracingOptions, repr=False)
    sample_rate: float = field(default=0.0, init=False, repr=False)
    contexts: dict[str, dict[str, Any]] = field(default_factory=dict, init=False, repr=False)
    _recorder: Optional[_SpanRecorder] = field(default=None, init=False, repr=False)
    _on_finish: Optional[EventCallback] = field(default=None, init=False, repr=False)
    _lock: Any = field(default_factory=threading.RLock, init=False, repr=False)
    _finish_lock: Any = field(default_factory=threading.Lock, init=False, repr=False)
    _finished: bool = field(default=False, init=False, repr=False)

    def start_child(self, operation: str, *args: SpanOption) -> "Span":
        """Start a span whose parent is this span."""
        return start_span(
            operation,
            *args,
            options_config=self.options,
            parent=self,
            on_finish=self._on_finish,
        )

    def finish(self) -> None:
        """Set the end time if unset; a sampled transaction is then sent. Runs once."""
        with self._finish_lock:
            if self._finished:
                return
            self._finished = True
        if self.end_time is None:
            if self.start_time is None:
                self.end_time = datetime.now(timezone.utc)
            else:
                self.end_time = monotonic_time_since(self.start_time)
        if not self.sampled.as_bool():
            return
        event = self.to_event()
        if event is None or self._on_finish is None:
            return
        self._on_finish(event)

    def set_tag(self, name: str, value: str) -> None:
        """Set a tag on the span."""
        with self._lock:
            self.tags[name] = value

    def set_data(self, name: str, value: Any) -> None:
        """Set a data entry on the span; None values are ignored."""
        if value is None:
            return
        with self._lock:
            self.data[name] = value

    def set_context(self, key: str, value: Mapping[str, Any]) -> None:
        """Set a context that is attached to the transaction event."""
        with self._lock:
            self.contexts[key] = dict(value)

    def is_transaction(self) -> bool:
        """Tell whether this span is the root of its tree."""
        return self.parent is None

    def get_transaction(self) -> Optional["Span"]:
        """Return the transaction holding this span; None for hand-made spans."""
        if self._recorder is None:
            return None
        return self._recorder.root

    def to_sentry_trace(self) -> str:
        """Return the sentry-trace header value for this span."""
        return format_sentry_trace(self.trace_id, self.span_id, self.sampled)

    def trace_context(self) -> TraceContext:
        """Return the trace context describing this span."""
        return TraceContext(
            trace_id=self.trace_id,
            span_id=self.span_id,
            parent_span_id=self.parent_span_id,
            op=self.op,
            description=self.description,
            status=self.status,
        )

    def to_event(self) -> Optional[dict[str, Any]]:
        """Return the transaction event payload, or None for a non-root span."""
        with self._lock:
            if not self.is_transaction():
                return None
            children = self._recorder.children if self._recorder else []
            finished = []
            for child in children:
                if child.end_time is None:
                    logger.debug(
                        "Dropped unfinished span: Op=%r TraceID=%s SpanID=%s",
                        child.op,
                        child.trace_id,
                        child.span_id,
                    )
                    continue
                finished.append(child._to_dict())

            contexts = {key: dict(value) for key, value in self.contexts.items()}
            contexts["trace"] = self.trace_context().to_map()

            if TransactionSource.is_valid(self.source):
                source = TransactionSource(self.source)
            else:
                source = TransactionSource.CUSTOM

            return {
                "type": TRANSACTION_TYPE,
                "transaction": self.name,
                "contexts": contexts,
                "tags": dict(self.tags),
                "extra": dict(self.data),
                "timestamp": _format_time(self.end_time),
                "start_timestamp": _format_time(self.start_time),
                "spans": finished,
                "transaction_info": {"source": source.value},
            }

    def _to_dict(self) -> dict[str, Any]:
        with self._lock:
            result: dict[str, Any] = {
                "trace_id": self.trace_id.hex(),
                "span_id": self.span_id.hex(),
            }
            if self.name:
                result["name"] = self.name
            if self.op:
                result["op"] = self.op
            if self.description:
                result["description"] = self.description
            if self.status != SpanStatus.UNDEFINED:
                result["status"] = self.status.wire_name()
            if self.tags:
                result["tags"] = dict(self.tags)
            result["start_timestamp"] = _format_time(self.start_time)
            result["timestamp"] = _format_time(self.end_time)
            if self.data:
                result["data"] = dict(self.data)
            if not self.parent_span_id.is_zero():
                result["parent_span_id"] = self.parent_span_id.hex()
            return result

    def to_json(self) -> str:
        """Return the span as compact JSON; a zero parent span id is omitted."""
        return json.dumps(self._to_dict(), separators=(",", ":"), default=str)

    @contextmanager
    def activate(self) -> Iterator["Span"]:
        """Make this span the current one for the duration of the block."""
        token = _current_span.set(self)
        try:
            yield self
        finally:
            _current_span.reset(token)

    def _sample(self) -> Sampled:
        options = self.options
        if not options.enable_tracing:
            logger.debug("Dropping transaction: tracing is not enabled")
            self.sample_rate = 0.0
            return Sampled.FALSE

        if self.sampled != Sampled.UNDEFINED:
            logger.debug("Using explicit sampling decision: %s", self.sampled)
            self.sample_rate = 1.0 if self.sampled is Sampled.TRUE else 0.0
            return self.sampled

        if not self.is_transaction() and self.parent is not None:
            return self.parent.sampled

        sampler = options.traces_sampler
        if sampler is not None:
            rate = sampler(SamplingContext(span=self, parent=self.parent))
            self.sample_rate = rate
            if rate < 0.0 or rate > 1.0:
                logger.debug("Dropping transaction: sampler rate out of range [0.0, 1.0]: %f", rate)
                return Sampled.FALSE
            if rate == 0.0:
                logger.debug("Dropping transaction: sampler rate is: %f", rate)
                return Sampled.FALSE
            if random.random() < rate:
                return Sampled.TRUE
            logger.debug("Dropping transaction: sampler returned rate: %f", rate)
            return Sampled.FALSE

        rate = options.traces_sample_rate
        self.sample_rate = rate
        if rate < 0.0 or rate > 1.0:
            logger.debug("Dropping transaction: sample rate out of range [0.0, 1.0]: %f", rate)
            return Sampled.FALSE
        if rate == 0.0:
            logger.debug("Dropping transaction: sample rate is: %f", rate)
            return Sampled.FALSE
        return Sampled.TRUE if random.random() < rate else Sampled.FALSE


def start_span(
    operation: str,
    *args: SpanOption,
    options_config: Optional[TracingOptions] = None,
    parent: Optional[Span] = _FROM_CONTEXT,
    on_finish: Optional[EventCallback] = None,
) -> Span:
    """Start a span, by default as a child of the current span.

    Pass ``parent=None`` to start a new transaction regardless of the current
    span. ``on_finish`` receives the transaction event when the root finishes.
    """
    if parent is _FROM_CONTEXT:
        parent = current_span()
    if options_config is None:
        options_config = parent.options if parent is not None else TracingOptions()
    if on_finish is None and parent is not None:
        on_finish = parent._on_finish

    span = Span(
        op=operation,
        start_time=datetime.now(timezone.utc),
        parent=parent,
        options=options_config,
    )
    if parent is not None:
        span.trace_id = parent.trace_id
    else:
        span.source = TransactionSource.CUSTOM
        span.trace_id = TraceID.random()
    span.span_id = SpanID.random()
    if parent is not None:
        span.parent_span_id = parent.span_id

    for option in args:
        option(span)

    span.sampled = span._sample()

    if parent is not None and parent._recorder is not None:
        span._recorder = parent._recorder
    else:
        span._recorder = _SpanRecorder()
    span._recorder.record(span)
    span._on_finish = on_finish
    return span


def start_transaction(
    name: str,
    *args: SpanOption,
    options_config: Optional[TracingOptions] = None,
    on_finish: Optional[EventCallback] = None,
) -> Span:
    """Return the current span if there is one, else start a named transaction."""
    existing = current_span()
    if existing is not None:
        return existing
    return start_span(
        "",
        *args,
        with_transaction_name(name),
        options_config=options_config,
        parent=None,
        on_finish=on_finish,
    )


def current_span() -> Optional[Span]:
    """Return the active span, or None."""
    return _current_span.get()


def transaction_from_current() -> Optional[Span]:
    """Return the root of the active span's tree, or None."""
    span = current_span()
    if span is None or span._recorder is None:
        return None
    return span._recorder.root


def with_transaction_name(name: str) -> SpanOption:
    """Option that sets the transaction name."""
    def option(span: Span) -> None:
        span.name = name
    return option


def with_description(description: str) -> SpanOption:
    """Option that sets the span description."""
    def option(span: Span) -> None:
        span.description = description
    return option


def with_op_name(name: str) -> SpanOption:
    """Option that sets the operation name."""
    def option(span: Span) -> None:
        span.op = name
    return option


def with_transaction_source(source: Any) -> SpanOption:
    """Option that sets the transaction source; invalid ones become "custom" when sent."""
    def option(span: Span) -> None:
        span.source = source
    return option


def with_span_sampled(sampled: Sampled) -> SpanOption:
    """Option that sets an explicit sampling decision."""
    def option(span: Span) -> None:
        span.sampled = sampled
    return option


def _update_from_sentry_trace(span: Span, trace: str) -> bool:
    context = parse_sentry_trace(trace)
    if context is None:
        return False
    span.trace_id = context.trace_id
    span.parent_span_id = context.parent_span_id
    if context.sampled != Sampled.UNDEFINED:
        span.sampled = context.sampled
    return True


def continue_from_trace(trace: str) -> SpanOption:
    """Option that continues the trace given by a sentry-trace header value."""
    def option(span: Span) -> None:
        if trace:
            _update_from_sentry_trace(span, trace)
    return option


def continue_from_headers(headers: Mapping[str, str]) -> SpanOption:
    """Option that continues the trace found in a header mapping (names ignore case)."""
    trace = next(
        (value for key, value in headers.items() if key.lower() == SENTRY_TRACE_HEADER),
        "",
    )
    return continue_from_trace(trace)