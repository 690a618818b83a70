import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from sentrylite.span import (
    SamplingContext,
    Span,
    TracingOptions,
    continue_from_headers,
    continue_from_trace,
    current_span,
    start_span,
    start_transaction,
    transaction_from_current,
    with_description,
    with_op_name,
    with_span_sampled,
    with_transaction_name,
    with_transaction_source,
)
from sentrylite.tracing_types import (
    Sampled,
    SpanID,
    SpanStatus,
    TraceID,
    TransactionSource,
)

GO_RELEASE = datetime(2009, 11, 10, 23, 0, 0, tzinfo=timezone.utc)
TRACE_HEX = "bc6d53f15eb88f4320054569b8c553d4"
SPAN_HEX = "b72fa28504b07285"


def _tracing(rate=0.0, sampler=None):
    return TracingOptions(enable_tracing=True, traces_sample_rate=rate, traces_sampler=sampler)


def test_start_span_sends_transaction_event():
    events = []
    parent_span_id = SpanID.from_hex("00000000f00db33f")
    end_time = GO_RELEASE + timedelta(seconds=3)

    def configure(span):
        span.description = "A Description"
        span.status = SpanStatus.OK
        span.parent_span_id = parent_span_id
        span.sampled = Sampled.TRUE
        span.start_time = GO_RELEASE
        span.end_time = end_time
        span.data = {"k": "v"}

    span = start_span(
        "test.op",
        with_transaction_name("Test Transaction"),
        configure,
        options_config=_tracing(),
        parent=None,
        on_finish=events.append,
    )
    span.finish()

    assert span.sampled is Sampled.TRUE
    assert not span.trace_id.is_zero()
    assert not span.span_id.is_zero()
    assert len(events) == 1
    event = events[0]
    assert event["type"] == "transaction"
    assert event["transaction"] == "Test Transaction"
    assert event["extra"] == {"k": "v"}
    assert event["tags"] == {}
    assert event["spans"] == []
    assert event["timestamp"] == "2009-11-10T23:00:03Z"
    assert event["start_timestamp"] == "2009-11-10T23:00:00Z"
    assert event["transaction_info"] == {"source": "custom"}
    assert event["contexts"]["trace"] == {
        "trace_id": span.trace_id.hex(),
        "span_id": span.span_id.hex(),
        "parent_span_id": "00000000f00db33f",
        "op": "test.op",
        "description": "A Description",
        "status": "ok",
    }


def test_timestamps_keep_offset():
    events = []
    minus_two = timezone(timedelta(hours=-2))

    def configure(span):
        span.start_time = GO_RELEASE.astimezone(minus_two)
        span.end_time = GO_RELEASE.astimezone(minus_two)

    span = start_span("op", configure, options_config=_tracing(1.0), parent=None, on_finish=events.append)
    span.finish()
    assert events[0]["timestamp"] == "2009-11-10T21:00:00-02:00"


def test_start_child():
    events = []
    span = start_span(
        "top",
        with_transaction_name("Test Transaction"),
        options_config=_tracing(1.0),
        parent=None,
        on_finish=events.append,
    )
    child = span.start_child("child")
    child.finish()
    span.finish()

    assert child.sampled is Sampled.TRUE
    assert child.trace_id == span.trace_id
    assert child.parent_span_id == span.span_id
    assert child.end_time >= child.start_time
    assert len(events) == 1
    spans = events[0]["spans"]
    assert len(spans) == 1
    assert spans[0]["span_id"] == child.span_id.hex()
    assert spans[0]["parent_span_id"] == span.span_id.hex()
    assert spans[0]["op"] == "child"
    assert events[0]["contexts"]["trace"] == {
        "trace_id": span.trace_id.hex(),
        "span_id": span.span_id.hex(),
        "op": "top",
    }


def test_start_transaction_with_context():
    events = []

    def configure(span):
        span.description = "A Description"
        span.status = SpanStatus.OK
        span.sampled = Sampled.TRUE
        span.set_context("otel", {"k": "v"})

    transaction = start_transaction(
        "Test Transaction", configure, options_config=_tracing(), on_finish=events.append
    )
    transaction.finish()

    assert len(events) == 1
    contexts = events[0]["contexts"]
    assert contexts["otel"] == {"k": "v"}
    assert contexts["trace"] == {
        "trace_id": transaction.trace_id.hex(),
        "span_id": transaction.span_id.hex(),
        "description": "A Description",
        "status": "ok",
    }
    assert events[0]["transaction"] == "Test Transaction"


def test_unfinished_child_is_dropped():
    events = []
    span = start_span("top", options_config=_tracing(1.0), parent=None, on_finish=events.append)
    span.start_child("never finished")
    span.finish()
    assert events[0]["spans"] == []


def test_child_to_event_is_none():
    span = start_span("top", options_config=_tracing(1.0), parent=None)
    assert span.start_child("child").to_event() is None


def test_set_tag():
    span = start_span("Test Span", options_config=_tracing(), parent=None)
    span.set_tag("key", "value")
    assert span.tags == {"key": "value"}


def test_set_data():
    span = start_span("Test Span", options_config=_tracing(), parent=None)
    span.set_data("key", "value")
    span.set_data("key.nil", None)
    span.set_data("key.number", 123)
    span.set_data("key.bool", True)
    span.set_data("key.slice", ["foo", "bar"])
    assert span.data == {
        "key": "value",
        "key.number": 123,
        "key.bool": True,
        "key.slice": ["foo", "bar"],
    }


def test_set_context_merges_and_overrides():
    span = start_transaction("Test Transaction", options_config=_tracing())
    span.set_context("a", {"foo": "bar"})
    span.set_context("b", {"b": 2})
    span.set_context("a", {"foo": 2})
    assert span.contexts == {"a": {"foo": 2}, "b": {"b": 2}}


def test_options_set_fields():
    span = start_span(
        "Test Span",
        with_description("span desc"),
        with_op_name("renamed"),
        options_config=_tracing(),
        parent=None,
    )
    assert (span.description, span.op) == ("span desc", "renamed")


def test_is_transaction():
    transaction = start_transaction("Test Transaction", options_config=_tracing())
    assert transaction.is_transaction() is True
    assert transaction.start_child("Test Span").is_transaction() is False


@pytest.mark.parametrize(
    "span, expected",
    [
        (Span(), "00000000000000000000000000000000-0000000000000000"),
        (Span(sampled=Sampled.TRUE), "00000000000000000000000000000000-0000000000000000-1"),
        (Span(sampled=Sampled.FALSE), "00000000000000000000000000000000-0000000000000000-0"),
        (Span(trace_id=TraceID(b"\x01" + bytes(15))), "01000000000000000000000000000000-0000000000000000"),
        (Span(span_id=SpanID(b"\x01" + bytes(7))), "00000000000000000000000000000000-0100000000000000"),
    ],
)
def test_to_sentry_trace(span, expected):
    assert span.to_sentry_trace() == expected


@pytest.mark.parametrize("sampled", [Sampled.TRUE, Sampled.FALSE, Sampled.UNDEFINED])
def test_continue_from_headers(sampled):
    header = Span(
        trace_id=TraceID.from_hex(TRACE_HEX), span_id=SpanID.from_hex(SPAN_HEX), sampled=sampled
    ).to_sentry_trace()
    span = Span()
    continue_from_headers({"Sentry-Trace": header})(span)
    assert span.trace_id.hex() == TRACE_HEX
    assert span.parent_span_id.hex() == SPAN_HEX
    assert span.sampled is sampled


@pytest.mark.parametrize("sampled", [Sampled.TRUE, Sampled.FALSE, Sampled.UNDEFINED])
def test_continue_from_trace(sampled):
    header = Span(
        trace_id=TraceID.from_hex(TRACE_HEX), span_id=SpanID.from_hex(SPAN_HEX), sampled=sampled
    ).to_sentry_trace()
    span = Span()
    continue_from_trace(header)(span)
    assert span.trace_id.hex() == TRACE_HEX
    assert span.parent_span_id.hex() == SPAN_HEX
    assert span.sampled is sampled


def test_continue_without_headers_leaves_span_unchanged():
    span = Span()
    continue_from_headers({"baggage": "other-vendor-key1=value1"})(span)
    continue_from_trace("xxx-malformed")(span)
    assert span.trace_id.is_zero()
    assert span.parent_span_id.is_zero()
    assert span.sampled is Sampled.UNDEFINED


def test_sample_tracing_disabled():
    span = start_span("op", options_config=TracingOptions(enable_tracing=False), parent=None)
    assert span.sampled is Sampled.FALSE


def test_sample_explicit_decision():
    span = start_span("op", with_span_sampled(Sampled.TRUE), options_config=_tracing(0.0), parent=None)
    assert span.sampled is Sampled.TRUE
    assert span.sample_rate == 1.0


def test_sample_traces_sampler_gets_context():
    seen = []

    def sampler(context):
        seen.append(context)
        return 1.0

    span = start_span("op", options_config=_tracing(sampler=sampler), parent=None)
    assert span.sampled is Sampled.TRUE
    assert seen == [SamplingContext(span=span, parent=None)]


@pytest.mark.parametrize("rate", [-0.5, 0.0, 1.5])
def test_sample_traces_sampler_rejects_rates(rate):
    span = start_span("op", options_config=_tracing(sampler=lambda ctx: rate), parent=None)
    assert span.sampled is Sampled.FALSE


def test_sample_parent_decision():
    span = start_span("op", options_config=_tracing(1.0), parent=None)
    assert span.start_child("child").sampled is Sampled.TRUE


def test_sample_rate_bounds():
    assert start_span("op", options_config=_tracing(1.0), parent=None).sampled is Sampled.TRUE
    assert start_span("op", options_config=_tracing(0.0), parent=None).sampled is Sampled.FALSE
    assert start_span("op", options_config=_tracing(2.0), parent=None).sampled is Sampled.FALSE


@pytest.mark.parametrize("rate", [0.25, 0.5, 0.75])
def test_sampler_observes_rate(rate):
    options = _tracing(sampler=lambda ctx: rate)
    count = 4000
    hits = sum(
        start_span("op", options_config=options, parent=None).sampled is Sampled.TRUE
        for _ in range(count)
    )
    observed = hits / count
    assert rate * 0.9 <= observed <= rate * 1.1


@pytest.mark.parametrize(
    "source, expected",
    [("invalidSource", "custom"), (TransactionSource.TASK, "task"), ("", "custom")],
)
def test_transaction_source_adjusted(source, expected):
    events = []
    transaction = start_transaction(
        "Test Transaction",
        with_transaction_source(source),
        options_config=_tracing(1.0),
        on_finish=events.append,
    )
    transaction.finish()
    assert events[0]["transaction_info"]["source"] == expected


def test_get_transaction():
    transaction = start_transaction("transaction", options_config=_tracing())
    child1 = transaction.start_child("child1")
    child2 = transaction.start_child("child2")
    grandchild = child1.start_child("grandchild")
    for span in (transaction, child1, child2, grandchild):
        assert span.get_transaction() is transaction

    another = start_transaction("another transaction", options_config=_tracing())
    assert another is not transaction
    assert another.get_transaction() is another


def test_get_transaction_of_manual_span_is_none():
    assert Span().get_transaction() is None


def test_activate_and_current_span():
    transaction = start_transaction("op", options_config=_tracing(1.0))
    assert current_span() is None
    with transaction.activate():
        assert current_span() is transaction
        assert start_transaction("op2") is transaction
        child = start_span("child")
        assert child.parent is transaction
        with child.activate():
            assert transaction_from_current() is transaction
        fresh = start_span("other", parent=None)
        assert fresh.parent is None
        assert fresh.trace_id != transaction.trace_id
    assert current_span() is None
    assert transaction_from_current() is None


def test_finish_without_callback_sets_end_time():
    transaction = start_transaction("op")
    transaction.sampled = Sampled.TRUE
    transaction.finish()
    assert transaction.end_time >= transaction.start_time


def test_finish_sends_once_even_concurrently():
    events = []
    transaction = start_transaction("op", options_config=_tracing(1.0), on_finish=events.append)
    threads = [threading.Thread(target=transaction.finish) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    transaction.finish()
    assert len(events) == 1


def test_span_json_omits_empty_parent_span_id():
    span = Span()
    assert "parent_span_id" not in json.loads(span.to_json())
    span.parent_span_id = SpanID.from_hex("c7b73e77a3734fee")
    payload = json.loads(span.to_json())
    assert payload["parent_span_id"] == "c7b73e77a3734fee"
    assert payload["start_timestamp"] == "0001-01-01T00:00:00Z"
    assert "status" not in payload