# sentrylite

Building blocks for reporting errors and performance data to a Sentry-compatible
ingestion endpoint. Only the standard library is used.

## Modules

- `sentrylite.stacktrace` – `Stacktrace` and `Frame` dataclasses (each with
  `to_dict()`, which leaves out empty fields but always keeps `in_app`), and
  `RawFrame` for frames collected at run time. `new_stacktrace()` captures the
  current call stack; `extract_stacktrace(error)` builds one from an exception's
  traceback and returns `None` when it has none. `create_frames(...)` drops frames
  from the `sentrylite` package itself (except modules ending in `_test`) and from
  the `runtime` and `testing` modules. A frame is marked in-app unless its path lies
  under the standard library or its module name contains `vendor` or
  `third_party`. Helpers: `package_name`, `base_name`,
  `split_qualified_function_name`, `is_abs_path`, `should_skip_frame`,
  `new_frame`, `frame_from_raw`.
- `sentrylite.tracing_types` – `TraceID` and `SpanID` (`random()`, `from_hex()`,
  `hex()`, `is_zero()`), `SpanStatus` (`wire_name()`, `to_json()`), `Sampled`
  (`as_bool()`), `TransactionSource` (`is_valid()`), `TraceContext` (`to_map()`,
  `to_json()`) and `TraceParentContext`. For the `sentry-trace` header:
  `parse_sentry_trace` returns `None` for a malformed header,
  `parse_trace_parent_context` raises `ValueError` instead, and
  `format_sentry_trace` builds the header value. `http_to_span_status(code)` maps
  an HTTP status code to a `SpanStatus`.
- `sentrylite.span` – `Span` trees. `start_transaction`, `start_span` and
  `Span.start_child` start spans; `Span.finish()` runs once, and when a sampled
  root span finishes, its transaction event (a dict) is passed to the `on_finish`
  callback. `Span.activate()` is a context manager that makes a span current;
  `current_span()` and `transaction_from_current()` read it back. Span options:
  `with_transaction_name`, `with_description`, `with_op_name`,
  `with_transaction_source`, `with_span_sampled`, `continue_from_trace` and
  `continue_from_headers` (which reads the `sentry-trace` header from a mapping,
  ignoring the case of header names). `TracingOptions` controls sampling
  (`enable_tracing`, `traces_sample_rate`, `traces_sampler`); tracing is off by
  default, so spans are not sampled unless it is enabled.
- `sentrylite.envelope` – `event_body(event)` serializes an event dict. If that
  fails, breadcrumbs and contexts are dropped and the extra data is replaced with
  an explanation; it returns `None` when even that fails. `encode_envelope(...)`
  builds the envelope bytes from an `EnvelopeEvent`, the event body, optional
  `Attachment`s, trace entries and a profile. `category_for`, `auth_header` and
  `request_headers` produce the rate-limit category and the HTTP headers.
- `sentrylite.transport` – `Request` holds an envelope ready to post.
  `HTTPTransport` queues requests and posts them from a background thread. It drops
  a request when its buffer is full (30 by default), waits for the queue with
  `flush(timeout)`, and stops with `close()` or as a context manager.
  `HTTPSyncTransport` posts each request before `send` returns. `NoopTransport`
  drops every request and counts the drops in `dropped`. The HTTP transports take
  `timeout`, `http_proxy`, `https_proxy`, `ca_certs` or a ready-made urllib `opener`.
- `sentrylite.util` – `uuid()`, `file_exists()`, `monotonic_time_since()`,
  `revision_from_build_info()` and `default_release()`. `default_release()` reads
  the first known release environment variable, such as `SENTRY_RELEASE`. Failing
  that, it runs `git describe --long --always --dirty`.

## Installation

```
pip install .
```

## Example: a transaction with a child span

```python
from sentrylite.span import TracingOptions, start_transaction, with_description

sent = []
options = TracingOptions(enable_tracing=True, traces_sample_rate=1.0)

tx = start_transaction("checkout", options_config=options, on_finish=sent.append)
child = tx.start_child("db.query", with_description("SELECT 1"))
child.finish()
tx.finish()

event = sent[0]                # the transaction event, as a dict
print(tx.to_sentry_trace())    # value for an outgoing "sentry-trace" header
```

## Example: sending the event

```python
from datetime import datetime, timezone

from sentrylite.envelope import EnvelopeEvent, category_for, encode_envelope, event_body, request_headers
from sentrylite.transport import HTTPTransport, Request
from sentrylite.util import uuid

envelope = encode_envelope(
    EnvelopeEvent(event_id=uuid(), type="transaction", sdk_name="my.sdk", sdk_version="0.1.0"),
    "https://public@example.com/1",
    datetime.now(timezone.utc),
    event_body(event),
)
request = Request(
    url="https://example.com/api/1/envelope/",
    body=envelope,
    headers=request_headers("my.sdk", "0.1.0", "public"),
    category=category_for("transaction"),
)
with HTTPTransport() as transport:
    transport.send(request)
    transport.flush(5.0)
```

## Example: continuing an incoming trace

```python
from sentrylite.span import continue_from_headers, start_transaction

tx = start_transaction(
    "handler",
    continue_from_headers({"Sentry-Trace": "d49d9bf66f13450b81f65bc51cf49c03-1cc4b26ab9094ef0-1"}),
)
```

## What this package does not do

There is no client, hub or scope that ties these pieces together, and no DSN
parsing. The envelope URL, DSN string and keys are passed in by the caller. The
`baggage` header and dynamic sampling context are not handled. The transports do
not read rate-limit responses and do not back off, and no profiling is done. There
is no command-line tool.

## Running the tests

```
pip install .[test]
pytest
```