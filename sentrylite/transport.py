"""Transports that deliver envelope requests over HTTP."""

from __future__ import annotations

import http.client
import logging
import queue
import ssl
import threading
import urllib.error
import urllib.request
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Union

logger = logging.getLogger("sentrylite")

DEFAULT_BUFFER_SIZE = 30
DEFAULT_TIMEOUT = 30.0
# Upper bound on how much of a response body is read before closing it.
MAX_DRAIN_RESPONSE_BYTES = 16 << 10

_STOP = object()

Timeout = Union[float, timedelta]


@dataclass(frozen=True)
class Request:
    """An envelope ready to be posted."""

    url: str
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)
    category: str = "error"
    description: str = "event"


def _seconds(timeout: Timeout) -> float:
    if isinstance(timeout, timedelta):
        return timeout.total_seconds()
    return float(timeout)


class _InFlight:
    """Counts sends in progress so that a flush can wait for them to settle."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._count = 0

    @contextmanager
    def track(self) -> Iterator[None]:
        with self._cond:
            self._count += 1
        try:
            yield
        finally:
            with self._cond:
                self._count -= 1
                self._cond.notify_all()

    def wait(self, timeout: float) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout)


def _build_opener(
    http_proxy: str, https_proxy: str, ca_certs: Optional[str]
) -> urllib.request.OpenerDirector:
    handlers: list[urllib.request.BaseHandler] = []
    proxy = https_proxy or http_proxy
    if proxy:
        handlers.append(urllib.request.ProxyHandler({"http": proxy, "https": proxy}))
    else:
        handlers.append(urllib.request.ProxyHandler())
    if ca_certs:
        context = ssl.create_default_context(cafile=ca_certs)
        handlers.append(urllib.request.HTTPSHandler(context=context))
    return urllib.request.build_opener(*handlers)


def _deliver(
    opener: urllib.request.OpenerDirector, request: Request, timeout: float
) -> None:
    http_request = urllib.request.Request(
        request.url, data=request.body, headers=dict(request.headers), method="POST"
    )
    try:
        with opener.open(http_request, timeout=timeout) as response:
            response.read(MAX_DRAIN_RESPONSE_BYTES)
    except urllib.error.HTTPError as exc:
        # A non-2xx status is still a response: drain and close it.
        try:
            exc.read(MAX_DRAIN_RESPONSE_BYTES)
        except (OSError, http.client.HTTPException):
            pass
        finally:
            exc.close()
        logger.debug("Server answered with status %d", exc.code)
    except (OSError, http.client.HTTPException) as exc:
        logger.warning("There was an issue with sending an event: %s", exc)


class HTTPTransport:
    """Non-blocking transport: requests are queued and posted by a background thread.

    When the buffer is full, new requests are dropped.
    """

    def __init__(
        self,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        opener: Optional[urllib.request.OpenerDirector] = None,
        http_proxy: str = "",
        https_proxy: str = "",
        ca_certs: Optional[str] = None,
    ) -> None:
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be at least 1, got {buffer_size}")
        self.buffer_size = buffer_size
        self.timeout = timeout
        self._opener = opener or _build_opener(http_proxy, https_proxy, ca_certs)
        self._queue: queue.Queue = queue.Queue(maxsize=buffer_size)
        self._cond = threading.Condition()
        self._enqueued = 0
        self._processed = 0
        self._closed = False
        self._worker: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    def __enter__(self) -> "HTTPTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_worker(self) -> None:
        with self._start_lock:
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._run, name="sentrylite-transport", daemon=True
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                _deliver(self._opener, item, self.timeout)
            finally:
                with self._cond:
                    self._processed += 1
                    self._cond.notify_all()

    def send(self, request: Request) -> None:
        """Queue a request; drop it if the buffer is full or the transport is closed."""
        with self._cond:
            if self._closed:
                logger.debug("Event dropped because the transport is closed.")
                return
            try:
                self._queue.put_nowait(request)
            except queue.Full:
                logger.warning("Event dropped due to transport buffer being full.")
                return
            self._enqueued += 1
        logger.debug("Sending %s to %s", request.description, request.url)
        self._ensure_worker()

    def flush(self, timeout: Timeout) -> bool:
        """Wait until requests queued so far are sent; False if the timeout passed first."""
        with self._cond:
            target = self._enqueued
            done = self._cond.wait_for(
                lambda: self._processed >= target, _seconds(timeout)
            )
        if done:
            logger.debug("Buffer flushed successfully.")
        else:
            logger.warning("Buffer flushing reached the timeout.")
        return done

    def close(self) -> None:
        """Stop accepting requests, send what is queued, and stop the worker."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
        with self._start_lock:
            worker = self._worker
        if worker is not None:
            self._queue.put(_STOP)
            worker.join()


class HTTPSyncTransport:
    """Blocking transport: each request is posted before send returns."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        opener: Optional[urllib.request.OpenerDirector] = None,
        http_proxy: str = "",
        https_proxy: str = "",
        ca_certs: Optional[str] = None,
    ) -> None:
        self.timeout = timeout
        self._opener = opener or _build_opener(http_proxy, https_proxy, ca_certs)
        self._in_flight = _InFlight()

    def send(self, request: Request) -> None:
        """Post the request and wait for the response."""
        logger.debug("Sending %s to %s", request.description, request.url)
        with self._in_flight.track():
            _deliver(self._opener, request, self.timeout)

    def flush(self, timeout: Timeout) -> bool:
        """Nothing is buffered; wait only for sends running in other threads."""
        return self._in_flight.wait(_seconds(timeout))


class NoopTransport:
    """Transport that drops every request."""

    def __init__(self) -> None:
        self.dropped = 0
        self._lock = threading.Lock()
        self._in_flight = _InFlight()
        logger.debug("Client initialized with an empty DSN. No events will be delivered.")

    def send(self, request: Request) -> None:
        """Drop the request, counting it."""
        with self._in_flight.track():
            with self._lock:
                self.dropped += 1
        logger.debug("Event dropped due to noop transport usage.")

    def flush(self, timeout: Timeout) -> bool:
        """Nothing is buffered; wait only for drops running in other threads."""
        return self._in_flight.wait(_seconds(timeout))