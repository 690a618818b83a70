"""Envelope encoding: the request body and headers that carry one event."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from sentrylite.span import TRANSACTION_TYPE

logger = logging.getLogger("sentrylite")

API_VERSION = "7"
EVENT_TYPE = "event"
CHECK_IN_TYPE = "check_in"
PROFILE_TYPE = "profile"
ENVELOPE_CONTENT_TYPE = "application/x-sentry-envelope"

_ZERO_TIME = "0001-01-01T00:00:00Z"


@dataclass(frozen=True)
class Attachment:
    """A file sent along with an event."""

    filename: str
    payload: bytes = b""
    content_type: str = ""


@dataclass(frozen=True)
class EnvelopeEvent:
    """The event fields that go into the envelope header."""

    event_id: str = ""
    type: str = ""
    sdk_name: str = ""
    sdk_version: str = ""


def _dumps(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


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


def category_for(event_type: str) -> str:
    """Return the rate-limit category of an event type."""
    if event_type == "":
        return "error"
    if event_type == TRANSACTION_TYPE:
        return "transaction"
    return event_type


def event_body(event: Mapping[str, Any]) -> Optional[bytes]:
    """Serialize an event payload to compact JSON.

    If the payload cannot be serialized, breadcrumbs and contexts are dropped
    and the extra data is replaced by an explanation. Returns None when even
    that fails.
    """
    try:
        return _dumps(event)
    except (TypeError, ValueError) as exc:
        error = exc

    message = (
        "Could not encode original event as JSON. "
        "Succeeded by removing Breadcrumbs, Contexts and Extra. "
        "Please verify the data you attach to the scope. "
        f"Error: {error}"
    )
    stripped = {
        key: value for key, value in event.items() if key not in ("breadcrumbs", "contexts")
    }
    stripped["extra"] = {"info": message}
    try:
        body = _dumps(stripped)
    except (TypeError, ValueError):
        logger.warning(
            "Event couldn't be marshaled, even with stripped contextual data. "
            "Skipping delivery."
        )
        return None
    logger.info(message)
    return body


def _as_bytes(body: Union[bytes, str]) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else bytes(body)


def _item(item_type: str, body: bytes) -> list[bytes]:
    header = _dumps({"type": item_type, "length": len(body)})
    return [header, b"\n", body, b"\n"]


def _attachment(attachment: Attachment) -> list[bytes]:
    header: dict[str, Any] = {
        "type": "attachment",
        "length": len(attachment.payload),
        "filename": attachment.filename,
    }
    if attachment.content_type:
        header["content_type"] = attachment.content_type
    return [_dumps(header), b"\n", bytes(attachment.payload), b"\n"]


def encode_envelope(
    event: EnvelopeEvent,
    dsn: str,
    sent_at: datetime,
    body: Union[bytes, str],
    attachments: Iterable[Attachment] = (),
    trace: Optional[Mapping[str, str]] = None,
    profile: Union[Mapping[str, Any], bytes, str, None] = None,
) -> bytes:
    """Build the envelope: header line, the event item, attachments and an optional profile."""
    header: dict[str, Any] = {
        "event_id": event.event_id,
        "sent_at": _format_time(sent_at),
        "dsn": str(dsn),
        "sdk": {"name": event.sdk_name, "version": event.sdk_version},
    }
    if trace:
        header["trace"] = dict(sorted(trace.items()))

    parts = [_dumps(header), b"\n"]
    if event.type in (TRANSACTION_TYPE, CHECK_IN_TYPE):
        item_type = event.type
    else:
        item_type = EVENT_TYPE
    parts += _item(item_type, _as_bytes(body))

    for attachment in attachments:
        parts += _attachment(attachment)

    if profile is not None:
        if isinstance(profile, (bytes, str)):
            profile_body = _as_bytes(profile)
        else:
            profile_body = _dumps(profile)
        parts += _item(PROFILE_TYPE, profile_body)

    return b"".join(parts)


def auth_header(
    sdk_name: str, sdk_version: str, public_key: str, secret_key: str = ""
) -> str:
    """Return the X-Sentry-Auth header value."""
    auth = (
        f"Sentry sentry_version={API_VERSION}, "
        f"sentry_client={sdk_name}/{sdk_version}, sentry_key={public_key}"
    )
    if secret_key:
        auth += f", sentry_secret={secret_key}"
    return auth


def request_headers(
    sdk_name: str, sdk_version: str, public_key: str, secret_key: str = ""
) -> dict[str, str]:
    """Return the HTTP headers for an envelope request."""
    return {
        "User-Agent": f"{sdk_name}/{sdk_version}",
        "Content-Type": ENVELOPE_CONTENT_TYPE,
        "X-Sentry-Auth": auth_header(sdk_name, sdk_version, public_key, secret_key),
    }