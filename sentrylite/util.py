"""Small helpers: identifiers, file checks, clock arithmetic and release detection."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
import uuid as _uuid
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone

logger = logging.getLogger("sentrylite")

# Environment variables known to hold release information, in priority order.
_RELEASE_ENV_VARS = (
    "SENTRY_RELEASE",
    "HEROKU_SLUG_COMMIT",
    "SOURCE_VERSION",
    "CODEBUILD_RESOLVED_SOURCE_VERSION",
    "CIRCLE_SHA1",
    "GAE_DEPLOYMENT_ID",
    "GITHUB_SHA",
    "COMMIT_REF",
    "VERCEL_GIT_COMMIT_SHA",
    "ZEIT_GITHUB_COMMIT_SHA",
    "ZEIT_GITLAB_COMMIT_SHA",
    "ZEIT_BITBUCKET_COMMIT_SHA",
)

# Wall-clock time paired with a monotonic reading, taken once so that later
# "now" values derived from the monotonic clock ignore wall-clock jumps.
_ANCHOR_WALL = datetime.now(timezone.utc)
_ANCHOR_MONOTONIC = time.monotonic()


def uuid() -> str:
    """Return a random version 4 UUID as 32 lowercase hex characters."""
    return _uuid.uuid4().hex


def file_exists(file_name: str | os.PathLike[str]) -> bool:
    """Return True if the path can be stat'ed."""
    try:
        os.stat(file_name)
    except (OSError, ValueError):
        return False
    return True


def _monotonic_now() -> datetime:
    elapsed = time.monotonic() - _ANCHOR_MONOTONIC
    return _ANCHOR_WALL + timedelta(seconds=elapsed)


def monotonic_time_since(start: datetime) -> datetime:
    """Return the end of an interval that began at ``start``.

    The elapsed time is measured with the monotonic clock, so the result is
    unaffected by changes of the system wall clock. The result never lies
    before ``start`` and uses the same kind of timezone as ``start``.
    """
    now = _monotonic_now()
    if start.tzinfo is None:
        now = now.astimezone().replace(tzinfo=None)
    else:
        now = now.astimezone(start.tzinfo)
    return max(start, now)


def revision_from_build_info(
    settings: Mapping[str, str] | Iterable[tuple[str, str]],
) -> str:
    """Return the non-empty ``vcs.revision`` value from build settings, or ""."""
    items = settings.items() if isinstance(settings, Mapping) else settings
    for key, value in items:
        if key == "vcs.revision" and value:
            logger.debug("Using release from debug info: %s", value)
            return value
    return ""


def default_release() -> str:
    """Guess a release identifier for the running program.

    The first non-empty known environment variable wins; otherwise the output
    of ``git describe`` is used. Returns "" when nothing is found.
    """
    for name in _RELEASE_ENV_VARS:
        release = os.environ.get(name, "")
        if release:
            logger.debug("Using release from environment variable %s: %s", name, release)
            return release

    if shutil.which("git"):
        command = ["git", "describe", "--long", "--always", "--dirty"]
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as exc:
            message = f"Release detection failed: {exc}"
            if exc.stderr:
                message += f": {exc.stderr}"
            logger.info(message)
        except OSError as exc:
            logger.info("Release detection failed: %s", exc)
        else:
            release = result.stdout.strip()
            logger.debug("Using release from Git: %s", release)
            return release

    logger.info("Some Sentry features will not be available without a release.")
    logger.info(
        "To stop seeing this message, pass a release explicitly or set the "
        "SENTRY_RELEASE environment variable."
    )
    return ""