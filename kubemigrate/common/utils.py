"""

utils

Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Shared utilities (between cluster, node and finisher migrations)

"""
from .exceptions import WaitTimeoutException
from collections.abc import Callable, Iterable, Iterator
from pydantic import BaseModel, ConfigDict
from typing import Any

import datetime
import httpx
import logging
import math
import re
import time

logger = logging.getLogger(__name__)

DNS1035_LABEL_RE = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
DNS1035_LABEL_MAX_LENGTH = 63
INVALID_NAME_CHARACTERS_RE = re.compile(r"[^a-zA-Z0-9-]")


class MigrateModel(BaseModel):
    model_config = ConfigDict(
        # As we're keen to both export and decode json, just using
        # enum values for encode/decode is much saner than the default
        # enumname.value (it is also slightly less safe but oh well)
        use_enum_values=True,
        # Extra values should be errors, as they are most likely typos
        # which lead to grief when not detected.
        extra="forbid",
        # Validate field default values too
        validate_default=True,
        # Results are passed from one step to the next; nobody should
        # be able to change them on the way
        frozen=True,
    )

    def jsondict(self, **kw) -> dict[str, Any]:
        return self.model_dump(mode="json", **kw)


def cleanup_for_kubernetes(name: str) -> str:
    """Turn cluster/datacenter names into something usable in resource names.

    This has to produce exactly what cass-operator produces, as the
    reconciler derives the very same names later on.
    """
    if len(name) <= DNS1035_LABEL_MAX_LENGTH and DNS1035_LABEL_RE.match(name):
        return name
    return INVALID_NAME_CHARACTERS_RE.sub("", name).lower()


def http_request(
    url: str | httpx.URL,
    *,
    caller: str,
    method: str = "get",
    timeout: float = 10.0,
    ignore_status_code: bool = False,
    **kw,
) -> httpx.Response | None:
    """Wrapper for httpx.request which handles timeouts as non-exceptions,
    and returns only valid results that we actually care about.
    """
    logger.debug("request %s %s by %s", method, url, caller)
    try:
        r = httpx.request(method, url, timeout=timeout, **kw)
        if not r.is_error or ignore_status_code:
            return r
        logger.warning("Unexpected response status code from %s to %s: %s %r", url, caller, r.status_code, r.text)
    except httpx.HTTPError as ex:
        logger.warning("Unexpected response from %s to %s: %r", url, caller, ex)
    return None


def build_netloc(host: str, port: int | None = None) -> str:
    """Create a netloc that can be passed to `url.parse.urlunsplit` while safely handling ipv6 addresses."""
    escaped_host = f"[{host}]" if ":" in host else host
    return escaped_host if port is None else f"{escaped_host}:{port}"


def exponential_backoff(
    *,
    initial: float,
    retries: int | None = None,
    multiplier: float = 2,
    maximum: float | None = None,
    duration: float | None = None,
) -> Iterable[int]:
    """Exponential backoff iterator

    First attempt is never delayed. The delays are only for retries.
    'initial' is the first retry's delay. After that, each retry is
    multiplier times larger.

    The iteration stops if:
    - retries is exceeded (retries=0 = try only once, although not very useful)
    - duration would be exceeded (if duration is provided)
    """
    if duration is None and retries is None:
        raise ValueError("either duration or retries is required")
    retries_text = f"/{retries}" if retries else ""

    def _iter() -> Iterator[int]:
        start = time.monotonic()
        retry = 0
        yield retry
        while retries is None or retry < retries:
            retry += 1
            delay = initial * multiplier ** (retry - 1)
            if maximum is not None:
                delay = min(delay, maximum)
            if duration is not None:
                time_left_after_sleep = (start + duration) - time.monotonic() - delay
                if time_left_after_sleep < 0:
                    return
            logger.debug("exponential_backoff waiting %.2f seconds (retry %d%s)", delay, retry, retries_text)
            time.sleep(delay)
            yield retry

    class _Iterable:
        def __iter__(self) -> Iterator[int]:
            return _iter()

    return _Iterable()


def wait_until(predicate: Callable[[], bool], *, interval: float, timeout: float, what: str) -> None:
    """Poll predicate every interval seconds until it is true.

    Exceptions raised by the predicate propagate as-is; running out of
    time or attempts raises WaitTimeoutException.
    """
    start = time.monotonic()
    retries = math.ceil(timeout / interval) if interval > 0 else None
    for attempt in exponential_backoff(initial=interval, multiplier=1, retries=retries, duration=timeout):
        if predicate():
            logger.debug("%s after %d attempts", what, attempt + 1)
            return
    elapsed = time.monotonic() - start
    raise WaitTimeoutException(f"Timed out after {elapsed:.0f}s waiting until {what}")


def timedelta_as_short_str(delta: datetime.timedelta) -> str:
    h, s = divmod(delta.seconds, 3600)
    m, s = divmod(s, 60)
    return " ".join(f"{v}{u}" for v, u in [(delta.days, "d"), (h, "h"), (m, "m"), (s, "s")] if v)


def now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def format_micro_time(t: datetime.datetime) -> str:
    # Kubernetes MicroTime; RFC3339 with exactly six fractional digits
    return t.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_time(value: str | datetime.datetime) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed
