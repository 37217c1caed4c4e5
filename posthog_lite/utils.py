import logging
import os
import threading
import time
from datetime import datetime
from typing import Optional
from uuid import UUID

from dateutil.tz import tzlocal, tzutc

log = logging.getLogger("posthog_lite")


def is_naive(dt):
    """Determines if a given datetime.datetime is naive."""
    return dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None


def guess_timezone(dt):
    """Attempts to convert a naive datetime to an aware datetime."""
    if is_naive(dt):
        # attempts to guess the datetime.datetime.now() local timezone
        # case, and then defaults to utc
        delta = datetime.now() - dt
        if delta.total_seconds() < 5:
            # this was created using datetime.datetime.now()
            # so we are in the local timezone
            return dt.replace(tzinfo=tzlocal())
        else:
            # at this point, the best we can do is guess UTC
            return dt.replace(tzinfo=tzutc())

    return dt


def utc_now() -> str:
    return datetime.now(tz=tzutc()).isoformat()


def remove_trailing_slash(host):
    if host.endswith("/"):
        return host[:-1]
    return host


def stringify_id(val) -> Optional[str]:
    if val is None:
        return None
    if isinstance(val, str):
        return val
    return str(val)


_uuid7_lock = threading.Lock()
_uuid7_last_ms = 0
_uuid7_counter = 0


def uuid7() -> UUID:
    """
    Generate a time-ordered UUID (version 7).

    The first 48 bits hold the unix timestamp in milliseconds. The 12 bit
    `rand_a` field is used as a counter seeded randomly every millisecond, so
    identifiers generated by this process sort in creation order even when
    several are created within the same millisecond.
    """
    global _uuid7_last_ms, _uuid7_counter

    with _uuid7_lock:
        unix_ms = time.time_ns() // 1_000_000
        if unix_ms > _uuid7_last_ms:
            _uuid7_last_ms = unix_ms
            # leave headroom so the counter rarely overflows within a millisecond
            _uuid7_counter = int.from_bytes(os.urandom(2), "big") & 0x7FF
        else:
            _uuid7_counter += 1
            if _uuid7_counter > 0xFFF:
                # counter exhausted, borrow the next millisecond
                _uuid7_last_ms += 1
                _uuid7_counter = 0
        unix_ms = _uuid7_last_ms
        counter = _uuid7_counter

    rand_b = int.from_bytes(os.urandom(8), "big") & ((1 << 62) - 1)

    value = (unix_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= counter << 64
    value |= 0b10 << 62
    value |= rand_b
    return UUID(int=value)
