"""
ULID generation and timestamp utilities (stdlib-only).

The sync engine speaks two time representations: timezone-aware
``datetime`` values coming out of PostgreSQL, and integer epoch
milliseconds stored in the search index and used as the watermark.
All conversions go through this module.

Features:
    - **utc_now() / now_ms():** Current time as datetime or epoch ms
    - **to_epoch_ms() / from_epoch_ms():** Lossless-to-the-millisecond round trip
    - **generate_ulid():** Time-sortable ids used as cycle ids

Tags:
    timestamps, ulid, utc, epoch, boardsync, stdlib-only
"""

import random
import time
from datetime import UTC, datetime

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to integer milliseconds since the epoch.

    Naive datetimes are assumed to be UTC, which is how the board's
    ``timestamp with time zone`` columns come back when a driver strips
    the zone.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    delta = dt - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_ms(ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    timestamp_chars = _encode_base32(now_ms(), 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
