"""Timezone helpers – one UTC-aware *now()* for the whole package.

Timestamps cross the wire and land in the local store as ISO-8601 strings,
so :func:`utc_now_iso` is the form most call-sites want.
"""

from datetime import datetime
from datetime import timezone


def utc_now() -> datetime:  # noqa: D401 – simple utility
    """Return *aware* current time in UTC."""

    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return utc_now().isoformat()


__all__ = ["utc_now", "utc_now_iso"]
