"""
Timestamp helpers

All contract timestamps are ISO 8601 UTC strings with millisecond
precision and a trailing 'Z', the same text a browser's
Date.toISOString() produces.
"""

from datetime import datetime, timezone
from typing import Optional


def iso_now() -> str:
    """Current UTC time as an ISO 8601 string"""
    return to_iso(datetime.now(timezone.utc))


def to_iso(moment: datetime) -> str:
    """Format an aware datetime as ISO 8601 UTC"""
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def from_epoch(seconds: Optional[float]) -> Optional[str]:
    """Format a time.time() value, passing None through"""
    if seconds is None:
        return None
    return to_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
