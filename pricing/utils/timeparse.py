# pricing/utils/timeparse.py
from __future__ import annotations
from datetime import datetime, timezone

def _from_epoch(seconds) -> datetime:
    return datetime.fromtimestamp(float(seconds), tz=timezone.utc).replace(tzinfo=None)

def parse_datetime(value) -> datetime | None:
    """
    Accepts what the admin UI stores for dates:
      - ISO8601 strings, with or without a trailing 'Z'
      - Firestore timestamps serialized as {"seconds": ...} or {"_seconds": ...}
      - datetime objects
    Returns naive UTC, or None when the value is empty.
    Raises ValueError for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            raise ValueError(f"unsupported timestamp object: {value!r}")
        return _from_epoch(seconds)
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    s = str(value).strip()
    # support trailing 'Z' (UTC)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)  # naive UTC
    return dt

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
