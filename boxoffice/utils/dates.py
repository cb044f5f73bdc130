# boxoffice/utils/dates.py
from datetime import datetime, timezone
from typing import Optional


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow(now: Optional[datetime] = None) -> datetime:
    """Current UTC time, or ``now`` normalized to UTC when a caller pins the clock."""
    return ensure_utc(now) if now is not None else datetime.now(timezone.utc)
