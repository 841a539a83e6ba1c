from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional


def parse_instant(value) -> Optional[datetime]:
    """Parse an ISO 8601 string or epoch milliseconds into an aware UTC datetime.

    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        try:
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def seconds_until(http_date: str, now: Optional[datetime] = None) -> Optional[float]:
    """Seconds from now until an HTTP-date (as used by Retry-After)."""
    try:
        target = parsedate_to_datetime(http_date)
    except (TypeError, ValueError):
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (target - now).total_seconds())


def to_iso(dt: datetime) -> str:
    """Format an aware datetime the way the CRM search API expects."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
