import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

TZ_HELSINKI = ZoneInfo("Europe/Helsinki")

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS

def now_ms() -> int:
    """Wall clock in integer milliseconds since the epoch."""
    return int(time.time() * 1000)

def now_helsinki() -> datetime:
    return datetime.now(TZ_HELSINKI)

def ms_to_iso(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).isoformat()

def iso_to_ms(value: str) -> int:
    """
    Parse an ISO-8601 timestamp as emitted by PostgREST.
    A missing offset is read as UTC; a trailing 'Z' is accepted.
    """
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)
