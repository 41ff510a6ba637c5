from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def minutes_from_now_ms(minutes: float) -> int:
    return to_epoch_ms(utc_now() + timedelta(minutes=minutes))


def future_days_to_unix_time(days: Optional[float]) -> Optional[int]:
    """Seconds-since-epoch timestamp `days` from now, as ban expiries expect."""
    if not days:
        return None
    return int((utc_now() + timedelta(days=days)).timestamp())
