# backend/utils/clock.py
from datetime import datetime, timezone


# Naive UTC timestamp; every DateTime column stores UTC without tzinfo
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Normalise a client supplied datetime to naive UTC
def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
