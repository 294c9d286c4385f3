# backend/utils/clock.py
from datetime import datetime, timezone


# Naive UTC timestamp, matching what SQLite/Postgres DateTime columns store
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
