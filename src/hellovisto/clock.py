"""Wall clock. Components take a clock callable so callers and tests can supply "now"."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
