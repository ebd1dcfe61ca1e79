from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

DEFAULT_TTL_SECONDS = 60


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_run_fresh(
    created_at: datetime,
    now: datetime,
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
) -> bool:
    return (to_utc(now) - to_utc(created_at)).total_seconds() < ttl_seconds


def can_serve_cached(
    created_at: datetime,
    now: datetime,
    *,
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
    force_refresh: bool = False,
    latest_transaction_update: Optional[datetime] = None,
) -> bool:
    """
    A cached run is served only inside the TTL, when the caller did not ask
    for a refresh, and when no transaction changed after the run was built.
    """
    if force_refresh:
        return False
    if not is_run_fresh(created_at, now, ttl_seconds):
        return False
    if latest_transaction_update is not None and to_utc(latest_transaction_update) > to_utc(created_at):
        return False
    return True
