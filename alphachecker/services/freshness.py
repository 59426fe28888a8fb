"""Freshness policy for cached futures verdicts."""
from datetime import datetime, timedelta
from typing import Optional

from alphachecker.utils.time import ensure_utc

DEFAULT_THRESHOLD_HOURS = 24.0


def is_fresh(
    last_verified_at: Optional[datetime],
    now: datetime,
    threshold_hours: float = DEFAULT_THRESHOLD_HOURS
) -> bool:
    """
    Decide whether a cached verdict can be reused without re-verification.
    
    Args:
        last_verified_at: When the verdict was produced (None = never verified)
        now: Reference time
        threshold_hours: Maximum age in hours; the boundary itself is stale
        
    Returns:
        True if the verdict is younger than the threshold
    """
    if last_verified_at is None:
        return False
    age = ensure_utc(now) - ensure_utc(last_verified_at)
    return age < timedelta(hours=threshold_hours)
