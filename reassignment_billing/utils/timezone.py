# reassignment_billing/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date
from typing import Optional
from zoneinfo import ZoneInfo

from reassignment_billing.core.config import settings


def clinic_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def now_local() -> datetime:
    """
    Returns a *naive* datetime in the clinic timezone.
    All DateTime columns are naive, so every timestamp we compare or store
    goes through here (or through to_local_naive).
    """
    return datetime.now(clinic_tz()).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()


def to_local_naive(dt: Optional[datetime]) -> Optional[datetime]:
    if not dt:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(clinic_tz()).replace(tzinfo=None)
