# medistock/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date
from zoneinfo import ZoneInfo

from medistock.core.config import settings

LOCAL_TZ = ZoneInfo(settings.TIMEZONE)


def now_local() -> datetime:
    """
    Naive datetime in the configured business timezone.
    DATETIME columns are stored naive.
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()


def period_key(d: date | None = None) -> str:
    """YYYYMM used by document numbers (QC-202501-0001)."""
    return (d or today_local()).strftime("%Y%m")
