from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from tutordesk.config import settings


APP_TIMEZONE = settings.app_timezone or "Asia/Kolkata"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def now_naive(self) -> datetime:
        # Bookings are stored as naive wall-clock times in the app timezone.
        return to_local_naive(self.now()).replace(second=0, microsecond=0)

    def today(self) -> date:
        return self.now_naive().date()


default_time_provider = TimeProvider()


def to_local_naive(value: datetime) -> datetime:
    """Convert an offset-aware value to naive app-timezone wall-clock time."""
    if value.tzinfo is None:
        return value
    return value.astimezone(APP_ZONEINFO).replace(tzinfo=None)
