from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from academy.config import settings


APP_TIMEZONE = settings.app_timezone or "Asia/Kolkata"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def naive_now(self) -> datetime:
        # Stored timestamps are naive local time.
        return self.now().replace(tzinfo=None)


class FixedTimeProvider(TimeProvider):
    def __init__(self, moment: datetime):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=APP_ZONEINFO)
        self._moment = moment

    def now(self) -> datetime:
        return self._moment


def to_naive_local(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt
    return dt.astimezone(APP_ZONEINFO).replace(tzinfo=None)


default_time_provider = TimeProvider()
