from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Dict, Optional, Tuple

import pytz

from ..config import Settings, settings as default_settings


Window = Tuple[time, time]


def parse_hhmm(value: str) -> time:
    return time.fromisoformat(value.strip())


@dataclass(frozen=True)
class BusinessHours:
    """
    Weekly opening windows in a local timezone.

    windows maps weekday (Monday=0) to a (start, end) pair; start is inclusive,
    end is exclusive, and a missing weekday is closed all day.
    """
    tz_name: str
    windows: Dict[int, Window] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "BusinessHours":
        cfg = cfg or default_settings
        weekday = (parse_hhmm(cfg.business_weekday_start), parse_hhmm(cfg.business_weekday_end))
        saturday = (parse_hhmm(cfg.business_saturday_start), parse_hhmm(cfg.business_saturday_end))
        windows = {day: weekday for day in range(5)}
        windows[5] = saturday
        return cls(tz_name=cfg.tz_default, windows=windows)

    @property
    def tz(self):
        return pytz.timezone(self.tz_name)

    def localize(self, now: Optional[datetime] = None) -> datetime:
        """Aware local time. Naive values are read as local wall-clock time."""
        if now is None:
            return datetime.now(self.tz)
        if now.tzinfo is None:
            return self.tz.localize(now)
        return now.astimezone(self.tz)

    def is_open(self, now: Optional[datetime] = None) -> bool:
        local = self.localize(now)
        window = self.windows.get(local.weekday())
        if not window:
            return False
        start, end = window
        return start <= local.time() < end

    def hour_bucket(self, now: Optional[datetime] = None) -> str:
        return self.localize(now).strftime("%Y-%m-%dT%H")
