"""
Time utilities for the event lifecycle engine.

Event dates and times arrive UTC-anchored as separate calendar-date and
time-of-day strings. Everything downstream works on aware UTC instants; only
day grouping for display converts into the viewer's timezone.
"""

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Tuple, Union
import pandas as pd

from ..base.exceptions import InvalidTimestamp, ValidationError


_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")

DateLike = Union[str, date]
TimezoneLike = Union[str, tzinfo]


class TimeUtils:
    """
    Utility functions for event time resolution.
    """
    
    @staticmethod
    def parse_date(value: DateLike) -> date:
        """
        Parse a UTC calendar date.
        
        Args:
            value: "YYYY-MM-DD" string or date
            
        Returns:
            Calendar date
            
        Raises:
            InvalidTimestamp: If the date is not a well-formed calendar date
        """
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        
        match = _DATE_PATTERN.match(str(value).strip()) if value is not None else None
        if not match:
            raise InvalidTimestamp(f"Malformed event date: {value!r}")
        
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError as e:
            raise InvalidTimestamp(f"Invalid event date {value!r}: {e}")
    
    @staticmethod
    def parse_time_of_day(value: str) -> time:
        """
        Parse an HH:MM time of day (UTC). A trailing seconds part is ignored.
        
        Raises:
            InvalidTimestamp: If the value is not HH:MM
        """
        match = _TIME_PATTERN.match(str(value).strip())
        if not match:
            raise InvalidTimestamp(f"Malformed time of day: {value!r}")
        
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise InvalidTimestamp(f"Time of day out of range: {value!r}")
        
        return time(hour, minute, tzinfo=timezone.utc)
    
    @staticmethod
    def resolve_instant(event_date: DateLike, time_of_day: Optional[str] = None) -> datetime:
        """
        Convert a (date, optional time of day) pair into an absolute UTC instant.
        
        Date-only events (crypto, earnings, IPO) resolve to midnight UTC of
        their date.
        
        Args:
            event_date: UTC calendar date
            time_of_day: Optional "HH:MM" in UTC
            
        Returns:
            Timezone-aware datetime in UTC
            
        Raises:
            InvalidTimestamp: If either part is malformed
        """
        day = TimeUtils.parse_date(event_date)
        
        if time_of_day is None or not str(time_of_day).strip():
            return datetime.combine(day, time(0, 0, tzinfo=timezone.utc))
        
        return datetime.combine(day, TimeUtils.parse_time_of_day(time_of_day))
    
    @staticmethod
    def local_calendar_day(instant: datetime, tz: TimezoneLike) -> date:
        """
        Calendar date of an instant as seen by a viewer in timezone `tz`.
        
        This, not the raw UTC `date` field, decides which day bucket an event
        is displayed under.
        
        Args:
            instant: Absolute instant (naive values are taken as UTC)
            tz: IANA timezone name or tzinfo
            
        Returns:
            Local calendar date
        """
        stamp = pd.Timestamp(TimeUtils.ensure_utc(instant))
        
        try:
            return stamp.tz_convert(tz).date()
        except Exception as e:
            raise ValidationError(f"Unknown timezone {tz!r}: {e}")
    
    @staticmethod
    def ensure_utc(dt: datetime) -> datetime:
        """Return `dt` as an aware UTC datetime, assuming UTC for naive values."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    
    @staticmethod
    def shift_date(event_date: DateLike, days: int) -> str:
        """Shift a calendar date by whole days and return it as YYYY-MM-DD."""
        return (TimeUtils.parse_date(event_date) + timedelta(days=days)).isoformat()
    
    @staticmethod
    def split_provider_timestamp(raw: str) -> Tuple[str, Optional[str]]:
        """
        Split a provider timestamp into (date, time_of_day).
        
        Market data providers publish release times as "2024-03-15 12:30:00"
        or ISO strings. Midnight means "no time given" and maps to None.
        
        Args:
            raw: Provider timestamp string
            
        Returns:
            Tuple of (YYYY-MM-DD, HH:MM or None)
        """
        if raw is None or not str(raw).strip():
            raise InvalidTimestamp("Empty provider timestamp")
        
        try:
            stamp = pd.Timestamp(str(raw).strip())
        except (ValueError, TypeError) as e:
            raise InvalidTimestamp(f"Malformed provider timestamp {raw!r}: {e}")
        
        if stamp is pd.NaT:
            raise InvalidTimestamp(f"Malformed provider timestamp {raw!r}")
        
        if stamp.tzinfo is not None:
            stamp = stamp.tz_convert("UTC")
        
        time_of_day = stamp.strftime("%H:%M")
        return stamp.strftime("%Y-%m-%d"), (None if time_of_day == "00:00" else time_of_day)
    
    @staticmethod
    def format_countdown(hours: float) -> str:
        """
        Render a time-until value for display; under one hour shows minutes.
        
        Args:
            hours: Fractional hours until release
            
        Returns:
            Display string such as "45m" or "2.5h"
        """
        if hours < 1:
            return f"{max(0, round(hours * 60))}m"
        return f"{round(hours, 1):g}h"
