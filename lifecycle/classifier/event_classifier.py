"""
Event Classifier - places each calendar event in its lifecycle bucket.

The state is never stored; it is re-derived from the event's release instant,
the presence of an actual value and the current time on every read, so it
cannot drift out of sync with the data it describes.
"""

from datetime import date, datetime, timedelta
from typing import Optional
from pydantic import BaseModel

from calendar_core.base.component import BaseComponent
from calendar_core.base.models import CalendarEvent, LifecycleState
from calendar_core.utils.time_utils import TimeUtils, TimezoneLike


class Classification(BaseModel):
    """Lifecycle classification of one event at one point in time."""
    
    state: LifecycleState
    start: datetime
    hours_until: Optional[float] = None
    minutes_elapsed: Optional[float] = None
    is_overdue: bool = False
    local_day: Optional[date] = None
    
    @property
    def countdown(self) -> Optional[str]:
        if self.hours_until is None:
            return None
        return TimeUtils.format_countdown(self.hours_until)


class EventClassifier(BaseComponent):
    """
    Computes Upcoming / Live / AwaitingData / Overdue / Resolved.
    
    Rules, first match wins:
        now < start                          -> Upcoming
        actual present                       -> Resolved
        now < start + live window            -> Live
        minutes since start <= overdue limit -> AwaitingData
        otherwise                            -> Overdue
    """
    
    def __init__(self, live_window_minutes: Optional[int] = None,
                 overdue_after_minutes: Optional[int] = None):
        super().__init__(name="EventClassifier", config_section="lifecycle")
        self.live_window = timedelta(minutes=live_window_minutes if live_window_minutes is not None
                                     else self.get_config_value("live_window_minutes", 60))
        self.overdue_after_minutes = float(overdue_after_minutes if overdue_after_minutes is not None
                                           else self.get_config_value("overdue_after_minutes", 90))
    
    def classify(self, event: CalendarEvent, now: datetime,
                 tz: Optional[TimezoneLike] = None) -> Classification:
        """
        Classify an event at time `now`.
        
        Args:
            event: A calendar event whose date/time already passed validation
            now: Current time (naive values are taken as UTC)
            tz: Viewer timezone; when given, the local display day is filled in
            
        Returns:
            Classification with state and elapsed/remaining durations
        """
        now = TimeUtils.ensure_utc(now)
        start = TimeUtils.resolve_instant(event.date, event.time_of_day)
        end = start + self.live_window
        local_day = TimeUtils.local_calendar_day(start, tz) if tz is not None else None
        
        if now < start:
            return Classification(
                state=LifecycleState.UPCOMING,
                start=start,
                hours_until=(start - now).total_seconds() / 3600,
                local_day=local_day,
            )
        
        # Measured from start, not from the end of the live window
        minutes_elapsed = (now - start).total_seconds() / 60
        
        if event.has_actual:
            state = LifecycleState.RESOLVED
        elif now < end:
            state = LifecycleState.LIVE
        elif minutes_elapsed <= self.overdue_after_minutes:
            state = LifecycleState.AWAITING_DATA
        else:
            state = LifecycleState.OVERDUE
        
        return Classification(
            state=state,
            start=start,
            minutes_elapsed=minutes_elapsed,
            is_overdue=state == LifecycleState.OVERDUE,
            local_day=local_day,
        )
    
    def release_instant(self, event: CalendarEvent) -> datetime:
        """Absolute UTC release instant of an event."""
        return TimeUtils.resolve_instant(event.date, event.time_of_day)
