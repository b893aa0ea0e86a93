"""
Shared fixtures for the event lifecycle tests.
"""

from datetime import datetime, timezone

import pytest

from calendar_core.base.models import CalendarEvent


NOW = datetime(2024, 3, 15, 14, 0, tzinfo=timezone.utc)


def make_event(event_id: str = "evt-1", title: str = "Non-Farm Payrolls", date: str = "2024-03-15",
               time_of_day: str = "12:30", **kwargs) -> CalendarEvent:
    """Build a calendar event with sensible defaults."""
    fields = {
        "id": event_id,
        "title": title,
        "date": date,
        "time_of_day": time_of_day,
        "importance": "high",
        "category": "macro",
    }
    fields.update(kwargs)
    return CalendarEvent(**fields)


@pytest.fixture
def now():
    return NOW
