"""
Tests for the Event Classifier.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from calendar_core.base.models import LifecycleState
from lifecycle.classifier import EventClassifier
from conftest import make_event


START = datetime(2024, 3, 15, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def classifier():
    return EventClassifier(live_window_minutes=60, overdue_after_minutes=90)


class TestEventClassifier:
    """Test cases for EventClassifier."""
    
    def test_upcoming(self, classifier):
        result = classifier.classify(make_event(), START - timedelta(minutes=45))
        
        assert result.state == LifecycleState.UPCOMING
        assert result.hours_until == pytest.approx(0.75)
        assert result.countdown == "45m"
        assert result.minutes_elapsed is None
        assert not result.is_overdue
    
    def test_live_at_start_instant(self, classifier):
        result = classifier.classify(make_event(), START)
        assert result.state == LifecycleState.LIVE
        assert result.minutes_elapsed == 0
    
    def test_live_until_window_end(self, classifier):
        assert classifier.classify(make_event(), START + timedelta(minutes=59)).state == LifecycleState.LIVE
        assert classifier.classify(make_event(), START + timedelta(minutes=60)).state == LifecycleState.AWAITING_DATA
    
    def test_awaiting_data_up_to_ninety_minutes(self, classifier):
        result = classifier.classify(make_event(), START + timedelta(minutes=90))
        assert result.state == LifecycleState.AWAITING_DATA
        assert result.minutes_elapsed == pytest.approx(90)
    
    def test_overdue_after_ninety_minutes(self, classifier):
        result = classifier.classify(make_event(), START + timedelta(minutes=100))
        
        assert result.state == LifecycleState.OVERDUE
        assert result.is_overdue
        assert result.minutes_elapsed == pytest.approx(100)
    
    def test_resolved_regardless_of_elapsed_time(self, classifier):
        event = make_event(actual="256K")
        for minutes in (0, 30, 75, 600):
            assert classifier.classify(event, START + timedelta(minutes=minutes)).state == LifecycleState.RESOLVED
    
    def test_upcoming_wins_over_actual(self, classifier):
        event = make_event(actual=1.2)
        assert classifier.classify(event, START - timedelta(minutes=1)).state == LifecycleState.UPCOMING
    
    def test_blank_actual_counts_as_absent(self, classifier):
        event = make_event(actual="  ")
        assert classifier.classify(event, START + timedelta(minutes=10)).state == LifecycleState.LIVE
    
    def test_overdue_then_resolved(self, classifier):
        """An overdue event that later receives its actual reads as resolved."""
        now = START + timedelta(minutes=100)
        event = make_event()
        assert classifier.classify(event, now).state == LifecycleState.OVERDUE
        
        promoted = event.model_copy(update={"actual": "256K"})
        assert classifier.classify(promoted, now + timedelta(seconds=30)).state == LifecycleState.RESOLVED
    
    def test_date_only_event_uses_midnight(self, classifier):
        event = make_event(category="earnings", time_of_day=None, symbol="AAPL", title="AAPL Earnings")
        midnight = datetime(2024, 3, 15, tzinfo=timezone.utc)
        
        assert classifier.classify(event, midnight - timedelta(minutes=1)).state == LifecycleState.UPCOMING
        assert classifier.classify(event, midnight + timedelta(minutes=30)).state == LifecycleState.LIVE
        assert classifier.classify(event, midnight + timedelta(minutes=80)).state == LifecycleState.AWAITING_DATA
        assert classifier.classify(event, midnight + timedelta(hours=9)).state == LifecycleState.OVERDUE
    
    def test_naive_now_is_utc(self, classifier):
        naive = datetime(2024, 3, 15, 12, 45)
        assert classifier.classify(make_event(), naive).state == LifecycleState.LIVE
    
    def test_local_day_filled_when_timezone_given(self, classifier):
        event = make_event(time_of_day="23:30")
        now = datetime(2024, 3, 15, 10, tzinfo=timezone.utc)
        
        assert classifier.classify(event, now, timezone(timedelta(hours=2))).local_day == date(2024, 3, 16)
        assert classifier.classify(event, now, timezone(timedelta(hours=-5))).local_day == date(2024, 3, 15)
        assert classifier.classify(event, now).local_day is None
    
    def test_totality_over_time_grid(self, classifier):
        """Every moment maps to exactly one of the five states."""
        events = [make_event(), make_event(actual=3.1), make_event(time_of_day=None)]
        seen = set()
        for event in events:
            for minutes in range(-180, 24 * 60, 7):
                result = classifier.classify(event, START + timedelta(minutes=minutes))
                assert result.state in set(LifecycleState)
                seen.add(result.state)
        assert seen == set(LifecycleState)
    
    def test_windows_from_config(self):
        classifier = EventClassifier()
        assert classifier.live_window == timedelta(minutes=60)
        assert classifier.overdue_after_minutes == 90
