"""
Tests for the Event Store.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

import pytest

from calendar_core.base.models import AnalysisKind, LifecycleState, SurpriseCategory
from lifecycle.store import EventStore
from conftest import NOW


def raw_event(event_id, title, time_of_day, event_date="2024-03-15", **kwargs):
    fields = {"id": event_id, "title": title, "date": event_date, "time_of_day": time_of_day,
              "importance": "high", "category": "macro"}
    fields.update(kwargs)
    return fields


@pytest.fixture
def store():
    store = EventStore()
    store.load([
        raw_event("upcoming", "CPI (YoY)", "16:00", forecast="3.1%"),
        raw_event("live", "Non Farm Payrolls", "13:30", forecast="200K"),
        raw_event("awaiting", "ISM Manufacturing PMI", "12:45", forecast="49.5"),
        raw_event("overdue", "GDP Growth Rate QoQ", "11:00", forecast="2.1%"),
        raw_event("resolved", "Initial Jobless Claims", "08:30", forecast="215K", actual="221K"),
    ])
    return store


class TestEventStoreLoad:
    """Test cases for event ingestion."""
    
    def test_invalid_timestamps_are_excluded(self):
        store = EventStore()
        accepted = store.load([
            raw_event("ok", "CPI", "12:30"),
            raw_event("bad-date", "PPI", "12:30", event_date="2024-02-31"),
            raw_event("bad-time", "Retail Sales", "25:00"),
            {"id": "missing-title", "date": "2024-03-15"},
        ])
        
        assert accepted == 1
        assert [e.id for e in store.events()] == ["ok"]
    
    def test_accepts_provider_field_names(self):
        store = EventStore()
        store.load([{"id": 7, "title": "BTC ETF Decision", "date": "2024-03-15", "type": "crypto", "time": None}])
        
        event = store.get("7")
        assert event.category.value == "crypto"
        assert event.time_of_day is None
    
    def test_loaded_actual_gets_surprise(self, store):
        assert store.get("resolved").surprise == SurpriseCategory.MINOR_UPSIDE
    
    def test_reload_keeps_promoted_actual(self, store):
        assert store.promote_actual("live", "256K")
        store.load([raw_event("live", "Non Farm Payrolls", "13:30", forecast="200K")])
        
        assert store.get("live").actual == "256K"
        assert store.get("live").surprise == SurpriseCategory.MAJOR_UPSIDE
    
    def test_reload_bumps_generation_and_notifies(self, store):
        seen = []
        store.add_reload_listener(seen.append)
        before = store.generation
        
        store.load([], window=("2024-03-18", "2024-03-24"))
        
        assert store.generation == before + 1
        assert seen == [before + 1]
        assert store.window == ("2024-03-18", "2024-03-24")


class TestPromotion:
    """Test cases for compare-and-set promotion."""
    
    def test_first_writer_wins(self, store):
        assert store.promote_actual("live", "256K", forecast="190K", previous="180K")
        assert not store.promote_actual("live", "300K")
        
        event = store.get("live")
        assert event.actual == "256K"
        assert event.forecast == "200K"
        assert event.previous == "180K"
        assert event.surprise == SurpriseCategory.MAJOR_UPSIDE
    
    def test_missing_forecast_is_filled(self, store):
        store.load([raw_event("flash", "Flash PMI", "13:00")])
        assert store.promote_actual("flash", "51.0", forecast="50.0")
        
        event = store.get("flash")
        assert event.forecast == "50.0"
        assert event.surprise == SurpriseCategory.MINOR_UPSIDE
    
    def test_existing_actual_is_never_overwritten(self, store):
        assert not store.promote_actual("resolved", "999K")
        assert store.get("resolved").actual == "221K"
    
    def test_blank_or_unknown_is_ignored(self, store):
        assert not store.promote_actual("live", "")
        assert not store.promote_actual("live", None)
        assert not store.promote_actual("nope", "1")
        assert store.get("live").actual is None
    
    def test_stale_generation_is_rejected(self, store):
        stale = store.generation
        store.load([raw_event("live", "Non Farm Payrolls", "13:30")])
        
        assert not store.promote_actual("live", "256K", generation=stale)
        assert store.promote_actual("live", "256K", generation=store.generation)
    
    def test_concurrent_promotions_apply_once(self, store):
        """Racing writers: exactly one value lands and exactly one call reports success."""
        barrier = threading.Barrier(8)
        
        def attempt(value):
            barrier.wait()
            return value, store.promote_actual("live", value)
        
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, [f"{200 + i}K" for i in range(8)]))
        
        winners = [value for value, won in results if won]
        assert len(winners) == 1
        assert store.get("live").actual == winners[0]


class TestCurrentView:
    """Test cases for the snapshot read interface."""
    
    def test_buckets(self, store):
        view = store.current_view(NOW, "UTC")
        
        assert [i.event.id for i in view.upcoming] == ["upcoming"]
        assert [i.event.id for i in view.live] == ["live"]
        assert [i.event.id for i in view.awaiting_data] == ["awaiting"]
        assert [i.event.id for i in view.overdue] == ["overdue"]
        assert [i.event.id for i in view.resolved] == ["resolved"]
        assert view.state_of("overdue") == LifecycleState.OVERDUE
        assert view.state_of("missing") is None
    
    def test_sorting(self):
        store = EventStore()
        store.load([
            raw_event("late", "A", "18:00"),
            raw_event("soon", "B", "15:00"),
            raw_event("earlier-live", "C", "13:10"),
            raw_event("later-live", "D", "13:40"),
        ])
        view = store.current_view(NOW)
        
        assert [i.event.id for i in view.upcoming] == ["soon", "late"]
        assert [i.event.id for i in view.live] == ["later-live", "earlier-live"]
    
    def test_analyses_attached(self, store):
        store.load_analyses([
            {"event_name_raw": "Non-Farm Payrolls (NFP)", "event_date": "2024-03-14",
             "kind": "pre_event", "payload": {"summary": "Cooling", "assets": ["DXY"]}},
            {"event_name_raw": "Initial Jobless Claims", "event_date": "2024-03-15",
             "kind": "post_event", "payload": {"summary": "Claims rose"}},
            {"event_name_raw": "broken"},
        ])
        view = store.current_view(NOW)
        
        live = view.live[0]
        assert live.pre_analysis.kind == AnalysisKind.PRE_EVENT
        assert live.post_analysis is None
        assert view.resolved[0].post_analysis.payload["summary"] == "Claims rose"
        assert view.upcoming[0].pre_analysis is None
    
    def test_overdue_reclassifies_after_promotion(self, store):
        assert store.current_view(NOW).state_of("overdue") == LifecycleState.OVERDUE
        store.promote_actual("overdue", "1.8%")
        assert store.current_view(NOW + timedelta(seconds=30)).state_of("overdue") == LifecycleState.RESOLVED


class TestDayGrouping:
    """Test cases for local day grouping."""
    
    def test_group_by_local_day(self):
        store = EventStore()
        store.load([
            raw_event("late", "Fed Speech", "23:30"),
            raw_event("noon", "Retail Sales", "12:00"),
        ])
        
        east = store.group_by_local_day(NOW, timezone(timedelta(hours=2)))
        west = store.group_by_local_day(NOW, timezone(timedelta(hours=-5)))
        
        assert [e.id for e in east[date(2024, 3, 16)]] == ["late"]
        assert [e.id for e in east[date(2024, 3, 15)]] == ["noon"]
        assert [e.id for e in west[date(2024, 3, 15)]] == ["noon", "late"]
    
    def test_to_frame(self, store):
        frame = store.to_frame(NOW, "UTC")
        
        assert len(frame) == 5
        assert list(frame["id"]) == ["resolved", "overdue", "awaiting", "live", "upcoming"]
        assert frame.loc[frame["id"] == "overdue", "state"].item() == "overdue"
    
    def test_empty_store(self):
        store = EventStore()
        assert store.group_by_local_day(NOW, "UTC") == {}
        assert store.to_frame(NOW).empty
