"""
Event Store - the shared, read-mostly view of calendar events.

Readers get a classified snapshot on every call. The only mutation paths are
a full reload of the event window and compare-and-set promotion of an actual
value by the reconciliation sweep. Both swap whole immutable event instances
under a short lock, so a reader never observes a half-applied promotion.
"""

import threading
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
import pandas as pd
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from calendar_core.base.component import BaseComponent
from calendar_core.base.exceptions import InvalidTimestamp
from calendar_core.base.models import (
    AnalysisRecord,
    CalendarEvent,
    LifecycleState,
    ReleaseValue,
    has_value,
)
from calendar_core.utils.logging_setup import get_audit_logger
from calendar_core.utils.time_utils import TimeUtils, TimezoneLike
from lifecycle.classifier.event_classifier import Classification, EventClassifier
from lifecycle.matching.analysis_matcher import AnalysisMatcher
from lifecycle.surprise.surprise_evaluator import SurpriseEvaluator


EventInput = Union[CalendarEvent, Mapping[str, Any]]


def _as_text(value: ReleaseValue) -> str:
    """Release values are stored as text, the way providers publish them."""
    return value if isinstance(value, str) else str(value)


class ViewItem(BaseModel):
    """One event in a snapshot, with its classification and analyses."""
    
    event: CalendarEvent
    classification: Classification
    pre_analysis: Optional[AnalysisRecord] = None
    post_analysis: Optional[AnalysisRecord] = None


class LifecycleView(BaseModel):
    """Snapshot of all events bucketed by lifecycle state."""
    
    generated_at: datetime
    upcoming: List[ViewItem] = Field(default_factory=list)
    live: List[ViewItem] = Field(default_factory=list)
    awaiting_data: List[ViewItem] = Field(default_factory=list)
    overdue: List[ViewItem] = Field(default_factory=list)
    resolved: List[ViewItem] = Field(default_factory=list)
    
    def bucket(self, state: LifecycleState) -> List[ViewItem]:
        return getattr(self, state.value)
    
    def state_of(self, event_id: str) -> Optional[LifecycleState]:
        for state in LifecycleState:
            if any(item.event.id == event_id for item in self.bucket(state)):
                return state
        return None


class EventStore(BaseComponent):
    """
    Thread-safe single-writer / many-reader map of calendar events.
    """
    
    def __init__(self, classifier: Optional[EventClassifier] = None,
                 matcher: Optional[AnalysisMatcher] = None,
                 evaluator: Optional[SurpriseEvaluator] = None):
        super().__init__(name="EventStore")
        self.classifier = classifier or EventClassifier()
        self.matcher = matcher or AnalysisMatcher()
        self.evaluator = evaluator or SurpriseEvaluator()
        
        self._lock = threading.RLock()
        self._events: Dict[str, CalendarEvent] = {}
        self._generation = 0
        self._window: Optional[Tuple[str, str]] = None
        self._reload_listeners: List = []
    
    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------
    
    def load(self, events: Iterable[EventInput], window: Optional[Tuple[str, str]] = None) -> int:
        """
        Replace the event set with a fresh load of the viewed window.
        
        Events with a malformed date or time are logged and excluded. An actual
        value already promoted by reconciliation is kept when the reload
        does not carry one.
        
        Args:
            events: Raw event dicts or CalendarEvent instances
            window: Optional (from, to) dates of the viewed range
            
        Returns:
            Number of events accepted
        """
        accepted: Dict[str, CalendarEvent] = {}
        rejected = 0
        
        for raw in events:
            event = self._ingest(raw)
            if event is None:
                rejected += 1
                continue
            accepted[event.id] = event
        
        with self._lock:
            for event_id, event in list(accepted.items()):
                current = self._events.get(event_id)
                if current is not None and current.has_actual and not event.has_actual:
                    accepted[event_id] = event.model_copy(
                        update={"actual": current.actual, "surprise": current.surprise}
                    )
            self._events = accepted
            self._generation += 1
            self._window = window
            generation = self._generation
            listeners = list(self._reload_listeners)
        
        self.logger.info(f"Loaded {len(accepted)} events ({rejected} rejected), generation {generation}")
        
        for listener in listeners:
            listener(generation)
        
        return len(accepted)
    
    def load_analyses(self, records: Iterable[Union[AnalysisRecord, Mapping[str, Any]]]) -> int:
        """(Re)build the analysis index from the analysis agent's records."""
        parsed = []
        for raw in records:
            try:
                parsed.append(raw if isinstance(raw, AnalysisRecord) else AnalysisRecord.model_validate(raw))
            except PydanticValidationError as e:
                self.logger.warning(f"Skipping malformed analysis record: {e.error_count()} errors")
        
        index = self.matcher.build_index(parsed)
        return sum(len(bucket) for bucket in index.values())
    
    def promote_actual(self, event_id: str, actual: ReleaseValue,
                       forecast: Optional[ReleaseValue] = None,
                       previous: Optional[ReleaseValue] = None,
                       generation: Optional[int] = None) -> bool:
        """
        Compare-and-set write of an actual value.
        
        The write only applies while the event's actual is still absent (and,
        when `generation` is given, while the store still holds that load).
        Actual, surprise category and any newly learned forecast/previous are
        swapped in as one new event instance.
        
        Returns:
            True if this call performed the promotion
        """
        if not has_value(actual):
            return False
        
        with self._lock:
            if generation is not None and generation != self._generation:
                self.logger.debug(f"Dropping promotion of {event_id}: window superseded")
                return False
            
            current = self._events.get(event_id)
            if current is None:
                self.logger.debug(f"Dropping promotion of unknown event {event_id}")
                return False
            
            if current.has_actual:
                self.logger.debug(f"Duplicate promotion attempt for {event_id} ignored "
                                  f"(kept {current.actual!r}, offered {actual!r})")
                return False
            
            update: Dict[str, Any] = {"actual": _as_text(actual)}
            if not has_value(current.forecast) and has_value(forecast):
                update["forecast"] = _as_text(forecast)
            if not has_value(current.previous) and has_value(previous):
                update["previous"] = _as_text(previous)
            update["surprise"] = self.evaluator.evaluate(update["actual"], update.get("forecast", current.forecast))
            
            promoted = current.model_copy(update=update)
            self._events[event_id] = promoted
            promoted_generation = self._generation
        
        get_audit_logger(event_id, promoted_generation).info(
            f"Promoted actual={actual!r} for {promoted.title!r} (surprise={promoted.surprise})"
        )
        return True
    
    def add_reload_listener(self, listener) -> None:
        """Register a callable invoked with the new generation after every load."""
        with self._lock:
            self._reload_listeners.append(listener)
    
    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------
    
    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation
    
    @property
    def window(self) -> Optional[Tuple[str, str]]:
        with self._lock:
            return self._window
    
    def get(self, event_id: str) -> Optional[CalendarEvent]:
        with self._lock:
            return self._events.get(event_id)
    
    def events(self) -> List[CalendarEvent]:
        """Consistent copy of the current event instances."""
        with self._lock:
            return list(self._events.values())
    
    def classify_all(self, now: datetime, tz: Optional[TimezoneLike] = None) -> List[Tuple[CalendarEvent, Classification]]:
        return [(event, self.classifier.classify(event, now, tz)) for event in self.events()]
    
    def current_view(self, now: datetime, tz: Optional[TimezoneLike] = "UTC") -> LifecycleView:
        """
        Snapshot of every event bucketed by lifecycle state.
        
        Args:
            now: Current time
            tz: Viewer timezone used for the local display day
            
        Returns:
            LifecycleView with upcoming, live, awaiting_data, overdue and resolved buckets
        """
        view = LifecycleView(generated_at=TimeUtils.ensure_utc(now))
        
        for event, classification in self.classify_all(now, tz):
            pre, post = self.matcher.match_pair(event)
            view.bucket(classification.state).append(ViewItem(
                event=event,
                classification=classification,
                pre_analysis=pre,
                post_analysis=post,
            ))
        
        view.upcoming.sort(key=lambda item: item.classification.start)
        for bucket in (view.live, view.awaiting_data, view.overdue, view.resolved):
            bucket.sort(key=lambda item: item.classification.start, reverse=True)
        
        return view
    
    def to_frame(self, now: datetime, tz: TimezoneLike = "UTC") -> pd.DataFrame:
        """
        Classified snapshot as a DataFrame, one row per event.
        """
        rows = []
        for event, classification in self.classify_all(now, tz):
            rows.append({
                "id": event.id,
                "title": event.title,
                "category": event.category.value,
                "importance": event.importance.value,
                "start": classification.start,
                "local_day": classification.local_day,
                "state": classification.state.value,
                "hours_until": classification.hours_until,
                "minutes_elapsed": classification.minutes_elapsed,
                "actual": event.actual,
                "forecast": event.forecast,
                "surprise": event.surprise.value if event.surprise else None,
            })
        
        columns = ["id", "title", "category", "importance", "start", "local_day", "state",
                   "hours_until", "minutes_elapsed", "actual", "forecast", "surprise"]
        frame = pd.DataFrame(rows, columns=columns)
        return frame.sort_values("start", kind="stable").reset_index(drop=True)
    
    def group_by_local_day(self, now: datetime, tz: TimezoneLike) -> Dict[date, List[CalendarEvent]]:
        """
        Events grouped under the calendar day the viewer sees them on.
        """
        frame = self.to_frame(now, tz)
        if frame.empty:
            return {}
        
        events = {event.id: event for event in self.events()}
        return {
            local_day: [events[event_id] for event_id in group["id"] if event_id in events]
            for local_day, group in frame.groupby("local_day", sort=True)
        }
    
    def _ingest(self, raw: EventInput) -> Optional[CalendarEvent]:
        try:
            event = raw if isinstance(raw, CalendarEvent) else CalendarEvent.model_validate(dict(raw))
        except PydanticValidationError as e:
            self.logger.warning(f"Excluding malformed event: {e.error_count()} validation errors")
            return None
        
        try:
            TimeUtils.resolve_instant(event.date, event.time_of_day)
        except InvalidTimestamp as e:
            self.logger.warning(f"Excluding event {event.id} ({event.title!r}): {e}")
            return None
        
        if event.has_actual and event.surprise is None:
            event = event.model_copy(update={"surprise": self.evaluator.evaluate(event.actual, event.forecast)})
        
        return event
