"""
Shared data models for calendar events, analysis records and upstream payloads.
"""

from enum import Enum
from datetime import datetime
from typing import Any, Dict, Optional, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field


ReleaseValue = Union[float, int, str]


class Importance(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EventCategory(str, Enum):
    MACRO = "macro"
    CRYPTO = "crypto"
    EARNINGS = "earnings"
    IPO = "ipo"


class AnalysisKind(str, Enum):
    PRE_EVENT = "pre_event"
    POST_EVENT = "post_event"


class LifecycleState(str, Enum):
    """Lifecycle bucket of an event relative to wall-clock time."""
    UPCOMING = "upcoming"
    LIVE = "live"
    AWAITING_DATA = "awaiting_data"
    OVERDUE = "overdue"
    RESOLVED = "resolved"


class SurpriseCategory(str, Enum):
    MAJOR_UPSIDE = "major_upside"
    MINOR_UPSIDE = "minor_upside"
    IN_LINE = "in_line"
    MINOR_DOWNSIDE = "minor_downside"
    MAJOR_DOWNSIDE = "major_downside"


class CalendarEvent(BaseModel):
    """
    A scheduled market event.
    
    `date` and `time_of_day` are UTC. Instances are immutable; the store swaps
    whole instances when an actual value is promoted.
    """
    
    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)
    
    id: str
    title: str
    date: str
    time_of_day: Optional[str] = Field(default=None, validation_alias=AliasChoices("time_of_day", "timeOfDay", "time"))
    importance: Importance = Importance.MEDIUM
    category: EventCategory = Field(default=EventCategory.MACRO, validation_alias=AliasChoices("category", "type"))
    country: Optional[str] = None
    currency: Optional[str] = None
    symbol: Optional[str] = None
    previous: Optional[ReleaseValue] = None
    forecast: Optional[ReleaseValue] = None
    actual: Optional[ReleaseValue] = None
    surprise: Optional[SurpriseCategory] = None
    
    @property
    def has_actual(self) -> bool:
        return has_value(self.actual)


class AnalysisRecord(BaseModel):
    """Read-only analysis produced by the external analysis agent."""
    
    model_config = ConfigDict(frozen=True)
    
    event_name_raw: str
    event_date: str
    kind: AnalysisKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class EventRef(BaseModel):
    """Event reference handed to the upstream actuals provider."""
    
    id: str
    title: str
    date: str
    time_of_day: Optional[str] = None
    category: EventCategory = EventCategory.MACRO
    symbol: Optional[str] = None
    
    @classmethod
    def from_event(cls, event: CalendarEvent) -> "EventRef":
        return cls(
            id=event.id,
            title=event.title,
            date=event.date,
            time_of_day=event.time_of_day,
            category=event.category,
            symbol=event.symbol,
        )


class ActualUpdate(BaseModel):
    """Upstream answer for one event reference."""
    
    id: str
    actual: Optional[ReleaseValue] = None
    forecast: Optional[ReleaseValue] = None
    previous: Optional[ReleaseValue] = None
    
    @property
    def has_actual(self) -> bool:
        return has_value(self.actual)


def has_value(value: Any) -> bool:
    """True when a release value is actually populated (empty strings count as absent)."""
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True
