"""
Core base classes for the event lifecycle engine.
"""

from .component import BaseComponent
from .config import ConfigManager
from .exceptions import (
    EventEngineError,
    DataError,
    ConfigError,
    APIError,
    UpstreamFetchFailure,
    ValidationError,
    InvalidTimestamp,
    UnparsableNumeric,
)
from .models import (
    ActualUpdate,
    AnalysisKind,
    AnalysisRecord,
    CalendarEvent,
    EventCategory,
    EventRef,
    Importance,
    LifecycleState,
    SurpriseCategory,
)

__all__ = [
    "BaseComponent",
    "ConfigManager",
    "EventEngineError",
    "DataError",
    "ConfigError",
    "APIError",
    "UpstreamFetchFailure",
    "ValidationError",
    "InvalidTimestamp",
    "UnparsableNumeric",
    "ActualUpdate",
    "AnalysisKind",
    "AnalysisRecord",
    "CalendarEvent",
    "EventCategory",
    "EventRef",
    "Importance",
    "LifecycleState",
    "SurpriseCategory",
]
