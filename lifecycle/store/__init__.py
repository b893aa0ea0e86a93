"""
Shared event store.
"""

from .event_store import EventStore, LifecycleView, ViewItem

__all__ = ["EventStore", "LifecycleView", "ViewItem"]
