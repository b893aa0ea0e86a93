"""
Lifecycle classification.
"""

from .event_classifier import Classification, EventClassifier

__all__ = ["Classification", "EventClassifier"]
