"""
API modules for external data sources.
"""

from .market_data import (
    ActualsAPI,
    BaseActualsProvider,
    BaseCalendarSource,
    FMPActualsProvider,
    StaticActualsProvider,
)

__all__ = [
    "ActualsAPI",
    "BaseActualsProvider",
    "BaseCalendarSource",
    "FMPActualsProvider",
    "StaticActualsProvider"
]
