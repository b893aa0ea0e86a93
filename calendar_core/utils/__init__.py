"""
Utility modules for the event lifecycle engine.
"""

from .logging_setup import setup_logging, get_audit_logger
from .data_validation import DataValidator
from .time_utils import TimeUtils

__all__ = [
    "setup_logging",
    "get_audit_logger",
    "DataValidator",
    "TimeUtils"
]
