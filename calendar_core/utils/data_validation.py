"""
Data validation utilities for release values.
"""

import re
from typing import Any, Optional
import numpy as np
import pandas as pd

from ..base.exceptions import UnparsableNumeric


_MISSING_MARKERS = {"", "n/a", "na", "none", "null", "-", "--", "tbd"}
_SUFFIX_MULTIPLIERS = {"k": 1e3, "m": 1e6, "b": 1e9, "t": 1e12}
_NUMBER_PATTERN = re.compile(r"^([+-]?\d*\.?\d+(?:[eE][+-]?\d+)?)\s*([kmbt])?$", re.IGNORECASE)
_DECORATION_PATTERN = re.compile(r"[$€£¥₺%,\s]")


class DataValidator:
    """
    Validation helpers for the loosely formatted values providers publish.
    """
    
    @staticmethod
    def to_number(value: Any) -> float:
        """
        Convert a release value such as "$1,234.5", "3.2%" or "250K" to a float.
        
        Currency symbols, percent signs, thousands separators and whitespace are
        stripped. K/M/B/T suffixes are scaled so mixed units compare correctly.
        
        Raises:
            UnparsableNumeric: If the value is missing or not numeric
        """
        if value is None or isinstance(value, bool):
            raise UnparsableNumeric(f"Not a numeric value: {value!r}")
        
        if isinstance(value, (int, float, np.number)):
            number = float(value)
        else:
            text = str(value).strip()
            if text.lower() in _MISSING_MARKERS:
                raise UnparsableNumeric(f"Missing value: {value!r}")
            
            cleaned = _DECORATION_PATTERN.sub("", text)
            match = _NUMBER_PATTERN.match(cleaned)
            if not match:
                raise UnparsableNumeric(f"Not a numeric value: {value!r}")
            
            number = pd.to_numeric(match.group(1), errors="coerce")
            suffix = (match.group(2) or "").lower()
            number = float(number) * _SUFFIX_MULTIPLIERS.get(suffix, 1.0)
        
        if not np.isfinite(number):
            raise UnparsableNumeric(f"Non-finite value: {value!r}")
        
        return number
    
    @staticmethod
    def parse_numeric(value: Any) -> Optional[float]:
        """
        Lenient variant of `to_number`: returns None instead of raising.
        
        Args:
            value: Raw release value
            
        Returns:
            Parsed float or None if the value is not numerically comparable
        """
        try:
            return DataValidator.to_number(value)
        except UnparsableNumeric:
            return None
