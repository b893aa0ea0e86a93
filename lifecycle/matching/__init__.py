"""
Event name normalization and analysis matching.
"""

from .name_normalizer import NameNormalizer, normalize
from .analysis_matcher import AnalysisMatcher, payload_completeness

__all__ = ["NameNormalizer", "normalize", "AnalysisMatcher", "payload_completeness"]
