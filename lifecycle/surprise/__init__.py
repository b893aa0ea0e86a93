"""
Release surprise evaluation.
"""

from .surprise_evaluator import SurpriseAssessment, SurpriseEvaluator

__all__ = ["SurpriseAssessment", "SurpriseEvaluator"]
