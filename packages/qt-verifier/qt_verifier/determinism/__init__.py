"""Determinism analysis of control queries."""

from .analyzer import DeterminismAnalysisDetails, DeterminismAnalyzer
from .limit_analyzer import LimitQueryDeterminismAnalyzer

__all__ = [
    "DeterminismAnalysisDetails",
    "DeterminismAnalyzer",
    "LimitQueryDeterminismAnalyzer",
]
