"""Request-level services built on the pipeline."""

from .analysis_runner import AnalysisOutcome, AnalysisRunner

__all__ = ["AnalysisOutcome", "AnalysisRunner"]
