"""Multi-provider meal analysis with consensus merging and fallback."""

from .engine import AnalysisEngine
from .errors import FallbackExhaustedError
from .models import AnalysisResult, Confidence, ExecutionMode, LineItem

__all__ = [
    "AnalysisEngine",
    "AnalysisResult",
    "Confidence",
    "ExecutionMode",
    "FallbackExhaustedError",
    "LineItem",
]
