"""Message ingestion pipeline and background analysis handlers."""

from .handlers import AnalysisJobHandlers
from .pipeline import MessagePipeline

__all__ = ["AnalysisJobHandlers", "MessagePipeline"]
