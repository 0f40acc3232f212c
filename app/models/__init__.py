"""SQLAlchemy models for the grain settlement engine."""

from app.models.settlement import Settlement
from app.models.ctg_entry import CtgEntry
from app.models.quality import QualityAnalysis, QualityResultRecord

__all__ = [
    "Settlement",
    "CtgEntry",
    "QualityAnalysis",
    "QualityResultRecord",
]
