"""Database models and analysis records"""

from app.models.analysis import (
    IssueIngestedEvent,
    IssueRecord,
    IssueTagsEvent,
    OrchestratorState,
    Priority,
    Recommendation,
    RepositorySummary,
    SummaryReportEvent,
    TagStatistic,
    TimeRangeStat,
)
from app.models.analysis_state import AnalysisStateSnapshot

__all__ = [
    "AnalysisStateSnapshot",
    "IssueIngestedEvent",
    "IssueRecord",
    "IssueTagsEvent",
    "OrchestratorState",
    "Priority",
    "Recommendation",
    "RepositorySummary",
    "SummaryReportEvent",
    "TagStatistic",
    "TimeRangeStat",
]
