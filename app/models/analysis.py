"""Issue analysis domain records and events."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

STATE_OPEN = "open"
STATE_CLOSED = "closed"
STATE_ALL = "all"
STATE_UNKNOWN = "unknown"


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    value = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Priority(str, enum.Enum):
    """Recommendation priority levels."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @classmethod
    def normalize(cls, raw: Optional[str]) -> "Priority":
        """Map free-form priority text to a level, defaulting to Medium."""
        text = (raw or "").strip().strip("*_` ").lower()
        if text.startswith("high"):
            return cls.HIGH
        if text.startswith("low"):
            return cls.LOW
        return cls.MEDIUM


@dataclass(slots=True)
class IssueRecord:
    """One issue retrieved from the tracker (pull requests excluded)."""

    id: str
    title: str
    repository: str
    created_at: datetime
    state: str = STATE_UNKNOWN
    description: str = ""
    labels: list[str] = field(default_factory=list)
    url: str = ""
    closed_at: Optional[datetime] = None
    author: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state == STATE_OPEN

    @property
    def is_closed(self) -> bool:
        return self.state == STATE_CLOSED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "repository": self.repository,
            "created_at": _to_iso(self.created_at),
            "state": self.state,
            "description": self.description,
            "labels": list(self.labels),
            "url": self.url,
            "closed_at": _to_iso(self.closed_at),
            "author": self.author,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "IssueRecord":
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            repository=str(payload.get("repository") or ""),
            created_at=_from_iso(payload.get("created_at")) or datetime.now(UTC),
            state=str(payload.get("state") or STATE_UNKNOWN),
            description=str(payload.get("description") or ""),
            labels=[str(label) for label in payload.get("labels") or []],
            url=str(payload.get("url") or ""),
            closed_at=_from_iso(payload.get("closed_at")),
            author=payload.get("author"),
        )


@dataclass(slots=True)
class Recommendation:
    """Actionable, prioritized recommendation derived from issues."""

    title: str
    description: str
    priority: Priority = Priority.MEDIUM
    supporting_issue_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "supporting_issue_ids": list(self.supporting_issue_ids),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Recommendation":
        return cls(
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            priority=Priority.normalize(payload.get("priority")),
            supporting_issue_ids=[str(item) for item in payload.get("supporting_issue_ids") or []],
        )


@dataclass(frozen=True, slots=True)
class TagStatistic:
    tag: str
    count: int


@dataclass(frozen=True, slots=True)
class TimeRangeStat:
    """Issue activity inside one half-open [start_date, end_date) bucket."""

    start_date: datetime
    end_date: datetime
    issues_created: int
    issues_closed: int


@dataclass(slots=True)
class RepositorySummary:
    """Aggregated analysis report for one repository."""

    repository: str
    generated_at: datetime
    total_issues: int
    open_count: int
    closed_count: int
    oldest_issue_date: Optional[datetime] = None
    newest_issue_date: Optional[datetime] = None
    top_tags: list[TagStatistic] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    time_ranges: list[TimeRangeStat] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository,
            "generated_at": _to_iso(self.generated_at),
            "total_issues": self.total_issues,
            "open_count": self.open_count,
            "closed_count": self.closed_count,
            "oldest_issue_date": _to_iso(self.oldest_issue_date),
            "newest_issue_date": _to_iso(self.newest_issue_date),
            "top_tags": [{"tag": item.tag, "count": item.count} for item in self.top_tags],
            "recommendations": [item.to_dict() for item in self.recommendations],
            "time_ranges": [
                {
                    "start_date": _to_iso(item.start_date),
                    "end_date": _to_iso(item.end_date),
                    "issues_created": item.issues_created,
                    "issues_closed": item.issues_closed,
                }
                for item in self.time_ranges
            ],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RepositorySummary":
        return cls(
            repository=str(payload.get("repository") or ""),
            generated_at=_from_iso(payload.get("generated_at")) or datetime.now(UTC),
            total_issues=int(payload.get("total_issues") or 0),
            open_count=int(payload.get("open_count") or 0),
            closed_count=int(payload.get("closed_count") or 0),
            oldest_issue_date=_from_iso(payload.get("oldest_issue_date")),
            newest_issue_date=_from_iso(payload.get("newest_issue_date")),
            top_tags=[
                TagStatistic(tag=str(item["tag"]), count=int(item["count"]))
                for item in payload.get("top_tags") or []
            ],
            recommendations=[Recommendation.from_dict(item) for item in payload.get("recommendations") or []],
            time_ranges=[
                TimeRangeStat(
                    start_date=_from_iso(item["start_date"]),
                    end_date=_from_iso(item["end_date"]),
                    issues_created=int(item.get("issues_created") or 0),
                    issues_closed=int(item.get("issues_closed") or 0),
                )
                for item in payload.get("time_ranges") or []
            ],
        )


@dataclass(slots=True)
class IssueIngestedEvent:
    """Raw issue delivered to the analysis actor for its repository."""

    issue: IssueRecord


@dataclass(slots=True)
class IssueTagsEvent:
    """Published after tags have been extracted for one issue."""

    repository: str
    issue_id: str
    title: str
    tags: list[str]
    source: str
    extracted_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(slots=True)
class SummaryReportEvent:
    summary: RepositorySummary


@dataclass(slots=True)
class OrchestratorState:
    """Durable per-repository state owned by exactly one analysis actor."""

    issues: dict[str, IssueRecord] = field(default_factory=dict)
    tags: dict[str, list[str]] = field(default_factory=dict)
    summaries: list[RepositorySummary] = field(default_factory=list)

    def upsert_issue(self, issue: IssueRecord) -> bool:
        """Store the issue, returning True when it replaced an existing record."""
        replaced = issue.id in self.issues
        self.issues[issue.id] = issue
        return replaced

    def set_tags(self, issue_id: str, tags: list[str]) -> None:
        if issue_id not in self.issues:
            raise KeyError(f"Cannot tag unknown issue {issue_id}")
        self.tags[issue_id] = list(tags)

    def to_dict(self) -> dict[str, Any]:
        return {
            "issues": {issue_id: issue.to_dict() for issue_id, issue in self.issues.items()},
            "tags": {issue_id: list(tags) for issue_id, tags in self.tags.items()},
            "summaries": [summary.to_dict() for summary in self.summaries],
        }

    @classmethod
    def from_dict(cls, payload: Optional[dict[str, Any]]) -> "OrchestratorState":
        if not payload:
            return cls()
        issues = {
            str(issue_id): IssueRecord.from_dict(raw)
            for issue_id, raw in (payload.get("issues") or {}).items()
        }
        tags = {
            str(issue_id): [str(tag) for tag in raw]
            for issue_id, raw in (payload.get("tags") or {}).items()
            if str(issue_id) in issues
        }
        summaries = [RepositorySummary.from_dict(raw) for raw in payload.get("summaries") or []]
        return cls(issues=issues, tags=tags, summaries=summaries)
