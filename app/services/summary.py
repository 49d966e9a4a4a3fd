"""Repository summary aggregation and plain-text report rendering."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from datetime import UTC, datetime, timedelta
from typing import Callable, Mapping, Optional, Sequence

from dateutil.relativedelta import relativedelta

from app.config.settings import settings
from app.models.analysis import IssueRecord, Recommendation, RepositorySummary, TagStatistic, TimeRangeStat
from app.services.heuristics import recommendations_from_tag_frequency
from app.services.log_redaction import sanitize_log_extra
from app.services.recommendations import RecommendationExtractor

logger = logging.getLogger(__name__)

DAILY_SPAN_DAYS = 30
WEEKLY_SPAN_DAYS = 90
DAILY_BUCKETS = 7
WEEKLY_BUCKETS = 4
MONTHLY_BUCKETS = 6

NO_TAGS_PLACEHOLDER = "No tags found"
NO_RECOMMENDATIONS_PLACEHOLDER = "No recommendations available"


def compute_tag_statistics(tags_by_issue: Mapping[str, Sequence[str]]) -> list[TagStatistic]:
    """Count every tag across all tag sets, most frequent first (ties by name)."""

    counter: Counter[str] = Counter()
    for tags in tags_by_issue.values():
        counter.update(tags)
    return [
        TagStatistic(tag=tag, count=count)
        for tag, count in sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    ]


def compute_time_ranges(issues: Sequence[IssueRecord]) -> list[TimeRangeStat]:
    """Bucket issue activity by day, week or month depending on the history span.

    Buckets are half-open and end at the day after the most recent activity.
    """

    if not issues:
        return []

    created = [issue.created_at for issue in issues]
    closed = [issue.closed_at for issue in issues if issue.closed_at is not None]
    oldest = min(created)
    latest_activity = max(created + closed)
    span = max(created) - oldest

    anchor = (latest_activity.astimezone(UTC) + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)

    boundaries: list[datetime]
    if span < timedelta(days=DAILY_SPAN_DAYS):
        boundaries = [anchor - timedelta(days=offset) for offset in range(DAILY_BUCKETS, -1, -1)]
    elif span < timedelta(days=WEEKLY_SPAN_DAYS):
        boundaries = [anchor - timedelta(weeks=offset) for offset in range(WEEKLY_BUCKETS, -1, -1)]
    else:
        month_end = anchor.replace(day=1) + relativedelta(months=1) if anchor.day != 1 else anchor
        boundaries = [month_end - relativedelta(months=offset) for offset in range(MONTHLY_BUCKETS, -1, -1)]

    ranges: list[TimeRangeStat] = []
    for start, end in zip(boundaries, boundaries[1:]):
        ranges.append(
            TimeRangeStat(
                start_date=start,
                end_date=end,
                issues_created=sum(1 for value in created if start <= value < end),
                issues_closed=sum(1 for value in closed if start <= value < end),
            )
        )
    return ranges


def format_summary_report(summary: RepositorySummary) -> str:
    lines = [
        f"Repository Analysis: {summary.repository}",
        f"Generated: {summary.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"Total Issues: {summary.total_issues} (open: {summary.open_count}, closed: {summary.closed_count})",
    ]
    if summary.oldest_issue_date and summary.newest_issue_date:
        lines.append(
            f"Date Range: {summary.oldest_issue_date:%Y-%m-%d} to {summary.newest_issue_date:%Y-%m-%d}"
        )

    lines.extend(["", "Top Tags:"])
    if summary.top_tags:
        lines.extend(f"  - {item.tag}: {item.count}" for item in summary.top_tags)
    else:
        lines.append(f"  {NO_TAGS_PLACEHOLDER}")

    lines.extend(["", "Recommendations:"])
    if summary.recommendations:
        for index, recommendation in enumerate(summary.recommendations, start=1):
            lines.append(f"  {index}. [{recommendation.priority.value}] {recommendation.title}")
            if recommendation.description and recommendation.description != recommendation.title:
                lines.append(f"     {recommendation.description}")
            if recommendation.supporting_issue_ids:
                refs = ", ".join(f"#{issue_id}" for issue_id in recommendation.supporting_issue_ids)
                lines.append(f"     Supporting issues: {refs}")
    else:
        lines.append(f"  {NO_RECOMMENDATIONS_PLACEHOLDER}")

    if summary.time_ranges:
        lines.extend(["", "Activity:"])
        for item in summary.time_ranges:
            lines.append(
                f"  {item.start_date:%Y-%m-%d} - {item.end_date:%Y-%m-%d}: "
                f"created {item.issues_created}, closed {item.issues_closed}"
            )

    return "\n".join(lines)


class SummaryBuilder:
    """Builds a RepositorySummary from an actor's issues and tag sets."""

    def __init__(
        self,
        recommendation_extractor: Optional[RecommendationExtractor] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        recommendation_timeout_seconds: Optional[float] = None,
        fallback_top_n: int = 3,
    ) -> None:
        self._recommendation_extractor = recommendation_extractor or RecommendationExtractor()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._timeout_seconds = recommendation_timeout_seconds or settings.LLM_RECOMMENDATION_TIMEOUT_SECONDS
        self._fallback_top_n = fallback_top_n

    async def build(
        self,
        repository: str,
        issues: Sequence[IssueRecord],
        tags_by_issue: Mapping[str, Sequence[str]],
    ) -> Optional[RepositorySummary]:
        if not issues:
            return None

        known_ids = {issue.id for issue in issues}
        scoped_tags = {issue_id: tags for issue_id, tags in tags_by_issue.items() if issue_id in known_ids}
        top_tags = compute_tag_statistics(scoped_tags)
        created_dates = [issue.created_at for issue in issues]

        recommendations = await self._recommendations(repository, issues, top_tags, scoped_tags)

        return RepositorySummary(
            repository=repository,
            generated_at=self._clock(),
            total_issues=len(issues),
            open_count=sum(1 for issue in issues if issue.is_open),
            closed_count=sum(1 for issue in issues if issue.is_closed),
            oldest_issue_date=min(created_dates),
            newest_issue_date=max(created_dates),
            top_tags=top_tags,
            recommendations=recommendations,
            time_ranges=compute_time_ranges(issues),
        )

    async def _recommendations(
        self,
        repository: str,
        issues: Sequence[IssueRecord],
        top_tags: Sequence[TagStatistic],
        tags_by_issue: Mapping[str, Sequence[str]],
    ) -> list[Recommendation]:
        tag_counts = [(item.tag, item.count) for item in top_tags]
        try:
            round_result = await asyncio.wait_for(
                self._recommendation_extractor.extract(repository, issues, tag_counts, tags_by_issue),
                timeout=self._timeout_seconds,
            )
            return round_result.recommendations
        except asyncio.TimeoutError:
            logger.warning(
                "Recommendation round timed out, using tag-frequency recommendations",
                extra=sanitize_log_extra(repository=repository, timeout_seconds=self._timeout_seconds),
            )
        except Exception as exc:
            logger.warning(
                "Recommendation round failed, using tag-frequency recommendations",
                extra=sanitize_log_extra(repository=repository, error=str(exc)),
            )

        issues_by_tag: dict[str, list[str]] = defaultdict(list)
        for issue_id, tags in tags_by_issue.items():
            for tag in tags:
                issues_by_tag[tag].append(issue_id)
        return recommendations_from_tag_frequency(
            tag_counts,
            issues_by_tag=issues_by_tag,
            top_n=self._fallback_top_n,
        )
