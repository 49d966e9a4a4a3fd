"""Fetch-and-publish entrypoint for one repository analysis run."""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Any, Callable, Optional

from app.config.settings import settings
from app.crawlers.issues.client import GitHubIssueClient
from app.crawlers.issues.retrieval import IssueRetrievalEngine
from app.models.analysis import IssueIngestedEvent
from app.orchestrator import AnalysisOrchestrator
from app.services.event_channel import (
    ISSUE_INGESTED_NAMESPACE,
    EventChannel,
    PublishError,
    StreamId,
    repository_stream_key,
)
from app.services.log_redaction import sanitize_log_extra

logger = logging.getLogger(__name__)


def parse_repository(raw: str) -> tuple[str, str]:
    """Split `owner/repo` (a full GitHub URL is accepted too)."""
    text = (raw or "").strip().rstrip("/")
    if text.endswith(".git"):
        text = text[: -len(".git")]
    if "github.com/" in text:
        text = text.split("github.com/", 1)[1]

    parts = [part for part in text.split("/") if part]
    if len(parts) != 2:
        raise ValueError(f"Expected repository as 'owner/repo', got {raw!r}")
    return parts[0], parts[1]


async def run_issue_analysis(
    repository: str,
    *,
    channel: EventChannel,
    orchestrator: Optional[AnalysisOrchestrator] = None,
    max_count: Optional[int] = None,
    state: str = "all",
    engine: Optional[IssueRetrievalEngine] = None,
    client_factory: Callable[[], Any] = GitHubIssueClient,
) -> dict[str, Any]:
    """Retrieve issues and publish one ingestion event per issue.

    When an orchestrator is given, waits for its actors to finish processing.
    Returns aggregate statistics only.
    """

    owner, repo = parse_repository(repository)
    full_name = f"{owner}/{repo}"
    requested = max_count or settings.ANALYSIS_DEFAULT_MAX_ISSUES
    stats: dict[str, Any] = {
        "repository": full_name,
        "state": state,
        "requested": requested,
        "started_at": datetime.now(UTC).isoformat(),
        "total": 0,
        "processed": 0,
        "failed": 0,
        "tiers": [],
        "errors": [],
    }

    if orchestrator is not None:
        orchestrator.ensure_subscribed()

    if engine is not None:
        retrieval = await engine.retrieve(owner, repo, max_count=requested, state=state)
    else:
        async with client_factory() as client:
            retrieval = await IssueRetrievalEngine(client).retrieve(owner, repo, max_count=requested, state=state)

    stats["total"] = len(retrieval.issues)
    stats["tiers"] = list(retrieval.tiers)
    stats["errors"].extend(retrieval.failure_reasons)

    stream_id = StreamId(ISSUE_INGESTED_NAMESPACE, repository_stream_key(full_name))
    for issue in retrieval.issues:
        try:
            await channel.publish(stream_id, IssueIngestedEvent(issue=issue))
            stats["processed"] += 1
        except PublishError as exc:
            stats["failed"] += 1
            stats["errors"].append(f"publish #{issue.id}: {exc}")
            logger.warning(
                "Failed to publish ingested issue",
                extra=sanitize_log_extra(repository=full_name, issue_id=issue.id, error=str(exc)),
            )

    if orchestrator is not None:
        await orchestrator.wait_idle()

    stats["finished_at"] = datetime.now(UTC).isoformat()
    logger.info(
        "Issue analysis run finished: processed %s of %s issues",
        stats["processed"],
        stats["total"],
        extra=sanitize_log_extra(repository=full_name, failed=stats["failed"], tiers=stats["tiers"]),
    )
    return stats
