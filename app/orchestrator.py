"""Per-repository analysis actors, their registry and subscription self-healing."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from app.config.settings import settings
from app.models.analysis import (
    IssueIngestedEvent,
    IssueTagsEvent,
    OrchestratorState,
    RepositorySummary,
    SummaryReportEvent,
)
from app.services.event_channel import (
    ANALYSIS_RESULTS_NAMESPACE,
    ISSUE_INGESTED_NAMESPACE,
    SUMMARY_STREAM_KEY,
    EventChannel,
    PublishError,
    StreamId,
    Subscription,
    summary_stream_id,
)
from app.services.log_redaction import sanitize_log_extra
from app.services.state_store import InMemoryStateStore, StateStore
from app.services.summary import SummaryBuilder
from app.services.tagging import TagExtractor

logger = logging.getLogger(__name__)


class ActorStatus(str, enum.Enum):
    IDLE = "idle"
    INGESTING = "ingesting"
    EXTRACTING = "extracting"
    SUMMARIZING = "summarizing"


@dataclass(slots=True)
class SummaryPolicy:
    """Regenerate the summary on every Nth stored issue, and optionally on the first."""

    every_n: int = 1
    include_first: bool = True

    def should_summarize(self, issue_count: int) -> bool:
        if issue_count <= 0:
            return False
        if self.include_first and issue_count == 1:
            return True
        return self.every_n > 0 and issue_count % self.every_n == 0

    @classmethod
    def from_settings(cls) -> "SummaryPolicy":
        return cls(every_n=settings.ANALYSIS_SUMMARY_EVERY_N_ISSUES)


@dataclass(slots=True)
class _SummaryRequest:
    result: asyncio.Future


class RepositoryAnalysisActor:
    """Owns the state of one repository key and processes its events one at a time."""

    def __init__(
        self,
        key: str,
        *,
        state_store: StateStore,
        tag_extractor: TagExtractor,
        summary_builder: SummaryBuilder,
        primary_channel: EventChannel,
        alternate_channel: Optional[EventChannel] = None,
        summary_policy: Optional[SummaryPolicy] = None,
        retained_summary_limit: Optional[int] = None,
    ) -> None:
        self.key = key
        self.repository: Optional[str] = None
        self._state_store = state_store
        self._tag_extractor = tag_extractor
        self._summary_builder = summary_builder
        self._primary_channel = primary_channel
        self._alternate_channel = alternate_channel
        self._summary_policy = summary_policy or SummaryPolicy.from_settings()
        self._state = OrchestratorState()
        self._retained_summary_limit = (
            settings.ANALYSIS_MAX_RETAINED_SUMMARIES if retained_summary_limit is None else retained_summary_limit
        )
        self._mailbox: asyncio.Queue[IssueIngestedEvent | _SummaryRequest] = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self.status = ActorStatus.IDLE
        self.stats = {"processed": 0, "failed": 0, "summaries": 0}

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._state = await self._state_store.load(self.key)
        if self.repository is None and self._state.issues:
            self.repository = next(iter(self._state.issues.values())).repository
        self._worker = asyncio.create_task(self._drain_mailbox(), name=f"analysis-actor-{self.key}")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        while not self._mailbox.empty():
            message = self._mailbox.get_nowait()
            if isinstance(message, _SummaryRequest) and not message.result.done():
                message.result.cancel()
            self._mailbox.task_done()

    async def tell(self, event: IssueIngestedEvent) -> None:
        await self._mailbox.put(event)

    async def wait_idle(self) -> None:
        await self._mailbox.join()

    async def _drain_mailbox(self) -> None:
        while True:
            message = await self._mailbox.get()
            try:
                if isinstance(message, _SummaryRequest):
                    await self._answer_summary_request(message)
                else:
                    await self.handle(message)
            finally:
                self._mailbox.task_done()

    async def handle(self, event: IssueIngestedEvent) -> None:
        """Run one ingest turn. Failures are logged and counted, never raised."""

        issue = event.issue
        try:
            self.repository = self.repository or issue.repository

            self.status = ActorStatus.INGESTING
            replaced = self._state.upsert_issue(issue)

            self.status = ActorStatus.EXTRACTING
            extraction = await self._tag_extractor.extract(issue)
            self._state.set_tags(issue.id, extraction.tags)
            await self._publish(
                StreamId(ANALYSIS_RESULTS_NAMESPACE, self.key),
                IssueTagsEvent(
                    repository=issue.repository,
                    issue_id=issue.id,
                    title=issue.title,
                    tags=list(extraction.tags),
                    source=extraction.source,
                ),
            )

            if self._summary_policy.should_summarize(len(self._state.issues)):
                self.status = ActorStatus.SUMMARIZING
                await self._summarize()

            self.stats["processed"] += 1
            logger.info(
                "Issue analyzed",
                extra=sanitize_log_extra(
                    repository=issue.repository,
                    issue_id=issue.id,
                    replaced=replaced,
                    tag_source=extraction.source,
                    tag_count=len(extraction.tags),
                ),
            )
        except Exception as exc:
            self.stats["failed"] += 1
            logger.exception(
                "Issue analysis turn failed",
                extra=sanitize_log_extra(repository=issue.repository, issue_id=issue.id, error=str(exc)),
            )
        finally:
            await self._save_snapshot()
            self.status = ActorStatus.IDLE

    async def summarize_now(self) -> Optional[RepositorySummary]:
        """Build and publish a summary outside of the policy cadence.

        On a running actor the request is queued behind pending events, so the
        summary sees every issue told before it.
        """
        if not self.is_running:
            return await self._summary_turn()
        request = _SummaryRequest(asyncio.get_running_loop().create_future())
        await self._mailbox.put(request)
        return await request.result

    async def _answer_summary_request(self, request: _SummaryRequest) -> None:
        try:
            summary = await self._summary_turn()
        except Exception as exc:
            if not request.result.done():
                request.result.set_exception(exc)
            return
        if not request.result.done():
            request.result.set_result(summary)

    async def _summary_turn(self) -> Optional[RepositorySummary]:
        self.status = ActorStatus.SUMMARIZING
        try:
            summary = await self._summarize()
        finally:
            self.status = ActorStatus.IDLE
        if summary is not None:
            await self._save_snapshot()
        return summary

    async def _summarize(self) -> Optional[RepositorySummary]:
        repository = self.repository or self.key
        summary = await self._summary_builder.build(
            repository,
            list(self._state.issues.values()),
            self._state.tags,
        )
        if summary is None:
            return None

        self.stats["summaries"] += 1
        published = await self._publish(summary_stream_id(), SummaryReportEvent(summary=summary))
        if not published:
            self._state.summaries.append(summary)
            overflow = len(self._state.summaries) - max(self._retained_summary_limit, 0)
            if overflow > 0:
                del self._state.summaries[:overflow]
            logger.warning(
                "Summary retained in actor state because no channel accepted it",
                extra=sanitize_log_extra(repository=repository, retained=len(self._state.summaries)),
            )
        return summary

    async def _publish(self, stream_id: StreamId, event: Any) -> bool:
        channels = [self._primary_channel]
        if self._alternate_channel is not None:
            channels.append(self._alternate_channel)

        for channel in channels:
            try:
                await channel.publish(stream_id, event)
                return True
            except PublishError as exc:
                logger.warning(
                    "Publish failed, trying next channel",
                    extra=sanitize_log_extra(channel=channel.name, stream=str(stream_id), error=str(exc)),
                )
        return False

    async def _save_snapshot(self) -> None:
        try:
            await self._state_store.save(self.key, self._state)
        except Exception as exc:
            logger.warning(
                "Failed to persist analysis state snapshot",
                extra=sanitize_log_extra(key=self.key, error=str(exc)),
            )


class AnalysisOrchestrator:
    """Routes ingested issues to one actor per repository key."""

    def __init__(
        self,
        *,
        channel: EventChannel,
        alternate_channel: Optional[EventChannel] = None,
        state_store: Optional[StateStore] = None,
        tag_extractor: Optional[TagExtractor] = None,
        summary_builder: Optional[SummaryBuilder] = None,
        summary_policy: Optional[SummaryPolicy] = None,
        actor_factory: Optional[Callable[[str], RepositoryAnalysisActor]] = None,
    ) -> None:
        self._channel = channel
        self._alternate_channel = alternate_channel
        self._state_store = state_store or InMemoryStateStore()
        self._tag_extractor = tag_extractor
        self._summary_builder = summary_builder
        self._summary_policy = summary_policy or SummaryPolicy.from_settings()
        self._actor_factory = actor_factory or self._default_actor
        self._actors: dict[str, RepositoryAnalysisActor] = {}
        self._actor_lock = asyncio.Lock()
        self._subscription: Optional[Subscription] = None
        self.subscribe_count = 0

    @property
    def actors(self) -> dict[str, RepositoryAnalysisActor]:
        return dict(self._actors)

    @property
    def channel(self) -> EventChannel:
        return self._channel

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    def ensure_subscribed(self) -> bool:
        """Subscribe to the ingestion namespace unless a live subscription exists.

        Returns True when a new subscription was created.
        """

        if self._subscription is not None and self._channel.is_subscribed(self._subscription):
            return False
        if self._channel.is_closed:
            logger.warning(
                "Cannot subscribe to closed channel",
                extra=sanitize_log_extra(channel=self._channel.name, namespace=ISSUE_INGESTED_NAMESPACE),
            )
            return False

        self._subscription = self._channel.subscribe(ISSUE_INGESTED_NAMESPACE, self._on_issue_ingested)
        self.subscribe_count += 1
        logger.info(
            "Subscribed to issue ingestion stream",
            extra=sanitize_log_extra(channel=self._channel.name, attempt=self.subscribe_count),
        )
        return True

    async def get_actor(self, key: str) -> RepositoryAnalysisActor:
        async with self._actor_lock:
            actor = self._actors.get(key)
            if actor is None:
                actor = self._actor_factory(key)
                self._actors[key] = actor
            if not actor.is_running:
                await actor.start()
            return actor

    async def _on_issue_ingested(self, stream_id: StreamId, event: Any) -> None:
        if not isinstance(event, IssueIngestedEvent):
            logger.warning(
                "Ignoring unexpected event on ingestion stream",
                extra=sanitize_log_extra(stream=str(stream_id), event_type=type(event).__name__),
            )
            return
        actor = await self.get_actor(stream_id.key)
        await actor.tell(event)

    async def wait_idle(self) -> None:
        for actor in list(self._actors.values()):
            await actor.wait_idle()

    async def summarize(self, key: str) -> Optional[RepositorySummary]:
        actor = await self.get_actor(key)
        return await actor.summarize_now()

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        for actor in list(self._actors.values()):
            await actor.stop()

    def _default_actor(self, key: str) -> RepositoryAnalysisActor:
        if self._tag_extractor is None:
            self._tag_extractor = TagExtractor()
        if self._summary_builder is None:
            self._summary_builder = SummaryBuilder()
        return RepositoryAnalysisActor(
            key,
            state_store=self._state_store,
            tag_extractor=self._tag_extractor,
            summary_builder=self._summary_builder,
            primary_channel=self._channel,
            alternate_channel=self._alternate_channel,
            summary_policy=self._summary_policy,
        )


class SubscriptionHealthMonitor:
    """Periodically re-establishes the orchestrator's ingestion subscription."""

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        *,
        initial_delay_seconds: Optional[float] = None,
        interval_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._orchestrator = orchestrator
        self._initial_delay_seconds = (
            settings.SUBSCRIPTION_CHECK_INITIAL_DELAY_SECONDS
            if initial_delay_seconds is None
            else initial_delay_seconds
        )
        self._interval_seconds = (
            settings.SUBSCRIPTION_CHECK_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self._sleep = sleep
        self._task: Optional[asyncio.Task[None]] = None
        self.checks = 0
        self.resubscriptions = 0

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="subscription-health-monitor")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def check_once(self) -> bool:
        self.checks += 1
        try:
            resubscribed = self._orchestrator.ensure_subscribed()
        except Exception as exc:
            logger.warning("Subscription health check failed", extra=sanitize_log_extra(error=str(exc)))
            return False
        if resubscribed:
            self.resubscriptions += 1
        return resubscribed

    async def _run(self) -> None:
        await self._sleep(self._initial_delay_seconds)
        while True:
            self.check_once()
            await self._sleep(self._interval_seconds)


class SummaryReportCollector:
    """Keeps the most recent summary published for each repository."""

    def __init__(self) -> None:
        self._latest: dict[str, RepositorySummary] = {}
        self._subscriptions: list[Subscription] = []

    def attach(self, channel: EventChannel) -> Subscription:
        subscription = channel.subscribe(ANALYSIS_RESULTS_NAMESPACE, self._on_result)
        self._subscriptions.append(subscription)
        return subscription

    def latest(self, repository: str) -> Optional[RepositorySummary]:
        return self._latest.get(repository.strip().lower())

    def repositories(self) -> list[str]:
        return sorted(self._latest)

    async def _on_result(self, stream_id: StreamId, event: Any) -> None:
        if stream_id.key != SUMMARY_STREAM_KEY or not isinstance(event, SummaryReportEvent):
            return
        self._latest[event.summary.repository.strip().lower()] = event.summary
