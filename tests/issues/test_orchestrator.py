from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest

from app.config.settings import settings
from app.models.analysis import IssueIngestedEvent, IssueRecord, IssueTagsEvent, OrchestratorState, RepositorySummary
from app.orchestrator import (
    ActorStatus,
    AnalysisOrchestrator,
    RepositoryAnalysisActor,
    SubscriptionHealthMonitor,
    SummaryPolicy,
    SummaryReportCollector,
)
from app.runtime import build_runtime
from app.services.event_channel import (
    ANALYSIS_RESULTS_NAMESPACE,
    ISSUE_INGESTED_NAMESPACE,
    EventChannel,
    StreamId,
    repository_stream_key,
)
from app.services.llm.composite import CompositeProvider
from app.services.recommendations import RecommendationExtractor
from app.services.state_store import InMemoryStateStore
from app.services.summary import SummaryBuilder
from app.services.tagging import SOURCE_LLM, TagExtractionResult

GENERATED_AT = datetime(2026, 3, 20, tzinfo=UTC)
REPO_KEY = repository_stream_key("octo/demo")
INGEST_STREAM = StreamId(ISSUE_INGESTED_NAMESPACE, REPO_KEY)


class FakeTagExtractor:
    def __init__(self, failing_ids: tuple[str, ...] = ()) -> None:
        self.failing_ids = failing_ids
        self.seen: list[str] = []

    async def extract(self, issue: IssueRecord) -> TagExtractionResult:
        self.seen.append(issue.id)
        if issue.id in self.failing_ids:
            raise RuntimeError("extractor exploded")
        return TagExtractionResult(tags=[issue.state, "bug"], source=SOURCE_LLM, provider="fake")


def _issue(number: int, *, state: str = "open", title: str = "Crash on save") -> IssueRecord:
    return IssueRecord(
        id=str(number),
        title=title,
        repository="octo/demo",
        created_at=datetime(2026, 3, number, tzinfo=UTC),
        state=state,
    )


def _summary_builder() -> SummaryBuilder:
    return SummaryBuilder(RecommendationExtractor(CompositeProvider([])), clock=lambda: GENERATED_AT)


def _orchestrator(channel: EventChannel, **kwargs: Any) -> AnalysisOrchestrator:
    kwargs.setdefault("state_store", InMemoryStateStore())
    kwargs.setdefault("tag_extractor", FakeTagExtractor())
    kwargs.setdefault("summary_builder", _summary_builder())
    kwargs.setdefault("summary_policy", SummaryPolicy(every_n=1))
    return AnalysisOrchestrator(channel=channel, **kwargs)


def _actor(primary: EventChannel, alternate: EventChannel | None = None, **kwargs: Any) -> RepositoryAnalysisActor:
    return RepositoryAnalysisActor(
        REPO_KEY,
        state_store=InMemoryStateStore(),
        tag_extractor=FakeTagExtractor(),
        summary_builder=_summary_builder(),
        primary_channel=primary,
        alternate_channel=alternate,
        summary_policy=SummaryPolicy(every_n=1),
        **kwargs,
    )


def test_summary_policy_cadence() -> None:
    every_third = SummaryPolicy(every_n=3)
    assert [every_third.should_summarize(count) for count in range(0, 7)] == [
        False,
        True,
        False,
        True,
        False,
        False,
        True,
    ]

    no_first = SummaryPolicy(every_n=2, include_first=False)
    assert not no_first.should_summarize(1)
    assert no_first.should_summarize(2)

    first_only = SummaryPolicy(every_n=0)
    assert first_only.should_summarize(1)
    assert not first_only.should_summarize(5)


@pytest.mark.asyncio
async def test_ingested_issues_are_tagged_summarized_and_persisted() -> None:
    channel = EventChannel()
    store = InMemoryStateStore()
    collector = SummaryReportCollector()
    collector.attach(channel)
    tag_events: list[IssueTagsEvent] = []

    async def capture(stream_id: StreamId, event: Any) -> None:
        if isinstance(event, IssueTagsEvent):
            tag_events.append(event)

    channel.subscribe(ANALYSIS_RESULTS_NAMESPACE, capture)
    orchestrator = _orchestrator(channel, state_store=store)
    assert orchestrator.ensure_subscribed() is True

    await channel.publish(INGEST_STREAM, IssueIngestedEvent(issue=_issue(1)))
    await channel.publish(INGEST_STREAM, IssueIngestedEvent(issue=_issue(2, state="closed")))
    await orchestrator.wait_idle()

    actor = orchestrator.actors[REPO_KEY]
    assert actor.stats == {"processed": 2, "failed": 0, "summaries": 2}
    assert actor.status == ActorStatus.IDLE
    assert actor.repository == "octo/demo"
    assert [event.issue_id for event in tag_events] == ["1", "2"]
    assert tag_events[1].tags == ["closed", "bug"]

    summary = collector.latest("Octo/Demo")
    assert summary is not None
    assert summary.total_issues == 2
    assert summary.closed_count == 1
    assert collector.repositories() == ["octo/demo"]

    snapshot = await store.load(REPO_KEY)
    assert set(snapshot.issues) == {"1", "2"}
    assert snapshot.tags["1"] == ["open", "bug"]
    assert snapshot.summaries == []

    await orchestrator.stop()
    assert not actor.is_running


@pytest.mark.asyncio
async def test_redelivered_issue_replaces_existing_record() -> None:
    channel = EventChannel()
    orchestrator = _orchestrator(channel)
    orchestrator.ensure_subscribed()

    await channel.publish(INGEST_STREAM, IssueIngestedEvent(issue=_issue(1)))
    await channel.publish(INGEST_STREAM, IssueIngestedEvent(issue=_issue(1, state="closed")))
    await orchestrator.wait_idle()

    actor = orchestrator.actors[REPO_KEY]
    assert list(actor.state.issues) == ["1"]
    assert actor.state.issues["1"].state == "closed"
    assert actor.state.tags["1"] == ["closed", "bug"]
    await orchestrator.stop()


@pytest.mark.asyncio
async def test_failed_turn_does_not_stop_later_issues() -> None:
    channel = EventChannel()
    extractor = FakeTagExtractor(failing_ids=("1",))
    orchestrator = _orchestrator(channel, tag_extractor=extractor)
    orchestrator.ensure_subscribed()

    await channel.publish(INGEST_STREAM, IssueIngestedEvent(issue=_issue(1)))
    await channel.publish(INGEST_STREAM, IssueIngestedEvent(issue=_issue(2)))
    await orchestrator.wait_idle()

    actor = orchestrator.actors[REPO_KEY]
    assert extractor.seen == ["1", "2"]
    assert actor.stats["failed"] == 1
    assert actor.stats["processed"] == 1
    assert set(actor.state.tags) == {"2"}
    await orchestrator.stop()


@pytest.mark.asyncio
async def test_unexpected_events_are_ignored() -> None:
    channel = EventChannel()
    orchestrator = _orchestrator(channel)
    orchestrator.ensure_subscribed()

    await channel.publish(INGEST_STREAM, {"not": "an issue"})

    assert orchestrator.actors == {}


@pytest.mark.asyncio
async def test_summary_uses_alternate_channel_when_primary_is_closed() -> None:
    primary = EventChannel("primary")
    alternate = EventChannel("alternate")
    collector = SummaryReportCollector()
    collector.attach(alternate)
    primary.close()
    actor = _actor(primary, alternate)

    await actor.handle(IssueIngestedEvent(issue=_issue(3)))

    assert collector.latest("octo/demo") is not None
    assert actor.state.summaries == []
    assert actor.stats["processed"] == 1


@pytest.mark.asyncio
async def test_summary_is_retained_when_no_channel_accepts_it() -> None:
    primary = EventChannel("primary")
    alternate = EventChannel("alternate")
    primary.close()
    alternate.close()
    actor = _actor(primary, alternate)

    await actor.handle(IssueIngestedEvent(issue=_issue(4)))

    assert actor.stats["processed"] == 1
    assert len(actor.state.summaries) == 1
    assert actor.state.summaries[0].total_issues == 1


@pytest.mark.asyncio
async def test_actor_restores_state_from_store() -> None:
    store = InMemoryStateStore()
    first = _orchestrator(EventChannel(), state_store=store)
    first.ensure_subscribed()
    await first.channel.publish(INGEST_STREAM, IssueIngestedEvent(issue=_issue(5)))
    await first.wait_idle()
    await first.stop()

    second = _orchestrator(EventChannel(), state_store=store)
    actor = await second.get_actor(REPO_KEY)

    assert set(actor.state.issues) == {"5"}
    assert actor.repository == "octo/demo"
    summary = await second.summarize(REPO_KEY)
    assert summary is not None and summary.total_issues == 1
    await second.stop()


@pytest.mark.asyncio
async def test_ensure_subscribed_is_idempotent() -> None:
    channel = EventChannel()
    orchestrator = _orchestrator(channel)

    assert orchestrator.ensure_subscribed() is True
    assert orchestrator.ensure_subscribed() is False
    assert channel.subscriber_count(ISSUE_INGESTED_NAMESPACE) == 1
    assert orchestrator.subscribe_count == 1


@pytest.mark.asyncio
async def test_health_check_restores_lost_subscription() -> None:
    channel = EventChannel()
    orchestrator = _orchestrator(channel)
    monitor = SubscriptionHealthMonitor(orchestrator, initial_delay_seconds=0, interval_seconds=0)
    orchestrator.ensure_subscribed()

    assert monitor.check_once() is False

    orchestrator.subscription.cancel()
    assert channel.subscriber_count(ISSUE_INGESTED_NAMESPACE) == 0

    assert monitor.check_once() is True
    assert channel.subscriber_count(ISSUE_INGESTED_NAMESPACE) == 1
    assert monitor.checks == 2
    assert monitor.resubscriptions == 1


@pytest.mark.asyncio
async def test_closed_channel_cannot_be_resubscribed() -> None:
    channel = EventChannel()
    orchestrator = _orchestrator(channel)
    channel.close()

    assert orchestrator.ensure_subscribed() is False
    assert SubscriptionHealthMonitor(orchestrator).check_once() is False


@pytest.mark.asyncio
async def test_monitor_loop_waits_initial_delay_then_checks_periodically() -> None:
    channel = EventChannel()
    orchestrator = _orchestrator(channel)
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)
        await asyncio.sleep(0)

    monitor = SubscriptionHealthMonitor(orchestrator, initial_delay_seconds=5, interval_seconds=30, sleep=fake_sleep)
    monitor.start()
    for _ in range(10):
        await asyncio.sleep(0)
    await monitor.stop()

    assert delays[0] == 5
    assert set(delays[1:]) == {30}
    assert monitor.checks >= 1
    assert monitor.resubscriptions == 1
    assert channel.subscriber_count(ISSUE_INGESTED_NAMESPACE) == 1


class SlowSummaryBuilder:
    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0
        self.issue_counts: list[int] = []

    async def build(self, repository: str, issues: list[IssueRecord], tags_by_issue: dict) -> RepositorySummary | None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            self.issue_counts.append(len(issues))
            if not issues:
                return None
            return RepositorySummary(
                repository=repository,
                generated_at=GENERATED_AT,
                total_issues=len(issues),
                open_count=len(issues),
                closed_count=0,
            )
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_on_demand_summary_waits_its_turn_in_the_mailbox() -> None:
    channel = EventChannel()
    builder = SlowSummaryBuilder()
    orchestrator = _orchestrator(channel, summary_builder=builder)
    actor = await orchestrator.get_actor(REPO_KEY)

    await actor.tell(IssueIngestedEvent(issue=_issue(1)))
    summary_task = asyncio.create_task(orchestrator.summarize(REPO_KEY))
    for _ in range(3):
        await asyncio.sleep(0)
    await actor.tell(IssueIngestedEvent(issue=_issue(2)))

    summary = await summary_task
    await orchestrator.wait_idle()

    assert builder.max_active == 1
    assert summary is not None and summary.total_issues == 1
    assert builder.issue_counts == [1, 1, 2]
    assert actor.stats["processed"] == 2
    await orchestrator.stop()


@pytest.mark.asyncio
async def test_pending_summary_request_is_cancelled_on_stop() -> None:
    builder = SlowSummaryBuilder()
    orchestrator = _orchestrator(EventChannel(), summary_builder=builder)
    actor = await orchestrator.get_actor(REPO_KEY)

    await actor.tell(IssueIngestedEvent(issue=_issue(1)))
    summary_task = asyncio.create_task(actor.summarize_now())
    for _ in range(3):
        await asyncio.sleep(0)
    await actor.stop()

    with pytest.raises(asyncio.CancelledError):
        await summary_task


@pytest.mark.asyncio
async def test_retained_summaries_are_capped() -> None:
    primary = EventChannel("primary")
    alternate = EventChannel("alternate")
    primary.close()
    alternate.close()
    actor = _actor(primary, alternate, retained_summary_limit=2)

    for number in (1, 2, 3):
        await actor.handle(IssueIngestedEvent(issue=_issue(number)))

    assert actor.stats["summaries"] == 3
    assert [summary.total_issues for summary in actor.state.summaries] == [2, 3]


@pytest.mark.asyncio
async def test_refresh_summary_replays_state_persisted_before_restart(monkeypatch) -> None:
    monkeypatch.setattr(settings, "USE_FALLBACK_LLM", True)
    store = InMemoryStateStore()
    saved = OrchestratorState()
    saved.upsert_issue(_issue(6))
    saved.set_tags("6", ["bug"])
    await store.save(REPO_KEY, saved)

    runtime = build_runtime(state_store=store)
    await runtime.start()
    try:
        summary = await runtime.refresh_summary("Octo/Demo")

        assert summary is not None
        assert summary.total_issues == 1
        assert summary.repository == "octo/demo"
        assert runtime.collector.latest("octo/demo") is not None
        assert await runtime.refresh_summary("octo/unknown") is None
    finally:
        await runtime.stop()
