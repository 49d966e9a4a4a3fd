from __future__ import annotations

from datetime import UTC, datetime

import pytest

from app.crawlers.issues.retrieval import RetrievalResult
from app.jobs.issue_analysis import parse_repository, run_issue_analysis
from app.models.analysis import IssueRecord
from app.orchestrator import AnalysisOrchestrator, SummaryPolicy, SummaryReportCollector
from app.services.event_channel import EventChannel
from app.services.llm.composite import CompositeProvider
from app.services.recommendations import RecommendationExtractor
from app.services.state_store import InMemoryStateStore
from app.services.summary import SummaryBuilder
from app.services.tagging import TagExtractor


class FakeEngine:
    def __init__(self, issues: list[IssueRecord], *, failure_reasons: list[str] | None = None) -> None:
        self.issues = issues
        self.failure_reasons = failure_reasons or []
        self.calls: list[dict] = []

    async def retrieve(self, owner: str, repo: str, *, max_count: int, state: str) -> RetrievalResult:
        self.calls.append({"owner": owner, "repo": repo, "max_count": max_count, "state": state})
        return RetrievalResult(
            issues=list(self.issues),
            tiers=["list"],
            failure_reasons=list(self.failure_reasons),
        )


class FakeClient:
    def __init__(self) -> None:
        self.closed = False

    async def __aenter__(self) -> "FakeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.closed = True


def _issue(number: int, title: str, state: str = "open") -> IssueRecord:
    return IssueRecord(
        id=str(number),
        title=title,
        repository="octo/demo",
        created_at=datetime(2026, 3, number, tzinfo=UTC),
        state=state,
        labels=["bug"] if "crash" in title.lower() else [],
    )


def _orchestrator(channel: EventChannel) -> AnalysisOrchestrator:
    offline = CompositeProvider([])
    return AnalysisOrchestrator(
        channel=channel,
        state_store=InMemoryStateStore(),
        tag_extractor=TagExtractor(offline),
        summary_builder=SummaryBuilder(RecommendationExtractor(offline)),
        summary_policy=SummaryPolicy(every_n=1),
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("octo/demo", ("octo", "demo")),
        ("https://github.com/octo/demo", ("octo", "demo")),
        ("https://github.com/octo/demo.git", ("octo", "demo")),
        (" octo/demo/ ", ("octo", "demo")),
    ],
)
def test_parse_repository_accepts_common_forms(raw: str, expected: tuple[str, str]) -> None:
    assert parse_repository(raw) == expected


@pytest.mark.parametrize("raw", ["", "octo", "octo/demo/issues"])
def test_parse_repository_rejects_other_shapes(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_repository(raw)


@pytest.mark.asyncio
async def test_run_publishes_every_issue_and_waits_for_analysis() -> None:
    channel = EventChannel()
    collector = SummaryReportCollector()
    collector.attach(channel)
    orchestrator = _orchestrator(channel)
    engine = FakeEngine(
        [_issue(1, "App crash on save"), _issue(2, "Docs typo in README", state="closed")],
        failure_reasons=["search(page=1): boom"],
    )

    stats = await run_issue_analysis(
        "https://github.com/octo/demo",
        channel=channel,
        orchestrator=orchestrator,
        max_count=5,
        state="all",
        engine=engine,
    )

    assert engine.calls == [{"owner": "octo", "repo": "demo", "max_count": 5, "state": "all"}]
    assert stats["repository"] == "octo/demo"
    assert stats["total"] == 2
    assert stats["processed"] == 2
    assert stats["failed"] == 0
    assert stats["tiers"] == ["list"]
    assert stats["errors"] == ["search(page=1): boom"]
    assert "finished_at" in stats

    summary = collector.latest("octo/demo")
    assert summary is not None
    assert summary.total_issues == 2
    assert {item.tag for item in summary.top_tags} >= {"open", "closed", "bug", "documentation"}
    assert summary.recommendations[0].title == "Fix reported bugs"
    await orchestrator.stop()


@pytest.mark.asyncio
async def test_run_counts_publish_failures() -> None:
    channel = EventChannel()
    channel.close()
    engine = FakeEngine([_issue(1, "App crash on save")])

    stats = await run_issue_analysis("octo/demo", channel=channel, engine=engine)

    assert stats["requested"] == 10
    assert stats["processed"] == 0
    assert stats["failed"] == 1
    assert stats["errors"][0].startswith("publish #1")


@pytest.mark.asyncio
async def test_run_opens_and_closes_client_when_no_engine_given(monkeypatch) -> None:
    created: list[FakeClient] = []
    engine = FakeEngine([])

    def factory() -> FakeClient:
        client = FakeClient()
        created.append(client)
        return client

    class EngineStub:
        def __init__(self, client) -> None:
            assert client is created[0]

        async def retrieve(self, owner, repo, *, max_count, state):
            return await engine.retrieve(owner, repo, max_count=max_count, state=state)

    monkeypatch.setattr("app.jobs.issue_analysis.IssueRetrievalEngine", EngineStub)

    stats = await run_issue_analysis("octo/demo", channel=EventChannel(), client_factory=factory, state="open")

    assert stats["total"] == 0
    assert created[0].closed is True
    assert engine.calls[0]["state"] == "open"
