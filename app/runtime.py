"""Wiring of channels, state store, orchestrator and monitors for one process."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional

from app.config.settings import settings
from app.jobs.issue_analysis import run_issue_analysis
from app.orchestrator import AnalysisOrchestrator, SubscriptionHealthMonitor, SummaryReportCollector
from app.services.event_channel import EventChannel, repository_stream_key
from app.services.state_store import StateStore, build_state_store

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AnalysisRuntime:
    channel: EventChannel
    alternate_channel: EventChannel
    state_store: StateStore
    orchestrator: AnalysisOrchestrator
    collector: SummaryReportCollector
    monitor: SubscriptionHealthMonitor

    async def start(self) -> None:
        self.orchestrator.ensure_subscribed()
        self.monitor.start()
        logger.info("Analysis runtime started")

    async def stop(self) -> None:
        await self.monitor.stop()
        await self.orchestrator.stop()
        logger.info("Analysis runtime stopped")

    async def analyze(self, repository: str, *, max_count: Optional[int] = None, state: str = "all") -> dict[str, Any]:
        return await run_issue_analysis(
            repository,
            channel=self.channel,
            orchestrator=self.orchestrator,
            max_count=max_count,
            state=state,
        )

    async def refresh_summary(self, repository: str):
        """Regenerate and publish the summary from the repository's stored state."""
        return await self.orchestrator.summarize(repository_stream_key(repository))


def build_runtime(*, state_store: Optional[StateStore] = None) -> AnalysisRuntime:
    channel = EventChannel("primary")
    alternate_channel = EventChannel("alternate")
    store = state_store or build_state_store(settings.STATE_STORE_BACKEND)

    orchestrator = AnalysisOrchestrator(
        channel=channel,
        alternate_channel=alternate_channel,
        state_store=store,
    )
    collector = SummaryReportCollector()
    collector.attach(channel)
    collector.attach(alternate_channel)

    return AnalysisRuntime(
        channel=channel,
        alternate_channel=alternate_channel,
        state_store=store,
        orchestrator=orchestrator,
        collector=collector,
        monitor=SubscriptionHealthMonitor(orchestrator),
    )
