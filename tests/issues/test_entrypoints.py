from __future__ import annotations

from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient

import app.main as api_module
from app import handler
from app.config.settings import settings
from app.main import app
from app.models.analysis import RepositorySummary, SummaryReportEvent
from app.services.event_channel import summary_stream_id


@pytest.fixture
def api_client(monkeypatch):
    monkeypatch.setattr(settings, "STATE_STORE_BACKEND", "memory")
    with TestClient(app) as client:
        yield client


def test_health_reports_running_runtime(api_client: TestClient) -> None:
    response = api_client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["runtime"] is True


def test_analyze_rejects_malformed_repository(api_client: TestClient) -> None:
    response = api_client.post("/api/analyze", params={"repository": "not-a-repo"})

    assert response.status_code == 400


def test_summary_endpoints_serve_latest_published_summary(api_client: TestClient) -> None:
    assert api_client.get("/api/repositories/octo/demo/summary").status_code == 404

    summary = RepositorySummary(
        repository="octo/demo",
        generated_at=datetime(2026, 3, 20, tzinfo=UTC),
        total_issues=3,
        open_count=2,
        closed_count=1,
    )
    api_client.portal.call(api_module.runtime.channel.publish, summary_stream_id(), SummaryReportEvent(summary=summary))

    body = api_client.get("/api/repositories/Octo/Demo/summary").json()
    assert body["total_issues"] == 3

    report = api_client.get("/api/repositories/octo/demo/report")
    assert report.status_code == 200
    assert "Total Issues: 3 (open: 2, closed: 1)" in report.text

    assert api_client.post("/api/repositories/octo/other/summary/refresh").status_code == 404


def test_handler_requires_repository() -> None:
    assert handler.lambda_handler({}, None)["statusCode"] == 400


def test_handler_returns_analysis_result(monkeypatch) -> None:
    async def fake_analyze(repository, max_issues, state, persist):
        return {"stats": {"repository": repository, "processed": 1, "total": 1}, "summary": None, "report": None}

    monkeypatch.setattr(handler, "_analyze", fake_analyze)

    response = handler.lambda_handler({"repository": "octo/demo", "persist": False}, None)

    assert response["statusCode"] == 200
    assert response["result"]["stats"]["processed"] == 1


def test_handler_reports_failures(monkeypatch) -> None:
    async def broken(repository, max_issues, state, persist):
        raise RuntimeError("boom")

    monkeypatch.setattr(handler, "_analyze", broken)

    response = handler.lambda_handler({"repository": "octo/demo"}, None)

    assert response["statusCode"] == 500
    assert response["error"] == "boom"
