from __future__ import annotations

from datetime import UTC, datetime

import pytest

from app.models.analysis import IssueRecord
from app.services.heuristics import normalize_tag, rule_based_tags
from app.services.llm.composite import CompositeProvider
from app.services.tagging import (
    SOURCE_LLM,
    SOURCE_OFFLINE,
    SOURCE_RULES,
    TagExtractor,
    build_tag_prompt,
    parse_tags,
)


class StaticProvider:
    def __init__(self, name: str, text: str = "", error: Exception | None = None) -> None:
        self.name = name
        self._text = text
        self._error = error

    async def complete(self, prompt: str) -> str:
        if self._error is not None:
            raise self._error
        return self._text


class ExplodingChain:
    async def complete_with_details(self, prompt: str, *, timeout_seconds=None):
        raise RuntimeError("chain unavailable")


def _issue(**overrides) -> IssueRecord:
    values = {
        "id": "42",
        "title": "Crash on login screen",
        "repository": "octo/demo",
        "created_at": datetime(2026, 3, 1, tzinfo=UTC),
        "state": "open",
        "description": "The app raises an exception after entering the password",
        "labels": ["needs info"],
    }
    values.update(overrides)
    return IssueRecord(**values)


def test_parse_tags_handles_comma_separated_output() -> None:
    assert parse_tags("bug, UI Bug, Needs Triage") == ["bug", "ui-bug", "needs-triage"]


def test_parse_tags_strips_markdown_lists_and_preamble() -> None:
    text = "Tags:\n- **Bug**\n- *Performance*\n1. memory leak\n2. Bug"

    assert parse_tags(text) == ["bug", "performance", "memory-leak"]


def test_parse_tags_drops_sentences_and_caps_count() -> None:
    text = "I think this issue is about the login flow, auth, " + ", ".join(f"tag{i}" for i in range(20))

    tags = parse_tags(text)

    assert tags[0] == "auth"
    assert len(tags) == 10
    assert parse_tags("") == []
    assert parse_tags(None) == []


def test_normalize_tag_rejects_overlong_values() -> None:
    assert normalize_tag("x" * 51) is None
    assert normalize_tag("C# Support") == "c#-support"
    assert normalize_tag("  `Feature Request`. ") == "feature-request"


def test_rule_based_tags_put_status_first_and_add_refinements() -> None:
    tags = rule_based_tags("Crash when opening settings", "", "open", ["bug"])

    assert tags[:2] == ["open", "bug"]
    assert "crash" in tags


def test_rule_based_tags_fill_closed_issues_to_minimum() -> None:
    assert rule_based_tags("Question", "", "closed", []) == ["closed", "resolved", "needs-review"]


def test_rule_based_tags_fill_open_issues_with_triage_defaults() -> None:
    assert rule_based_tags("Question", "", "open", []) == ["open", "medium-priority", "needs-triage"]


def test_tag_prompt_lists_issue_fields() -> None:
    prompt = build_tag_prompt(_issue(labels=[]))

    assert "extract relevant tags" in prompt
    assert "Title: Crash on login screen" in prompt
    assert "Status: open" in prompt
    assert "Existing Labels: None" in prompt


@pytest.mark.asyncio
async def test_tags_from_remote_provider_are_parsed() -> None:
    chain = CompositeProvider([StaticProvider("openai", "Bug, Authentication, crash")])

    result = await TagExtractor(chain).extract(_issue())

    assert result.tags == ["bug", "authentication", "crash"]
    assert result.source == SOURCE_LLM
    assert result.provider == "openai"


@pytest.mark.asyncio
async def test_all_providers_failing_still_yields_status_tag() -> None:
    chain = CompositeProvider([StaticProvider("openai", error=RuntimeError("down"))])

    result = await TagExtractor(chain).extract(_issue())

    assert result.source == SOURCE_OFFLINE
    assert result.tags
    assert result.tags[0] == "open"
    assert {"needs-info", "bug", "crash", "authentication", "password-management"} <= set(result.tags)
    assert len(result.tags) <= 10


@pytest.mark.asyncio
async def test_unparseable_completion_uses_rule_based_tags() -> None:
    rambling = "I am not able to determine meaningful tags for this particular issue right now"
    chain = CompositeProvider([StaticProvider("anthropic", rambling)])

    result = await TagExtractor(chain).extract(_issue(state="closed"))

    assert result.source == SOURCE_RULES
    assert result.tags[0] == "closed"


@pytest.mark.asyncio
async def test_chain_error_uses_rule_based_tags() -> None:
    result = await TagExtractor(ExplodingChain()).extract(_issue())

    assert result.source == SOURCE_RULES
    assert "open" in result.tags
