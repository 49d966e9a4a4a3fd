"""Issue tag extraction through the provider chain with a rule-based fallback."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from app.config.settings import settings
from app.models.analysis import IssueRecord
from app.services.heuristics import normalize_tag, rule_based_tags
from app.services.llm.composite import CompositeProvider
from app.services.log_redaction import sanitize_log_extra

logger = logging.getLogger(__name__)

MAX_TAGS = 10
MAX_PROMPT_DESCRIPTION_CHARS = 2000

SOURCE_LLM = "llm"
SOURCE_OFFLINE = "offline"
SOURCE_RULES = "rules"

_SPLIT_PATTERN = re.compile(r"[,\n;]")
_PREAMBLE_PATTERN = re.compile(r"^\s*(?:tags?|labels?)\s*:\s*", re.IGNORECASE)


@dataclass(slots=True)
class TagExtractionResult:
    tags: list[str]
    source: str
    provider: Optional[str] = None


def _single_line(text: str, limit: int) -> str:
    collapsed = " ".join((text or "").split())
    if len(collapsed) > limit:
        return collapsed[:limit].rstrip() + "..."
    return collapsed


def build_tag_prompt(issue: IssueRecord) -> str:
    labels = ", ".join(issue.labels) if issue.labels else "None"
    return f"""Analyze the following GitHub issue and extract relevant tags that describe it.

Title: {_single_line(issue.title, 300)}
Description: {_single_line(issue.description, MAX_PROMPT_DESCRIPTION_CHARS)}
Status: {issue.state}
Existing Labels: {labels}

Return ONLY a comma-separated list of 5-10 tags.
Each tag must be lowercase with words joined by hyphens (for example: bug, ui-bug, needs-triage).
Do not add explanations or numbering."""


def parse_tags(text: Optional[str], *, limit: int = MAX_TAGS) -> list[str]:
    """Parse a comma- or newline-separated tag list from model output.

    Markdown emphasis, list markers and a leading "Tags:" preamble are stripped,
    sentence-like items are dropped and the result is deduplicated.
    """

    if not text:
        return []

    tags: list[str] = []
    for raw_item in _SPLIT_PATTERN.split(_PREAMBLE_PATTERN.sub("", text.strip())):
        tag = normalize_tag(_PREAMBLE_PATTERN.sub("", raw_item))
        if tag and tag not in tags:
            tags.append(tag)
        if len(tags) >= limit:
            break
    return tags


class TagExtractor:
    """Produces a non-empty tag set for an issue."""

    def __init__(
        self,
        provider: Optional[CompositeProvider] = None,
        *,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._provider = provider or CompositeProvider(timeout_seconds=settings.LLM_TAG_TIMEOUT_SECONDS)
        self._timeout_seconds = timeout_seconds or settings.LLM_TAG_TIMEOUT_SECONDS

    async def extract(self, issue: IssueRecord) -> TagExtractionResult:
        prompt = build_tag_prompt(issue)
        try:
            completion = await self._provider.complete_with_details(prompt, timeout_seconds=self._timeout_seconds)
        except Exception as exc:
            logger.warning(
                "Tag extraction round failed, using rule-based tags",
                extra=sanitize_log_extra(repository=issue.repository, issue_id=issue.id, error=str(exc)),
            )
            return self._rules(issue)

        tags = parse_tags(completion.text)
        if not tags:
            logger.info(
                "No tags parsed from completion, using rule-based tags",
                extra=sanitize_log_extra(
                    repository=issue.repository,
                    issue_id=issue.id,
                    provider=completion.provider,
                ),
            )
            return self._rules(issue)

        source = SOURCE_OFFLINE if completion.is_offline else SOURCE_LLM
        return TagExtractionResult(tags=tags, source=source, provider=completion.provider)

    @staticmethod
    def _rules(issue: IssueRecord) -> TagExtractionResult:
        tags = rule_based_tags(issue.title, issue.description, issue.state, issue.labels)
        return TagExtractionResult(tags=tags[:MAX_TAGS], source=SOURCE_RULES)
