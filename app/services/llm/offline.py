"""Deterministic offline text generator used as the last link of the provider chain."""

from __future__ import annotations

import logging
import re
from collections import defaultdict

from app.services.heuristics import (
    format_recommendation_blocks,
    recommendations_from_tag_frequency,
    rule_based_tags,
)

logger = logging.getLogger(__name__)

OFFLINE_PROVIDER_NAME = "offline"
TAG_PROMPT_MARKER = "extract relevant tags"
RECOMMENDATION_PROMPT_MARKER = "RECOMMENDATION 1:"
UNAVAILABLE_NOTICE = (
    "AI analysis is not available because no language model provider is configured or reachable."
)

_FIELD_PATTERN = r"^{name}:[ \t]*(.*)$"
_TAG_LINE = re.compile(r"^-\s*(.+?):\s*(\d+)\s+issues?\s*$", re.MULTILINE)
_ISSUE_LINE = re.compile(r"^Issue #(\d+):.*?\[tags:\s*([^\]]*)\]\s*$", re.MULTILINE)
_REQUESTED_COUNT = re.compile(r"^Requested Recommendations:\s*(\d+)\s*$", re.MULTILINE)


def _field(prompt: str, name: str) -> str:
    match = re.search(_FIELD_PATTERN.format(name=re.escape(name)), prompt, flags=re.MULTILINE)
    return match.group(1).strip() if match else ""


class OfflineTextGenerator:
    """Answers tag and recommendation prompts from the prompt's own fields. Never fails."""

    name = OFFLINE_PROVIDER_NAME

    async def complete(self, prompt: str) -> str:
        return self.generate(prompt)

    def generate(self, prompt: str) -> str:
        prompt = prompt or ""
        if TAG_PROMPT_MARKER in prompt.lower():
            response = self._tags(prompt)
            kind = "tags"
        elif RECOMMENDATION_PROMPT_MARKER in prompt:
            response = self._recommendations(prompt)
            kind = "recommendations"
        else:
            response = UNAVAILABLE_NOTICE
            kind = "unknown"

        logger.warning(
            "Offline text generator answered prompt",
            extra={"prompt_kind": kind, "prompt_chars": len(prompt)},
        )
        return response

    @staticmethod
    def _tags(prompt: str) -> str:
        raw_labels = _field(prompt, "Existing Labels")
        labels = [
            label.strip() for label in raw_labels.split(",") if label.strip() and label.strip().lower() != "none"
        ]
        tags = rule_based_tags(
            title=_field(prompt, "Title"),
            description=_field(prompt, "Description"),
            status=_field(prompt, "Status"),
            labels=labels,
        )
        return ", ".join(tags)

    @staticmethod
    def _recommendations(prompt: str) -> str:
        tag_counts = [
            (match.group(1).strip(), int(match.group(2)))
            for match in _TAG_LINE.finditer(prompt)
            if int(match.group(2)) > 0
        ]

        issues_by_tag: dict[str, list[str]] = defaultdict(list)
        for match in _ISSUE_LINE.finditer(prompt):
            issue_id = match.group(1)
            for tag in match.group(2).split(","):
                tag = tag.strip()
                if tag and issue_id not in issues_by_tag[tag]:
                    issues_by_tag[tag].append(issue_id)

        requested = _REQUESTED_COUNT.search(prompt)
        top_n = int(requested.group(1)) if requested else 3
        recommendations = recommendations_from_tag_frequency(
            tag_counts,
            issues_by_tag=issues_by_tag,
            top_n=max(top_n, 1),
        )
        return format_recommendation_blocks(recommendations)
