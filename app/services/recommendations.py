"""Recommendation prompt building and tolerant parsing of model output."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Union

from app.config.settings import settings
from app.models.analysis import IssueRecord, Priority, Recommendation
from app.services.llm.composite import Completion, CompositeProvider
from app.services.log_redaction import sanitize_log_extra

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 120
FALLBACK_TITLE = "Review the issue backlog"
FALLBACK_DESCRIPTION = (
    "Automated recommendations could not be parsed from the model output; "
    "review recent issues manually to set priorities."
)

_BLOCK_HEADER = re.compile(r"^[\s#>*_]*RECOMMENDATION\s*#?\s*\d+\s*[:.)-]?[\s*_]*$", re.IGNORECASE | re.MULTILINE)
_FIELD_LINE = re.compile(
    r"^[\s*_-]*(title|priority|description|supporting issues?)[\s*_]*:[\s*_]*(.*)$",
    re.IGNORECASE,
)
_TITLE_SPLIT = re.compile(r"^[\s*_-]*title[\s*_]*:", re.IGNORECASE | re.MULTILINE)
_LIST_ITEM = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s+(.+)$")
_ISSUE_REF = re.compile(r"#(\d+)")
_INLINE_PRIORITY = re.compile(r"[(\[]\s*(high|medium|low)(?:\s+priority)?\s*[)\]]", re.IGNORECASE)


@dataclass(slots=True)
class ParsedStructured:
    """Every recommendation came from a well-formed RECOMMENDATION block."""

    recommendations: list[Recommendation]


@dataclass(slots=True)
class ParsedLenient:
    """Recommendations recovered from headerless Title: segments or a plain list."""

    recommendations: list[Recommendation]


@dataclass(slots=True)
class ParsedFallback:
    """Nothing usable was found; carries one synthetic recommendation."""

    recommendations: list[Recommendation]
    reason: str = ""


ParsedRecommendations = Union[ParsedStructured, ParsedLenient, ParsedFallback]


@dataclass(slots=True)
class RecommendationRound:
    parsed: ParsedRecommendations
    completion: Completion
    failures: list[str] = field(default_factory=list)

    @property
    def recommendations(self) -> list[Recommendation]:
        return self.parsed.recommendations


def build_recommendation_prompt(
    repository: str,
    issues: Sequence[IssueRecord],
    tag_counts: Sequence[tuple[str, int]],
    tags_by_issue: Mapping[str, Sequence[str]],
    *,
    total_issues: Optional[int] = None,
    count: int = 3,
    max_issues: int = 15,
    max_tags: int = 10,
) -> str:
    tag_lines = "\n".join(f"- {tag}: {tag_count} issues" for tag, tag_count in list(tag_counts)[:max_tags])
    issue_lines = "\n".join(
        f"Issue #{issue.id}: {' '.join(issue.title.split())} ({issue.state}) "
        f"[tags: {', '.join(tags_by_issue.get(issue.id, ()))}]"
        for issue in list(issues)[:max_issues]
    )
    return f"""Analyze the GitHub issues of repository '{repository}' and provide {count} specific, actionable recommendations for the repository maintainers.

Repository: {repository}
Total Issues: {total_issues if total_issues is not None else len(issues)}
Requested Recommendations: {count}

Top Tags:
{tag_lines or "- none: 0 issues"}

Recent Issues:
{issue_lines or "None"}

FORMAT YOUR RESPONSE EXACTLY AS FOLLOWS, one block per recommendation:
RECOMMENDATION 1:
Title: <short title>
Priority: <High, Medium or Low>
Description: <two or three sentences explaining what to do and why>
Supporting Issues: <issue numbers such as #12, #34>"""


def parse_supporting_issues(text: str) -> list[str]:
    issue_ids: list[str] = []
    for match in _ISSUE_REF.finditer(text or ""):
        if match.group(1) not in issue_ids:
            issue_ids.append(match.group(1))
    return issue_ids


def parse_recommendations(text: Optional[str], issue_ids: Sequence[str] = ()) -> ParsedRecommendations:
    """Parse model output into recommendations. Never raises.

    Tries ``RECOMMENDATION n:`` blocks first, then ``Title:`` segments without
    block headers, then bulleted or numbered list items. The synthetic
    fallback references every id in ``issue_ids``.
    """

    if not text or not text.strip():
        return _fallback("empty response", issue_ids)

    structured = _parse_blocks(text)
    if structured:
        return ParsedStructured(structured)

    segments = _parse_title_segments(text)
    if segments:
        return ParsedLenient(segments)

    lenient = _parse_list_items(text)
    if lenient:
        return ParsedLenient(lenient)

    return _fallback("no recommendation blocks or list items found", issue_ids)


def _fallback(reason: str, issue_ids: Sequence[str] = ()) -> ParsedFallback:
    return ParsedFallback(
        recommendations=[
            Recommendation(
                title=FALLBACK_TITLE,
                description=FALLBACK_DESCRIPTION,
                priority=Priority.MEDIUM,
                supporting_issue_ids=[str(issue_id) for issue_id in issue_ids],
            )
        ],
        reason=reason,
    )


def _parse_blocks(text: str) -> list[Recommendation]:
    headers = list(_BLOCK_HEADER.finditer(text))
    recommendations: list[Recommendation] = []
    for index, header in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(text)
        recommendation = _parse_block(text[header.end():end])
        if recommendation is not None:
            recommendations.append(recommendation)
    return recommendations


def _parse_block(block: str) -> Optional[Recommendation]:
    fields: dict[str, list[str]] = {}
    current: Optional[str] = None
    for line in block.splitlines():
        match = _FIELD_LINE.match(line)
        if match:
            current = match.group(1).lower()
            if current.startswith("supporting"):
                current = "supporting"
            fields[current] = [match.group(2).strip()]
        elif current and line.strip():
            fields[current].append(line.strip())

    title = " ".join(fields.get("title", [])).strip().strip("*_ ")
    if not title:
        return None
    return Recommendation(
        title=title[:MAX_TITLE_CHARS],
        description=" ".join(fields.get("description", [])).strip() or title,
        priority=Priority.normalize(" ".join(fields.get("priority", []))),
        supporting_issue_ids=parse_supporting_issues(" ".join(fields.get("supporting", []))),
    )


def _parse_title_segments(text: str) -> list[Recommendation]:
    parts = _TITLE_SPLIT.split(text)
    recommendations: list[Recommendation] = []
    for segment in parts[1:]:
        recommendation = _parse_block("Title:" + segment)
        if recommendation is not None:
            recommendations.append(recommendation)
    return recommendations


def _parse_list_items(text: str) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    for line in text.splitlines():
        match = _LIST_ITEM.match(line)
        if not match:
            continue
        item = match.group(1).strip().strip("*_ ")
        if len(item.split()) < 3:
            continue

        priority_match = _INLINE_PRIORITY.search(item)
        priority = Priority.normalize(priority_match.group(1)) if priority_match else Priority.MEDIUM
        cleaned = _INLINE_PRIORITY.sub("", item).strip()
        title, _, rest = cleaned.partition(":")
        if not rest.strip() or len(title) > MAX_TITLE_CHARS:
            title, rest = cleaned, cleaned
        recommendations.append(
            Recommendation(
                title=title.strip()[:MAX_TITLE_CHARS],
                description=rest.strip(),
                priority=priority,
                supporting_issue_ids=parse_supporting_issues(item),
            )
        )
    return recommendations


class RecommendationExtractor:
    """Runs one recommendation round through the provider chain."""

    def __init__(
        self,
        provider: Optional[CompositeProvider] = None,
        *,
        count: Optional[int] = None,
        recent_issue_limit: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds or settings.LLM_RECOMMENDATION_TIMEOUT_SECONDS
        self._provider = provider or CompositeProvider(timeout_seconds=self._timeout_seconds)
        self._count = count or settings.ANALYSIS_RECOMMENDATION_COUNT
        self._recent_issue_limit = recent_issue_limit or settings.ANALYSIS_RECENT_ISSUE_LIMIT

    async def extract(
        self,
        repository: str,
        issues: Sequence[IssueRecord],
        tag_counts: Sequence[tuple[str, int]],
        tags_by_issue: Mapping[str, Sequence[str]],
    ) -> RecommendationRound:
        recent = sorted(issues, key=lambda issue: issue.created_at, reverse=True)[: self._recent_issue_limit]
        prompt = build_recommendation_prompt(
            repository,
            recent,
            tag_counts,
            tags_by_issue,
            total_issues=len(issues),
            count=self._count,
            max_issues=self._recent_issue_limit,
        )
        completion = await self._provider.complete_with_details(prompt, timeout_seconds=self._timeout_seconds)
        parsed = parse_recommendations(completion.text, [issue.id for issue in recent])
        if isinstance(parsed, ParsedFallback):
            logger.warning(
                "Recommendation output could not be parsed",
                extra=sanitize_log_extra(
                    repository=repository,
                    provider=completion.provider,
                    reason=parsed.reason,
                ),
            )
        return RecommendationRound(parsed=parsed, completion=completion, failures=list(completion.failures))
