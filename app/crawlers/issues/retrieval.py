"""Multi-tier issue retrieval: paginated listing, search fallback and probe-by-number sampling."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

from dateutil import parser as date_parser

from app.config.settings import settings
from app.crawlers.issues.contracts import FetchResult
from app.crawlers.issues.sampling import build_probe_plan
from app.models.analysis import STATE_ALL, STATE_CLOSED, STATE_OPEN, STATE_UNKNOWN, IssueRecord
from app.services.log_redaction import sanitize_log_extra

logger = logging.getLogger(__name__)

VALID_STATES = (STATE_OPEN, STATE_CLOSED, STATE_ALL)

# Bare titles that usually belong to pull requests mirrored as issues.
PR_LIKE_TITLES = frozenset(
    {
        "dev",
        "development",
        "feature",
        "update",
        "fix",
        "merge",
        "release",
        "ci",
        "bugfix",
        "hotfix",
        "refactor",
    }
)

INTERESTING_KEYWORDS = ("cannot", "bug", "error", "issue", "problem", "crash", "fail", "request")

_CONVENTIONAL_PREFIX = re.compile(r"^([a-z]+)(\([^)]*\))?!?:")
_MAX_ISSUE_NUMBER = 2**31 - 1
_SEARCH_PAGE_CAP = 100
_SINGLE_CLOSED_CANDIDATES = 5


def is_pr_like_title(title: Optional[str]) -> bool:
    normalized = (title or "").strip().lower()
    if not normalized:
        return False
    if normalized in PR_LIKE_TITLES:
        return True
    match = _CONVENTIONAL_PREFIX.match(normalized)
    return bool(match and match.group(1) in PR_LIKE_TITLES)


def is_interesting_title(title: Optional[str]) -> bool:
    lowered = (title or "").lower()
    return any(keyword in lowered for keyword in INTERESTING_KEYWORDS)


def has_pull_request_marker(payload: dict[str, Any]) -> bool:
    return payload.get("pull_request") is not None


def parse_issue_payload(payload: dict[str, Any], repository: str) -> Optional[IssueRecord]:
    """Map a GitHub issue payload to an IssueRecord; returns None for malformed items."""

    number = payload.get("number")
    if not isinstance(number, int) or isinstance(number, bool) or number <= 0:
        return None

    labels: list[str] = []
    for label in payload.get("labels") or []:
        name = label.get("name") if isinstance(label, dict) else label
        if isinstance(name, str) and name.strip() and name.strip() not in labels:
            labels.append(name.strip())

    user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
    state = str(payload.get("state") or STATE_UNKNOWN).strip().lower()
    if state not in (STATE_OPEN, STATE_CLOSED):
        state = STATE_UNKNOWN

    return IssueRecord(
        id=str(number),
        title=str(payload.get("title") or "Untitled Issue"),
        repository=repository,
        created_at=_parse_datetime(payload.get("created_at")) or datetime.now(UTC),
        state=state,
        description=str(payload.get("body") or ""),
        labels=labels,
        url=str(payload.get("html_url") or f"https://github.com/{repository}/issues/{number}"),
        closed_at=_parse_datetime(payload.get("closed_at")),
        author=user.get("login") if isinstance(user.get("login"), str) else None,
    )


def _parse_datetime(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = date_parser.isoparse(raw)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class _IssueAccumulator:
    """Insertion-ordered issue collection keyed by issue id."""

    def __init__(self) -> None:
        self._items: dict[str, IssueRecord] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, issue_id: object) -> bool:
        return issue_id in self._items

    def add(self, issue: IssueRecord) -> bool:
        if issue.id in self._items:
            return False
        self._items[issue.id] = issue
        return True

    def values(self) -> list[IssueRecord]:
        return list(self._items.values())


@dataclass(slots=True)
class RetrievalResult:
    """Issues returned by one retrieval run plus the tiers that contributed."""

    issues: list[IssueRecord] = field(default_factory=list)
    tiers: list[str] = field(default_factory=list)
    failure_reasons: list[str] = field(default_factory=list)
    repository_found: bool = True


class IssueRetrievalEngine:
    """Fetches up to `max_count` real issues for a repository, tolerating partial failures."""

    def __init__(
        self,
        github_client: Any,
        *,
        page_size: Optional[int] = None,
        max_list_pages: Optional[int] = None,
        max_search_pages: Optional[int] = None,
        max_probes: Optional[int] = None,
        default_latest_number: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._github_client = github_client
        self._page_size = page_size or settings.RETRIEVAL_PAGE_SIZE
        self._max_list_pages = max_list_pages or settings.RETRIEVAL_MAX_LIST_PAGES
        self._max_search_pages = max_search_pages or settings.RETRIEVAL_MAX_SEARCH_PAGES
        self._max_probes = max_probes or settings.RETRIEVAL_MAX_PROBES
        self._default_latest_number = default_latest_number or settings.RETRIEVAL_DEFAULT_LATEST_NUMBER
        self._rng = rng

    async def fetch_issues(
        self,
        owner: str,
        repo: str,
        max_count: int = 10,
        state: str = STATE_ALL,
    ) -> list[IssueRecord]:
        result = await self.retrieve(owner, repo, max_count=max_count, state=state)
        return result.issues

    async def retrieve(
        self,
        owner: str,
        repo: str,
        *,
        max_count: int = 10,
        state: str = STATE_ALL,
    ) -> RetrievalResult:
        repository = f"{owner}/{repo}"
        result = RetrievalResult()
        try:
            await self._retrieve(owner, repo, repository, max_count, state, result)
        except Exception as exc:
            logger.exception(
                "Issue retrieval aborted",
                extra=sanitize_log_extra(repository=repository, error=str(exc)),
            )
            result.failure_reasons.append(f"retrieval: {exc}")
        return result

    async def _retrieve(
        self,
        owner: str,
        repo: str,
        repository: str,
        max_count: int,
        state: str,
        result: RetrievalResult,
    ) -> None:
        state = (state or "").strip().lower()
        if state not in VALID_STATES:
            logger.warning(
                "Invalid issue state requested, defaulting to 'all'",
                extra=sanitize_log_extra(repository=repository, state=state),
            )
            state = STATE_ALL
        if max_count <= 0:
            return

        repo_check = await self._github_client.get_repo(owner, repo)
        if repo_check.is_not_found:
            logger.warning("Repository not found", extra=sanitize_log_extra(repository=repository))
            result.repository_found = False
            return
        if repo_check.is_failed:
            result.failure_reasons.append(f"repository: {repo_check.error or 'unknown'}")

        accumulator = _IssueAccumulator()

        if state == STATE_CLOSED and max_count == 1:
            await self._single_closed_search(owner, repo, repository, accumulator, result)
        else:
            await self._list_tier(owner, repo, repository, max_count, state, accumulator, result)
            needs_search = len(accumulator) == 0 if state == STATE_ALL else len(accumulator) < max_count
            if needs_search:
                await self._search_tier(owner, repo, repository, max_count, state, accumulator, result)

        if len(accumulator) * 2 < max_count:
            await self._probe_tier(owner, repo, repository, max_count, state, accumulator, result)

        issues = accumulator.values()
        if state != STATE_ALL:
            issues = await self._enforce_state(owner, repo, repository, max_count, state, issues, result)
        result.issues = self._finalize(issues, max_count)

        logger.info(
            "Issue retrieval completed",
            extra=sanitize_log_extra(
                repository=repository,
                state=state,
                requested=max_count,
                returned=len(result.issues),
                tiers=result.tiers,
            ),
        )

    async def _list_tier(
        self,
        owner: str,
        repo: str,
        repository: str,
        max_count: int,
        state: str,
        accumulator: _IssueAccumulator,
        result: RetrievalResult,
    ) -> None:
        added = 0
        page = 1
        while page <= self._max_list_pages and len(accumulator) < max_count:
            response = await self._github_client.list_issues(
                owner,
                repo,
                state=state,
                page=page,
                per_page=self._page_size,
                sort="created",
                direction="desc",
            )
            if response.is_failed:
                result.failure_reasons.append(f"list(page={page}): {response.error or 'unknown'}")
                break
            if not response.is_ok or not response.data:
                break

            added += self._absorb(response.data, repository, accumulator)
            if not response.has_next:
                break
            page += 1

        if added:
            result.tiers.append("list")

    async def _search_tier(
        self,
        owner: str,
        repo: str,
        repository: str,
        max_count: int,
        state: str,
        accumulator: _IssueAccumulator,
        result: RetrievalResult,
    ) -> None:
        if state == STATE_ALL:
            biased = (
                f"repo:{repository} is:issue -author:{owner} -label:enhancement -label:feature "
                "-title:dev -title:merge -title:update -title:fix"
            )
            added = await self._search_pages(biased, repository, max_count, state, accumulator, result)
            if added == 0:
                added = await self._search_pages(
                    f"repo:{repository} is:issue", repository, max_count, state, accumulator, result
                )
        else:
            added = await self._search_pages(
                f"repo:{repository} is:issue state:{state}", repository, max_count, state, accumulator, result
            )

        if added:
            result.tiers.append("search")

    async def _search_pages(
        self,
        query: str,
        repository: str,
        max_count: int,
        state: str,
        accumulator: _IssueAccumulator,
        result: RetrievalResult,
    ) -> int:
        added = 0
        per_page = min(self._page_size, _SEARCH_PAGE_CAP)
        for page in range(1, self._max_search_pages + 1):
            if len(accumulator) >= max_count:
                break
            response = await self._github_client.search_issues(
                query,
                page=page,
                per_page=per_page,
                sort="updated",
                order="desc",
            )
            if response.is_failed:
                result.failure_reasons.append(f"search(page={page}): {response.error or 'unknown'}")
                break
            if not response.is_ok or not response.data:
                break

            added += self._absorb(response.data, repository, accumulator)
            if len(response.data) < per_page:
                break
        return added

    async def _single_closed_search(
        self,
        owner: str,
        repo: str,
        repository: str,
        accumulator: _IssueAccumulator,
        result: RetrievalResult,
    ) -> None:
        query = f"repo:{repository} is:issue state:closed -author:{owner}"
        response = await self._github_client.search_issues(
            query,
            page=1,
            per_page=_SINGLE_CLOSED_CANDIDATES,
            sort="updated",
            order="desc",
        )
        if response.is_failed:
            result.failure_reasons.append(f"search(closed): {response.error or 'unknown'}")
            return
        if not response.is_ok:
            return

        for payload in response.data or []:
            if not isinstance(payload, dict) or has_pull_request_marker(payload):
                continue
            issue = parse_issue_payload(payload, repository)
            if issue is None or not issue.is_closed:
                continue
            if not await self._confirm_issue(repository, int(issue.id)):
                logger.debug(
                    "Search candidate not confirmed as an issue",
                    extra=sanitize_log_extra(repository=repository, number=issue.id),
                )
                continue
            accumulator.add(issue)
            result.tiers.append("search")
            return

    async def _probe_tier(
        self,
        owner: str,
        repo: str,
        repository: str,
        max_count: int,
        state: str,
        accumulator: _IssueAccumulator,
        result: RetrievalResult,
    ) -> None:
        latest_number = await self._estimate_latest_number(owner, repo, repository)
        plan = build_probe_plan(
            latest_number,
            max_count=max_count,
            budget=self._max_probes,
            rng=self._rng or random.Random(f"{repository}:{latest_number}"),
        )
        if not plan:
            return

        added = 0
        for number in plan:
            if len(accumulator) >= max_count:
                break
            if str(number) in accumulator:
                continue

            response = await self._github_client.get_issue(owner, repo, number)
            if not response.is_ok or not isinstance(response.data, dict):
                if response.is_failed:
                    result.failure_reasons.append(f"probe(#{number}): {response.error or 'unknown'}")
                continue

            payload = response.data
            if has_pull_request_marker(payload):
                continue
            issue = parse_issue_payload(payload, repository)
            if issue is None:
                continue
            if state != STATE_ALL and issue.state != state:
                continue
            if (max_count == 1 or is_pr_like_title(issue.title)) and not await self._confirm_issue(
                repository, number
            ):
                continue

            if accumulator.add(issue):
                added += 1

        if added:
            result.tiers.append("probe")

    async def _estimate_latest_number(self, owner: str, repo: str, repository: str) -> int:
        response = await self._github_client.list_issues(
            owner,
            repo,
            state=STATE_ALL,
            page=1,
            per_page=1,
            sort="created",
            direction="desc",
        )
        if response.is_empty:
            return 0
        if not response.is_ok or not response.data:
            logger.info(
                "Latest issue number lookup failed, using default",
                extra=sanitize_log_extra(repository=repository, default=self._default_latest_number),
            )
            return self._default_latest_number

        number = response.data[0].get("number") if isinstance(response.data[0], dict) else None
        if not isinstance(number, int) or number <= 0 or number > _MAX_ISSUE_NUMBER:
            return self._default_latest_number
        return number

    async def _confirm_issue(self, repository: str, number: int) -> bool:
        response: FetchResult[list[dict[str, Any]]] = await self._github_client.search_issues(
            f"repo:{repository} is:issue number:{number}",
            page=1,
            per_page=1,
            sort=None,
        )
        return bool(response.is_ok and response.data and (response.total_count or 0) > 0)

    async def _enforce_state(
        self,
        owner: str,
        repo: str,
        repository: str,
        max_count: int,
        state: str,
        issues: list[IssueRecord],
        result: RetrievalResult,
    ) -> list[IssueRecord]:
        filtered = [issue for issue in issues if issue.state == state]
        if filtered or not issues:
            return filtered

        response = await self._github_client.list_issues(
            owner,
            repo,
            state=state,
            page=1,
            per_page=min(max(max_count, 1), _SEARCH_PAGE_CAP),
            sort="created",
            direction="desc",
        )
        if not response.is_ok or not response.data:
            return []

        accumulator = _IssueAccumulator()
        self._absorb(response.data, repository, accumulator)
        direct = [issue for issue in accumulator.values() if issue.state == state]
        if direct:
            result.tiers.append("list")
        return direct

    def _absorb(
        self,
        payloads: list[Any],
        repository: str,
        accumulator: _IssueAccumulator,
    ) -> int:
        added = 0
        for payload in payloads:
            if not isinstance(payload, dict) or has_pull_request_marker(payload):
                continue
            issue = parse_issue_payload(payload, repository)
            if issue is not None and accumulator.add(issue):
                added += 1
        return added

    @staticmethod
    def _finalize(issues: list[IssueRecord], max_count: int) -> list[IssueRecord]:
        if len(issues) > max_count:

            def relevance(issue: IssueRecord) -> int:
                score = 0
                if is_interesting_title(issue.title):
                    score += 1
                if is_pr_like_title(issue.title):
                    score -= 1
                return score

            issues = sorted(issues, key=relevance, reverse=True)[:max_count]

        return sorted(issues, key=lambda issue: (0 if issue.is_open else 1, -issue.created_at.timestamp()))
