"""Typed fetch contracts shared by the GitHub issue client and retrieval tiers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class FetchState(str, enum.Enum):
    """Outcome of a single tracker call."""

    OK = "ok"
    EMPTY = "empty"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    state: FetchState
    data: Optional[T] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    has_next: bool = False
    total_count: Optional[int] = None

    @property
    def is_ok(self) -> bool:
        return self.state == FetchState.OK

    @property
    def is_empty(self) -> bool:
        return self.state == FetchState.EMPTY

    @property
    def is_not_found(self) -> bool:
        return self.state == FetchState.NOT_FOUND

    @property
    def is_failed(self) -> bool:
        return self.state in (FetchState.FAILED, FetchState.RATE_LIMITED)


RepoContract = FetchResult[dict[str, Any]]
IssueContract = FetchResult[dict[str, Any]]
IssueListContract = FetchResult[list[dict[str, Any]]]
