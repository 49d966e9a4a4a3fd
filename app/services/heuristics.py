"""Deterministic tagging and recommendation heuristics used when no language model answers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from app.models.analysis import STATE_CLOSED, Priority, Recommendation

MAX_TAG_CHARS = 50
MAX_TAG_WORDS = 4
MIN_RULE_TAGS = 3

_LIST_MARKER = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s+")
_MARKDOWN_CHARS = re.compile(r"[*_`~\"']")
_INVALID_TAG_CHARS = re.compile(r"[^a-z0-9+#./-]")
_HYPHEN_RUNS = re.compile(r"-{2,}")


@dataclass(frozen=True, slots=True)
class KeywordRule:
    """Adds `tags` when any keyword is present; `refinements` add narrower tags."""

    keywords: tuple[str, ...]
    tags: tuple[str, ...]
    refinements: tuple[tuple[tuple[str, ...], str], ...] = ()


KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        keywords=(
            "security",
            "vulnerability",
            "exploit",
            "attack",
            "secure",
            "threat",
            "cve",
            "xss",
            "injection",
        ),
        tags=("security", "security-risk"),
    ),
    KeywordRule(
        keywords=(
            "slow",
            "performance",
            "speed",
            "optimize",
            "lag",
            "latency",
            "bottleneck",
            "memory leak",
            "cpu usage",
        ),
        tags=("performance", "optimization"),
    ),
    KeywordRule(
        keywords=(
            "bug",
            "problem",
            "crash",
            "error",
            "broken",
            "exception",
            "fails",
            "failed",
            "not working",
            "regression",
        ),
        tags=("bug",),
        refinements=(
            (("crash", "exception", "segfault", "panic"), "crash"),
            (("ui", "display", "screen", "visual", "layout"), "ui-bug"),
        ),
    ),
    KeywordRule(
        keywords=(
            "feature",
            "enhancement",
            "implement",
            "request",
            "support for",
            "ability to",
            "would be nice",
        ),
        tags=("enhancement", "feature-request"),
    ),
    KeywordRule(
        keywords=(
            "doc",
            "docs",
            "documentation",
            "example",
            "readme",
            "wiki",
            "guide",
            "tutorial",
            "manual",
            "typo",
        ),
        tags=("documentation",),
    ),
    KeywordRule(
        keywords=(
            "vpn",
            "network",
            "connection",
            "connect",
            "tunnel",
            "proxy",
            "firewall",
            "routing",
            "dns",
        ),
        tags=("networking",),
        refinements=(
            (("vpn", "wireguard", "openvpn"), "vpn"),
            (("connect", "connection", "disconnect", "timeout"), "connectivity"),
        ),
    ),
    KeywordRule(
        keywords=(
            "install",
            "installation",
            "setup",
            "configuration",
            "config",
            "deploy",
            "initialize",
        ),
        tags=("installation", "setup"),
    ),
    KeywordRule(
        keywords=("mobile", "android", "ios", "iphone", "ipad", "smartphone"),
        tags=("mobile",),
        refinements=(
            (("android",), "android"),
            (("ios", "iphone", "ipad"), "ios"),
        ),
    ),
    KeywordRule(
        keywords=(
            "login",
            "auth",
            "authentication",
            "sign in",
            "password",
            "credential",
            "oauth",
            "token",
            "logout",
        ),
        tags=("authentication", "user-account"),
        refinements=((("password", "reset"), "password-management"),),
    ),
)

HIGH_PRIORITY_KEYWORDS = ("urgent", "critical", "important", "high priority", "blocker")
LOW_PRIORITY_KEYWORDS = ("low priority", "minor", "nice to have")

# tag -> (title template, priority)
RECOMMENDATION_TEMPLATES: dict[str, tuple[str, Priority]] = {
    "bug": ("Fix reported bugs", Priority.HIGH),
    "feature": ("Implement requested features", Priority.MEDIUM),
    "feature-request": ("Implement requested features", Priority.MEDIUM),
    "enhancement": ("Enhance existing functionality", Priority.MEDIUM),
    "documentation": ("Improve documentation", Priority.LOW),
    "security": ("Address security concerns", Priority.HIGH),
    "performance": ("Optimize performance", Priority.MEDIUM),
}
REVIEW_RECOMMENDATION_TITLE = "Regularly review and triage open issues"
EMPTY_REPOSITORY_RECOMMENDATIONS = (
    "Initialize repository with a proper README and documentation",
    "Set up CI/CD pipelines for automated testing and deployment",
    "Establish coding standards and contribution guidelines",
)


def normalize_tag(raw: Optional[str]) -> Optional[str]:
    """Normalize a free-form tag to lowercase-hyphenated form, or None when unusable."""

    if raw is None:
        return None
    text = _LIST_MARKER.sub("", str(raw)).strip()
    text = _MARKDOWN_CHARS.sub("", text).strip().strip(".,;:").strip()
    if not text or len(text) > MAX_TAG_CHARS:
        return None
    if len(text.split()) > MAX_TAG_WORDS:
        return None

    lowered = re.sub(r"[\s_]+", "-", text.lower())
    lowered = _INVALID_TAG_CHARS.sub("", lowered)
    lowered = _HYPHEN_RUNS.sub("-", lowered).strip("-")
    return lowered or None


def _contains_keyword(content: str, keywords: Iterable[str]) -> bool:
    for keyword in keywords:
        if re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", content):
            return True
    return False


def rule_based_tags(
    title: str,
    description: str = "",
    status: str = "",
    labels: Sequence[str] = (),
) -> list[str]:
    """Derive tags from status, labels and keyword categories.

    Always returns at least `MIN_RULE_TAGS` tags; generic triage tags fill the gap.
    """

    tags: list[str] = []

    def add(tag: Optional[str]) -> None:
        if tag and tag not in tags:
            tags.append(tag)

    normalized_status = normalize_tag(status)
    add(normalized_status)

    for label in labels:
        add(normalize_tag(label))

    content = f"{title} {description}".lower()
    for rule in KEYWORD_RULES:
        if not _contains_keyword(content, rule.keywords):
            continue
        for tag in rule.tags:
            add(tag)
        for keywords, tag in rule.refinements:
            if _contains_keyword(content, keywords):
                add(tag)

    has_priority = False
    if _contains_keyword(content, HIGH_PRIORITY_KEYWORDS):
        add("high-priority")
        has_priority = True
    elif _contains_keyword(content, LOW_PRIORITY_KEYWORDS):
        add("low-priority")
        has_priority = True

    if len(tags) < MIN_RULE_TAGS:
        if normalized_status == STATE_CLOSED:
            add("resolved")
        else:
            add("open")
            if not has_priority:
                add("medium-priority")
            add("needs-triage")
    if len(tags) < MIN_RULE_TAGS:
        add("needs-review")
    if len(tags) < MIN_RULE_TAGS:
        add("general")

    return tags


def recommendations_from_tag_frequency(
    tag_counts: Sequence[tuple[str, int]],
    *,
    issues_by_tag: Optional[Mapping[str, Sequence[str]]] = None,
    top_n: int = 3,
    max_supporting: int = 5,
) -> list[Recommendation]:
    """Template recommendations for the most frequent tags plus a standing review item."""

    if not tag_counts:
        return [
            Recommendation(title=title, description=title, priority=Priority.MEDIUM)
            for title in EMPTY_REPOSITORY_RECOMMENDATIONS
        ]

    ranked = sorted(tag_counts, key=lambda item: (-item[1], item[0]))[:top_n]
    recommendations: list[Recommendation] = []
    for tag, count in ranked:
        title, priority = RECOMMENDATION_TEMPLATES.get(tag.lower(), (f"Focus on {tag}", Priority.MEDIUM))
        supporting = list((issues_by_tag or {}).get(tag, ()))[:max_supporting]
        recommendations.append(
            Recommendation(
                title=title,
                description=f"{title} (found in {count} issues).",
                priority=priority,
                supporting_issue_ids=supporting,
            )
        )

    recommendations.append(
        Recommendation(
            title=REVIEW_RECOMMENDATION_TITLE,
            description="Keep the backlog healthy by reviewing, labeling and closing stale open issues.",
            priority=Priority.LOW,
        )
    )
    return recommendations


def format_recommendation_blocks(recommendations: Sequence[Recommendation]) -> str:
    """Render recommendations in the numbered block format the extraction parser reads."""

    blocks: list[str] = []
    for index, recommendation in enumerate(recommendations, start=1):
        supporting = ", ".join(f"#{issue_id}" for issue_id in recommendation.supporting_issue_ids)
        blocks.append(
            "\n".join(
                [
                    f"RECOMMENDATION {index}:",
                    f"Title: {recommendation.title}",
                    f"Priority: {recommendation.priority.value}",
                    f"Description: {recommendation.description}",
                    f"Supporting Issues: {supporting or 'None'}",
                ]
            )
        )
    return "\n\n".join(blocks)
