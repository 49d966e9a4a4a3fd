from __future__ import annotations

from app.services.log_redaction import REDACTED, redact, sanitize_log_extra


def test_sanitize_log_extra_redacts_tokens_and_payloads() -> None:
    extra = sanitize_log_extra(
        headers={"Authorization": "Bearer ghp_secret"},
        error="request failed with token=abc123",
        description="Full issue body that should not be logged",
        repository="octo/demo",
    )

    assert extra["headers"]["Authorization"] == REDACTED
    assert "abc123" not in extra["error"]
    assert extra["description"].startswith("<redacted payload")
    assert extra["repository"] == "octo/demo"


def test_nested_lists_keep_non_sensitive_values() -> None:
    value = redact({"params": [{"q": "repo:octo/demo is:issue"}, {"api_key": "xyz"}], "count": 3})

    assert value["params"][0] == {"q": "repo:octo/demo is:issue"}
    assert value["params"][1] == {"api_key": REDACTED}
    assert value["count"] == 3
    assert redact("", field="prompt") == ""
