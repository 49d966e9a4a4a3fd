"""
Event-driven entrypoint for GitHub issue analysis

Runs one retrieval-and-analysis pass per invocation (for example from a
scheduler) and returns the run statistics plus the rendered report.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from app.runtime import build_runtime
from app.services.state_store import InMemoryStateStore
from app.services.summary import format_summary_report

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def _analyze(repository: str, max_issues: Optional[int], state: str, persist: bool) -> Dict[str, Any]:
    runtime = build_runtime(state_store=None if persist else InMemoryStateStore())
    await runtime.start()
    try:
        stats = await runtime.analyze(repository, max_count=max_issues, state=state)
        summary = runtime.collector.latest(stats["repository"])
        return {
            "stats": stats,
            "summary": summary.to_dict() if summary else None,
            "report": format_summary_report(summary) if summary else None,
        }
    finally:
        await runtime.stop()


def lambda_handler(event: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
    """
    Entrypoint for scheduled or ad-hoc analysis runs.

    Expected event payload:
    - {"repository": "owner/repo", "max_issues": 10, "state": "all", "persist": true}

    Args:
        event: Event payload
        context: Invocation context object (unused)

    Returns:
        Dictionary with statusCode, repository, and result
    """
    payload = event or {}
    repository = payload.get("repository")
    logger.info(f"Handler invoked for repository: {repository}")

    if not repository:
        return {
            "statusCode": 400,
            "error": "Missing 'repository' in event payload",
        }

    try:
        result = asyncio.run(
            _analyze(
                str(repository),
                payload.get("max_issues"),
                str(payload.get("state") or "all"),
                bool(payload.get("persist", True)),
            )
        )
        logger.info(
            f"Analysis completed: processed {result['stats']['processed']} of {result['stats']['total']} issues"
        )
        return {
            "statusCode": 200,
            "repository": repository,
            "result": result,
        }

    except Exception as e:
        logger.error(f"Handler execution failed: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "repository": repository,
            "error": str(e),
        }


# Allow local testing via `python -m app.handler owner/repo`
if __name__ == "__main__":
    import sys

    target = sys.argv[1] if len(sys.argv) > 1 else "octocat/Hello-World"
    outcome = lambda_handler({"repository": target, "persist": False}, None)
    report = (outcome.get("result") or {}).get("report")
    print(report or outcome)
