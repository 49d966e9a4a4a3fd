"""FastAPI application entry point"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import logging

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from app.config.settings import settings
from app.jobs.issue_analysis import parse_repository
from app.runtime import AnalysisRuntime, build_runtime
from app.services.summary import format_summary_report

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Process-wide runtime, created on startup
runtime: Optional[AnalysisRuntime] = None

# Store last run stats (in-memory, for simple deployment)
last_stats: Dict[str, Any] = {}


@asynccontextmanager
async def lifespan(_: FastAPI):
    global runtime
    runtime = build_runtime()
    await runtime.start()
    try:
        yield
    finally:
        await runtime.stop()
        runtime = None


app = FastAPI(
    title=settings.APP_NAME,
    description="GitHub issue retrieval, tagging and repository analysis reports",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_runtime() -> AnalysisRuntime:
    if runtime is None:
        raise HTTPException(status_code=503, detail="Analysis runtime is not running")
    return runtime


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/api/health",
            "stats": "/api/stats",
            "analyze": "POST /api/analyze?repository=owner/repo&max_issues=10&state=all",
            "summary": "/api/repositories/{owner}/{repo}/summary",
            "report": "/api/repositories/{owner}/{repo}/report",
            "refresh_summary": "POST /api/repositories/{owner}/{repo}/summary/refresh",
        }
    }


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "github-issue-analyzer",
        "version": settings.APP_VERSION,
        "runtime": runtime is not None,
    }


@app.get("/api/stats")
async def get_stats():
    """Get statistics of the most recent analysis runs"""
    return last_stats


@app.post("/api/analyze")
async def analyze_repository(
    background_tasks: BackgroundTasks,
    repository: str,
    max_issues: Optional[int] = None,
    state: str = "all",
):
    """
    Trigger issue retrieval and analysis for a repository

    Query params:
        repository: owner/repo or a GitHub URL
        max_issues: Maximum issues to retrieve (default: ANALYSIS_DEFAULT_MAX_ISSUES)
        state: open | closed | all
    """
    try:
        owner, repo = parse_repository(repository)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    active = _require_runtime()
    full_name = f"{owner}/{repo}"
    logger.info(f"Analysis triggered for {full_name} (max_issues={max_issues}, state={state})")

    async def run_analysis():
        try:
            stats = await active.analyze(full_name, max_count=max_issues, state=state)
            last_stats[full_name.lower()] = stats
            logger.info(f"Analysis of {full_name} completed: processed {stats['processed']} of {stats['total']} issues")
        except Exception as e:
            logger.error(f"Analysis of {full_name} failed: {e}", exc_info=True)
            last_stats[full_name.lower()] = {"repository": full_name, "error": str(e)}

    background_tasks.add_task(run_analysis)
    return {
        "status": "started",
        "repository": full_name,
        "message": f"Analysis of {full_name} started in background"
    }


@app.get("/api/repositories/{owner}/{repo}/summary")
async def get_summary(owner: str, repo: str):
    """Latest published summary for a repository"""
    summary = _require_runtime().collector.latest(f"{owner}/{repo}")
    if summary is None:
        raise HTTPException(status_code=404, detail=f"No summary available for {owner}/{repo}")
    return summary.to_dict()


@app.get("/api/repositories/{owner}/{repo}/report", response_class=PlainTextResponse)
async def get_report(owner: str, repo: str):
    """Latest summary rendered as a plain-text report"""
    summary = _require_runtime().collector.latest(f"{owner}/{repo}")
    if summary is None:
        raise HTTPException(status_code=404, detail=f"No summary available for {owner}/{repo}")
    return format_summary_report(summary)


@app.post("/api/repositories/{owner}/{repo}/summary/refresh")
async def refresh_summary(owner: str, repo: str):
    """Regenerate the summary from the issues already analyzed"""
    summary = await _require_runtime().refresh_summary(f"{owner}/{repo}")
    if summary is None:
        raise HTTPException(status_code=404, detail=f"No analyzed issues for {owner}/{repo}")
    return summary.to_dict()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
