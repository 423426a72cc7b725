"""FastAPI application entry point"""

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, Optional
import logging

from commit_translator.config.settings import settings
from commit_translator.exceptions import CommitTranslatorError
from commit_translator.jobs.sync_scheduler import SyncScheduler
from commit_translator.models.repository_analysis import AnalysisType
from commit_translator.orchestrator import CommitTranslatorOrchestrator
from commit_translator.services.analysis_store import AnalysisStore
from commit_translator.services.commit_insights import build_timeline, summarize_commit_patterns

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Plain-English translation of GitHub commit history",
    version=settings.APP_VERSION
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Shared instances (one per process / Lambda execution environment)
store = AnalysisStore()
orchestrator = CommitTranslatorOrchestrator(store=store)
scheduler = SyncScheduler(orchestrator, store)


class ConnectRepositoryRequest(BaseModel):
    full_name: str = Field(..., min_length=3, description="owner/name")


class ChatRequest(BaseModel):
    query: str = Field(..., min_length=1)

    @field_validator("query")
    @classmethod
    def query_must_have_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be blank")
        return value


def get_store() -> AnalysisStore:
    return store


def get_orchestrator() -> CommitTranslatorOrchestrator:
    return orchestrator


def get_scheduler() -> SyncScheduler:
    return scheduler


def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_github_token(x_github_token: Optional[str] = Header(None, alias="X-GitHub-Token")) -> Optional[str]:
    return x_github_token or None


@app.exception_handler(CommitTranslatorError)
async def commit_translator_error_handler(request: Request, exc: CommitTranslatorError):
    logger.warning(f"Request failed with {exc.error_type}: {exc}")
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/api/health",
            "list_repositories": "GET /api/repositories",
            "connect_repository": "POST /api/repositories",
            "delete_repository": "DELETE /api/repositories/{id}",
            "analyze": "POST /api/repositories/{id}/analyze",
            "sync": "POST /api/repositories/{id}/sync",
            "analysis": "GET /api/repositories/{id}/analysis/{overview|commits}",
            "insights": "GET /api/repositories/{id}/insights",
            "chat": "POST /api/repositories/{id}/chat",
            "sync_tick": "POST /api/sync/tick"
        }
    }


@app.get("/api/health")
async def health_check():
    """Health check endpoint for serverless platforms"""
    return {
        "status": "healthy",
        "service": "commit-translator",
        "version": settings.APP_VERSION
    }


@app.get("/api/repositories")
async def list_repositories(
    user_id: str = Depends(get_user_id),
    repository_store: AnalysisStore = Depends(get_store),
    sync_scheduler: SyncScheduler = Depends(get_scheduler),
):
    repositories = []
    for repository in repository_store.list_repositories(user_id):
        item = repository.to_dict()
        status = sync_scheduler.status(repository.id)
        item["sync_status"] = status.value if status else None
        repositories.append(item)
    return {"repositories": repositories}


@app.post("/api/repositories", status_code=201)
async def connect_repository(
    payload: ConnectRepositoryRequest,
    user_id: str = Depends(get_user_id),
    github_token: Optional[str] = Depends(get_github_token),
    pipeline: CommitTranslatorOrchestrator = Depends(get_orchestrator),
):
    """Connect a GitHub repository by full name; analysis starts as pending."""
    if "/" not in payload.full_name:
        raise HTTPException(status_code=422, detail="full_name must look like owner/name")
    logger.info(f"Connecting repository {payload.full_name}")
    repository = await pipeline.connect_repository(user_id, payload.full_name, github_token)
    return {"repository": repository.to_dict()}


@app.delete("/api/repositories/{repository_id}")
async def delete_repository(
    repository_id: int,
    user_id: str = Depends(get_user_id),
    repository_store: AnalysisStore = Depends(get_store),
):
    if not repository_store.delete_repository(repository_id, user_id):
        raise HTTPException(status_code=404, detail=f"Repository {repository_id} not found")
    return {"deleted": True, "repository_id": repository_id}


@app.post("/api/repositories/{repository_id}/analyze")
async def analyze_repository(
    repository_id: int,
    user_id: str = Depends(get_user_id),
    github_token: Optional[str] = Depends(get_github_token),
    repository_store: AnalysisStore = Depends(get_store),
    pipeline: CommitTranslatorOrchestrator = Depends(get_orchestrator),
):
    """
    Run a full analysis for one repository

    Failures are reported in the body with success=false; the repository is
    left in the failed state.
    """
    repository = repository_store.require_repository(repository_id, user_id)
    logger.info(f"Analysis triggered for {repository.full_name}")
    result = await pipeline.run_analysis(repository_id, repository, github_token=github_token)
    return result


@app.post("/api/repositories/{repository_id}/sync")
async def sync_repository(
    repository_id: int,
    user_id: str = Depends(get_user_id),
    github_token: Optional[str] = Depends(get_github_token),
    repository_store: AnalysisStore = Depends(get_store),
    sync_scheduler: SyncScheduler = Depends(get_scheduler),
):
    repository_store.require_repository(repository_id, user_id)
    if sync_scheduler.is_syncing(repository_id):
        raise HTTPException(status_code=409, detail=f"Repository {repository_id} is already syncing")
    return await sync_scheduler.request_sync(repository_id, github_token=github_token, user_id=user_id)


@app.get("/api/repositories/{repository_id}/analysis/{analysis_type}")
async def get_latest_analysis(
    repository_id: int,
    analysis_type: AnalysisType,
    user_id: str = Depends(get_user_id),
    repository_store: AnalysisStore = Depends(get_store),
):
    repository_store.require_repository(repository_id, user_id)
    record = repository_store.latest_analysis(repository_id, analysis_type)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No {analysis_type.value} analysis for repository {repository_id}")
    return record.to_dict()


@app.get("/api/repositories/{repository_id}/insights")
async def get_insights(
    repository_id: int,
    user_id: str = Depends(get_user_id),
    repository_store: AnalysisStore = Depends(get_store),
):
    """Keyword pattern dashboard and monthly timeline from the latest commit analysis"""
    repository_store.require_repository(repository_id, user_id)
    record = repository_store.latest_analysis(repository_id, AnalysisType.COMMITS)
    commits = list((record.content if record else {}).get("recent_commits") or [])
    insights = summarize_commit_patterns([str(commit.get("message") or "") for commit in commits])
    return {
        "repository_id": repository_id,
        "insights": insights.to_dict(),
        "timeline": [event.to_dict() for event in build_timeline(commits)],
    }


@app.post("/api/repositories/{repository_id}/chat")
async def chat(
    repository_id: int,
    payload: ChatRequest,
    user_id: str = Depends(get_user_id),
    pipeline: CommitTranslatorOrchestrator = Depends(get_orchestrator),
):
    answer = await pipeline.answer_query(repository_id, payload.query, user_id=user_id)
    return answer.to_dict()


@app.post("/api/sync/tick")
async def sync_tick(
    user_id: str = Depends(get_user_id),
    github_token: Optional[str] = Depends(get_github_token),
    sync_scheduler: SyncScheduler = Depends(get_scheduler),
) -> Dict[str, Any]:
    """Run one bounded sync pass over the caller's repositories"""
    return await sync_scheduler.tick(user_id=user_id, github_token=github_token)


# AWS Lambda adapter for HTTP events
def lambda_handler(event: Dict[str, Any], context: Any):
    from mangum import Mangum
    handler = Mangum(app)
    return handler(event, context)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "commit_translator.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
