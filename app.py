"""
Clarity FastAPI Application

A REST API server for the Clarity note intelligence engine.
Provides endpoints for capturing notes, projects, people, the session
snapshot, daily digests and quota status.
"""

from contextlib import asynccontextmanager
from datetime import date

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from clarity.config import Config
from clarity.core.factory import LLMFactory, StoreFactory
from clarity.models import (
    DailyDigest,
    DecisionStatus,
    DigestOutcome,
    ExtractedAction,
    ExtractedCommitment,
    ExtractedDecision,
    ExtractedURL,
    ExtractionOutcome,
    MentionedPerson,
    Note,
    NoteSaveOutcome,
    Project,
    ProjectMatch,
    QuotaState,
    SessionSnapshot,
    UnresolvedItem,
)
from clarity.services.intelligence_engine import IntelligenceEngine
from clarity.utils.exceptions import ClarityError, NotFoundError, ValidationError
from clarity.utils.logger import get_logger, setup_logging

# Global engine instance
engine: IntelligenceEngine | None = None
logger = get_logger(__name__)


# Pydantic models for API
class SaveNoteRequest(BaseModel):
    """Request model for saving a note."""

    content: str = Field(default="", description="Typed or OCR'd text")
    transcript: str | None = Field(default=None, description="Speech-to-text transcript")
    project_id: str | None = Field(default=None, description="Project chosen by the user")
    extract: bool = Field(default=True, description="Run extraction right away")


class AssignProjectRequest(BaseModel):
    project_id: str | None = None


class ResolveNextStepRequest(BaseModel):
    resolution: str = Field(..., min_length=1)


class ResolveNextStepResponse(BaseModel):
    note: Note | None
    quota_exceeded: bool
    remaining: int


class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1)
    aliases: list[str] = Field(default_factory=list)


class AliasRequest(BaseModel):
    alias: str = Field(..., min_length=2)


class MatchRequest(BaseModel):
    text: str


class CompletionRequest(BaseModel):
    completed: bool = True


class DecisionStatusRequest(BaseModel):
    status: DecisionStatus


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    engine_initialized: bool
    llm_provider: str | None = None
    storage: str | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global engine

    config = Config.from_env()

    setup_logging(config.logging)

    logger.info("Starting Clarity server")
    logger.info(
        f"Configuration: LLM={config.llm.provider}/{config.llm.model}, "
        f"Storage={config.storage.backend}:{config.storage.db_path}"
    )

    llm = LLMFactory.create(config.llm)
    store = StoreFactory.create(config.storage)

    engine = IntelligenceEngine(llm=llm, store=store, config=config)
    await engine.initialize()
    app.state.config = config
    logger.info("Clarity engine initialized")

    yield

    logger.info("Shutting down Clarity server")
    await engine.close()
    engine = None
    logger.info("Cleanup complete")


app = FastAPI(
    title="Clarity API",
    description="Notes with tiered intelligence: extraction, projects, session and daily digest",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _engine() -> IntelligenceEngine:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _http_error(operation: str, error: Exception) -> HTTPException:
    """Map internal errors to HTTP errors."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.message)
    logger.error(f"Error during {operation}: {error}", extra={"operation": operation})
    if isinstance(error, ClarityError):
        return HTTPException(status_code=500, detail=error.message)
    return HTTPException(status_code=500, detail=str(error))


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    config: Config | None = getattr(app.state, "config", None)
    return HealthResponse(
        status="healthy" if engine else "initializing",
        engine_initialized=engine is not None,
        llm_provider=f"{config.llm.provider}/{config.llm.model}" if config else None,
        storage=config.storage.backend if config else None,
    )


# ═══════════════════════════════════════════════════════════
# NOTES
# ═══════════════════════════════════════════════════════════


@app.post("/notes", response_model=NoteSaveOutcome)
async def save_note(request: SaveNoteRequest):
    """
    Capture a note.

    Extraction runs inline (one inference call); URL metadata is fetched in
    the background. When the notes allowance is exhausted nothing is saved
    and quota_exceeded is true.
    """
    current = _engine()
    try:
        return await current.save_note(
            content=request.content,
            transcript=request.transcript,
            project_id=request.project_id,
            extract=request.extract,
        )
    except Exception as e:
        raise _http_error("save_note", e) from e


@app.get("/notes", response_model=list[Note])
async def list_notes(limit: int = Query(default=50, ge=1, le=500)):
    current = _engine()
    return await current.list_notes(limit=limit)


@app.get("/notes/{note_id}")
async def get_note(note_id: str):
    """Note with tags, extracted items and URLs."""
    current = _engine()
    try:
        return await current.get_note_details(note_id)
    except Exception as e:
        raise _http_error("get_note", e) from e


@app.post("/notes/{note_id}/extract", response_model=ExtractionOutcome)
async def extract_note(note_id: str):
    """Retry extraction for a note, e.g. after inference_failed."""
    current = _engine()
    try:
        return await current.process_note(note_id)
    except Exception as e:
        raise _http_error("extract_note", e) from e


@app.delete("/notes/{note_id}")
async def delete_note(note_id: str):
    current = _engine()
    try:
        await current.delete_note(note_id)
        return {"status": "deleted", "note_id": note_id}
    except Exception as e:
        raise _http_error("delete_note", e) from e


@app.put("/notes/{note_id}/project", response_model=Note)
async def assign_project(note_id: str, request: AssignProjectRequest):
    """Move a note to a project; corrections teach the project new aliases."""
    current = _engine()
    try:
        return await current.assign_project(note_id, request.project_id)
    except Exception as e:
        raise _http_error("assign_project", e) from e


@app.post("/notes/{note_id}/next-step/resolve", response_model=ResolveNextStepResponse)
async def resolve_next_step(note_id: str, request: ResolveNextStepRequest):
    current = _engine()
    try:
        note, consumed = await current.resolve_next_step(note_id, request.resolution)
    except Exception as e:
        raise _http_error("resolve_next_step", e) from e
    return ResolveNextStepResponse(
        note=note, quota_exceeded=not consumed.granted, remaining=consumed.remaining
    )


@app.get("/notes/{note_id}/urls", response_model=list[ExtractedURL])
async def list_note_urls(note_id: str):
    current = _engine()
    return await current.list_urls(note_id)


# ═══════════════════════════════════════════════════════════
# EXTRACTED ITEMS
# ═══════════════════════════════════════════════════════════


@app.put("/actions/{action_id}", response_model=ExtractedAction)
async def complete_action(action_id: str, request: CompletionRequest):
    current = _engine()
    try:
        return await current.complete_action(action_id, request.completed)
    except Exception as e:
        raise _http_error("complete_action", e) from e


@app.put("/commitments/{commitment_id}", response_model=ExtractedCommitment)
async def complete_commitment(commitment_id: str, request: CompletionRequest):
    current = _engine()
    try:
        return await current.complete_commitment(commitment_id, request.completed)
    except Exception as e:
        raise _http_error("complete_commitment", e) from e


@app.put("/unresolved/{item_id}", response_model=UnresolvedItem)
async def resolve_unresolved(item_id: str, request: CompletionRequest):
    current = _engine()
    try:
        return await current.resolve_unresolved(item_id, request.completed)
    except Exception as e:
        raise _http_error("resolve_unresolved", e) from e


@app.put("/decisions/{decision_id}", response_model=ExtractedDecision)
async def set_decision_status(decision_id: str, request: DecisionStatusRequest):
    current = _engine()
    try:
        return await current.set_decision_status(decision_id, request.status)
    except Exception as e:
        raise _http_error("set_decision_status", e) from e


@app.get("/people", response_model=list[MentionedPerson])
async def list_people():
    current = _engine()
    return await current.list_people()


# ═══════════════════════════════════════════════════════════
# PROJECTS
# ═══════════════════════════════════════════════════════════


@app.post("/projects", response_model=Project)
async def create_project(request: CreateProjectRequest):
    current = _engine()
    try:
        return await current.create_project(request.name, request.aliases)
    except Exception as e:
        raise _http_error("create_project", e) from e


@app.get("/projects", response_model=list[Project])
async def list_projects(include_archived: bool = Query(default=True)):
    current = _engine()
    return await current.list_projects(include_archived=include_archived)


@app.post("/projects/{project_id}/aliases", response_model=Project)
async def add_project_alias(project_id: str, request: AliasRequest):
    current = _engine()
    try:
        return await current.add_project_alias(project_id, request.alias)
    except Exception as e:
        raise _http_error("add_project_alias", e) from e


@app.post("/projects/{project_id}/archive", response_model=Project)
async def archive_project(project_id: str, archived: bool = Query(default=True)):
    current = _engine()
    try:
        return await current.archive_project(project_id, archived)
    except Exception as e:
        raise _http_error("archive_project", e) from e


@app.post("/projects/match", response_model=ProjectMatch | None)
async def match_project(request: MatchRequest):
    current = _engine()
    return await current.match_project(request.text)


# ═══════════════════════════════════════════════════════════
# SESSION, DIGEST, QUOTA
# ═══════════════════════════════════════════════════════════


@app.get("/session", response_model=SessionSnapshot)
async def get_session(refresh: bool = Query(default=False)):
    """Session snapshot; recomputed only when stale unless refresh is set."""
    current = _engine()
    return await current.refresh_session(force=refresh)


@app.get("/digests/today", response_model=DigestOutcome)
async def todays_digest():
    """Today's digest, generated on first request of the day."""
    current = _engine()
    return await current.check_daily_digest()


@app.post("/digests/today/regenerate", response_model=DigestOutcome)
async def regenerate_digest():
    current = _engine()
    return await current.regenerate_daily_digest()


@app.get("/digests", response_model=list[DailyDigest])
async def list_digests(limit: int = Query(default=30, ge=1, le=365)):
    current = _engine()
    return await current.list_digests(limit)


@app.get("/digests/{day}", response_model=DailyDigest)
async def get_digest(day: date):
    current = _engine()
    digest = await current.get_digest(day)
    if digest is None:
        raise HTTPException(status_code=404, detail=f"No digest for {day.isoformat()}")
    return digest


@app.get("/quota", response_model=list[QuotaState])
async def quota_status():
    current = _engine()
    return current.quota_status()


@app.get("/stats")
async def get_statistics():
    current = _engine()
    return await current.get_statistics()


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Clarity API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }
