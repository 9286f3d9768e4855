"""Clinical Trial Eligibility Engine: FastAPI entry point.

Matches questionnaire answers against the criterion corpus and exposes the
admin review queue.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config.settings import get_settings
from backend.config.logging_config import setup_logging, get_logger
from backend.eligibility.lookup_tables import get_lookup_tables
from backend.eligibility.matcher import PatientMatcher
from backend.eligibility.review_sink import InMemoryReviewStore
from backend.eligibility.trial_index import TrialIndex
from backend.eligibility.triage import TriageThresholds
from backend.semantic.fallback import build_fallback_handler
from backend.storage.database import dispose_engine, init_db
from backend.storage.review_store import SqlReviewStore
from backend.api.responses import HealthCheckResponse
from backend.api.routes import match

VERSION = "0.1.0"

settings = get_settings()
setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load lookup tables and the trial index, then build the matcher."""
    logger.info("Starting Clinical Trial Eligibility Engine")

    settings = get_settings()
    if settings.review_store == "memory":
        review_store = InMemoryReviewStore()
    else:
        await init_db()
        review_store = SqlReviewStore()

    semantic = build_fallback_handler()
    if not semantic.is_enabled():
        logger.warning("Semantic fallback unavailable, unresolved terms will be flagged ai_unavailable")

    index = TrialIndex.from_file(Path(settings.criteria_corpus_path))
    app.state.review_store = review_store
    app.state.matcher = PatientMatcher(
        index,
        lookup=get_lookup_tables(),
        semantic=semantic,
        thresholds=TriageThresholds.from_settings(settings),
        review_sink=review_store,
    )
    app.state.semantic = semantic

    yield

    if settings.review_store != "memory":
        await dispose_engine()
    logger.info("Shutting down Clinical Trial Eligibility Engine")


app = FastAPI(
    title="Clinical Trial Eligibility Engine",
    description="Patient-to-trial eligibility matching with confidence triage and admin review",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-Requested-With"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())[:8]
    logger.error("Unhandled exception", error_id=error_id, error=str(exc), path=request.url.path, exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "error_id": error_id})


# Routes
app.include_router(match.router, prefix="/api/v1")


@app.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request):
    matcher = getattr(request.app.state, "matcher", None)
    semantic = getattr(request.app.state, "semantic", None)
    cache = getattr(semantic, "cache", None)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "components": {
            "matcher": matcher is not None,
            "semantic_fallback": bool(semantic and semantic.is_enabled()),
        },
        "trials_indexed": len(matcher.index) if matcher else 0,
        "semantic_cache": cache.get_stats() if cache else None,
    }


@app.get("/")
async def root():
    return {
        "name": "Clinical Trial Eligibility Engine",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("backend.main:app", host="0.0.0.0", port=8001, reload=True)
