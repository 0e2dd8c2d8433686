"""
FieldMapper REST API Server

Serves the mapping suggestion engine over HTTP.

Base URL: /api/v1
The suggestion endpoint is also mounted at the legacy serverless path
/.netlify/functions/ai-suggest-mappings.
"""

from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fieldmapper.agents.mapping_models import CamelModel
from fieldmapper.agents.mapping_orchestrator import MappingOrchestrator, error_body
from fieldmapper.core.logging import log_error, setup_logging
from fieldmapper.core.metrics import setup_metrics

logger = structlog.get_logger(__name__)

API_VERSION = "1.0.0"

# =============================================================================
# Application Setup
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(
        level=os.environ.get("FIELDMAPPER_LOG_LEVEL", "INFO"),
        json_output=os.environ.get("FIELDMAPPER_LOG_JSON", "false").lower() == "true",
    )
    logger.info("api_started", version=API_VERSION)
    yield


app = FastAPI(
    lifespan=lifespan,
    title="FieldMapper API",
    description="Schema field-mapping suggestions with AI assistance and rule-based fallback",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_metrics(app)


# =============================================================================
# Response Models
# =============================================================================

class HealthResponse(CamelModel):
    """Health check response."""
    status: str
    version: str
    timestamp: str
    ai_provider: str | None = None
    feedback_store: str | None = None


# =============================================================================
# Orchestrator
# =============================================================================

_orchestrator: MappingOrchestrator | None = None


def get_orchestrator() -> MappingOrchestrator:
    """Dependency returning the process-wide orchestrator, built on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = MappingOrchestrator.from_env()
    return _orchestrator


# =============================================================================
# API Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health_check(
    orchestrator: MappingOrchestrator = Depends(get_orchestrator),
) -> HealthResponse:
    """Health check endpoint."""
    client = orchestrator.llm_client
    store = orchestrator.feedback_recorder.store
    return HealthResponse(
        status="healthy",
        version=API_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        ai_provider=client.provider if client else None,
        feedback_store=store.name if store else None,
    )


@app.post("/api/v1/suggest-mappings", tags=["Mappings"])
@app.post("/.netlify/functions/ai-suggest-mappings", include_in_schema=False)
async def suggest_mappings(
    request: Request,
    orchestrator: MappingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """
    Suggest target fields for each source field, or record feedback.

    A body with a non-empty ``feedback`` array is persisted and never scored.
    """
    body = await request.body()
    try:
        payload = json.loads(body) if body else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(status_code=400, content=error_body(400, "Invalid JSON body"))

    # Scoring and provider calls are blocking
    result = await run_in_threadpool(orchestrator.handle, payload)
    return JSONResponse(status_code=result.status_code, content=result.body)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    """Handle HTTP exceptions, including 404 and 405 raised by routing."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle unexpected exceptions."""
    log_error(logger, exc, "unhandled_exception", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(500, "Internal error"),
    )


# =============================================================================
# CLI Entry Point
# =============================================================================

def main() -> None:
    """Run the API server."""
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8080"))
    workers = int(os.environ.get("WORKERS", "4"))
    reload = os.environ.get("RELOAD", "false").lower() == "true"

    uvicorn.run(
        "fieldmapper.api.server:app",
        host=host,
        port=port,
        workers=1 if reload else workers,
        reload=reload,
    )


if __name__ == "__main__":
    main()
