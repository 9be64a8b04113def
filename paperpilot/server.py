"""FastAPI server for paperpilot.

Exposes OCR jobs, workflow definitions, workflow runs and the modification
history. When a token is configured every /api route except health requires
it, as a query parameter or a cookie.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .exceptions import PaperlessError
from .logger import get_logger
from .services import ModificationNotFound, Services

logger = get_logger(__name__)

TOKEN_COOKIE = "paperpilot_token"


# === Request/response models ===


class OCRJobRequest(BaseModel):
    document_id: int


class OCRJobCreated(BaseModel):
    job_id: str


class TriggerIn(BaseModel):
    match_action: str
    match_data: Any = "[]"


class ActionIn(BaseModel):
    execution_order: int = 0
    action_type: str
    action_data: Any = "[]"


class WorkflowIn(BaseModel):
    name: str
    run_order: int = 0
    triggers: list[TriggerIn] = Field(default_factory=list)
    actions: list[ActionIn] = Field(default_factory=list)


class SkippedOut(BaseModel):
    workflow: str
    document_id: int
    reason: str


class WorkflowRunOut(BaseModel):
    processed: int
    skipped: list[SkippedOut]
    cancelled: bool = False


def create_app(services: Services, token: str | None = None) -> FastAPI:
    """Create the FastAPI application around an already-built Services."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.start()
        try:
            yield
        finally:
            services.stop()

    app = FastAPI(
        title="paperpilot",
        description="OCR jobs and rule-based workflows for Paperless-ngx",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.services = services
    app.state.auth_token = token

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://127.0.0.1", "http://localhost"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Token verification dependency
    async def verify_token(
        request: Request,
        token: str | None = Query(None, alias="token"),
    ):
        if app.state.auth_token is None:
            return None
        # Check query param first, then cookie
        auth_token = token or request.cookies.get(TOKEN_COOKIE)
        if auth_token != app.state.auth_token:
            raise HTTPException(status_code=401, detail="Invalid or missing token")
        return auth_token

    # === Routes ===

    @app.get("/api/health")
    async def health():
        """Health check (no auth required)."""
        return {"status": "ok", "version": __version__}

    # Blocking handlers are plain defs so they run in the threadpool.

    @app.post("/api/ocr/jobs", response_model=OCRJobCreated)
    def submit_ocr_job(body: OCRJobRequest, token: str = Depends(verify_token)):
        """Queue an OCR job; waits while the queue is full."""
        job_id = services.ocr_jobs.submit_job(body.document_id)
        return OCRJobCreated(job_id=job_id)

    @app.get("/api/ocr/jobs")
    async def list_ocr_jobs(token: str = Depends(verify_token)):
        """List OCR jobs, most recent first."""
        jobs = services.ocr_jobs.list_jobs()
        return {"jobs": [job.to_dict() for job in jobs], "total": len(jobs)}

    @app.get("/api/ocr/jobs/{job_id}")
    async def get_ocr_job(job_id: str, token: str = Depends(verify_token)):
        job = services.ocr_jobs.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job.to_dict()

    @app.get("/api/workflows")
    def list_workflows(token: str = Depends(verify_token)):
        workflows = services.list_workflows()
        return {"workflows": [w.to_dict() for w in workflows], "total": len(workflows)}

    @app.put("/api/workflows")
    def replace_workflows(body: list[WorkflowIn], token: str = Depends(verify_token)):
        """Replace every stored workflow."""
        workflows = services.replace_workflows([w.model_dump() for w in body])
        return {"workflows": [w.to_dict() for w in workflows], "total": len(workflows)}

    @app.post("/api/workflows/run", response_model=WorkflowRunOut)
    def run_workflows(token: str = Depends(verify_token)):
        """Run every automatic workflow once."""
        result = services.workflows.run()
        if result.error is not None:
            raise HTTPException(status_code=500, detail=str(result.error))
        return WorkflowRunOut(
            processed=result.processed,
            skipped=[SkippedOut(**vars(s)) for s in result.skipped],
            cancelled=result.cancelled,
        )

    @app.get("/api/tags")
    def list_tags(token: str = Depends(verify_token)):
        try:
            names = services.client.get_all_tag_names()
        except PaperlessError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return {"tags": names, "total": len(names)}

    @app.get("/api/modifications")
    def list_modifications(token: str = Depends(verify_token)):
        records = services.list_modifications()
        return {"modifications": [r.to_dict() for r in records], "total": len(records)}

    @app.post("/api/modifications/{record_id}/undo")
    def undo_modification(record_id: int, token: str = Depends(verify_token)):
        try:
            record = services.undo_modification(record_id)
        except ModificationNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except PaperlessError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return record.to_dict()

    return app


def run_server(services: Services, host: str = "127.0.0.1", port: int = 8080, token: str | None = None) -> None:
    """Serve the API with uvicorn until interrupted."""
    import uvicorn

    app = create_app(services, token=token)
    logger.info("Starting server on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_config=None)
