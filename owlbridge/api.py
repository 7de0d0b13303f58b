"""HTTP surface: synchronous chat, asynchronous jobs and health."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .constants import DEFAULT_PAGE_CONTEXT
from .contracts import ChatRequest, Job, JobRequest
from .errors import OwlBridgeError, ValidationError
from .intake import JobIntake
from .orchestrator import JobOrchestrator
from .service import BridgeService
from .wiseowl import close_http_client

logger = logging.getLogger(__name__)


def create_app(service: Optional[BridgeService] = None) -> FastAPI:
    """Build the FastAPI application around a single ``BridgeService``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.service.scheduler.join()
        await close_http_client()

    app = FastAPI(title="owlbridge", lifespan=lifespan)
    app.state.service = service or BridgeService()
    app.state.intake = JobIntake(app.state.service)

    @app.exception_handler(OwlBridgeError)
    async def _bridge_error(request: Request, exc: OwlBridgeError) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health() -> dict:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        return {"status": "OK", "timestamp": timestamp.replace("+00:00", "Z")}

    @app.post("/")
    async def chat(body: ChatRequest, request: Request):
        """Run one conversation turn and block until it completes."""
        service: BridgeService = request.app.state.service
        try:
            if not body.access_token:
                raise ValidationError("Missing access_token")
            if not body.input:
                raise ValidationError("Missing input")
            job = Job(
                auth_credential=body.access_token,
                conversation_id=body.conversation_id,
                prompt_input=body.input,
                page_context=body.context or DEFAULT_PAGE_CONTEXT,
                is_prod=body.is_prod,
            )
            orchestrator = JobOrchestrator(
                job, service.client_for(body.access_token, body.is_prod)
            )
            result = await orchestrator.run_sync()
        except OwlBridgeError as exc:
            logger.error(f"Chat request failed: {exc.message}")
            return JSONResponse(
                status_code=exc.status_code,
                content={"success": False, **exc.to_dict()},
            )
        return {
            "success": True,
            "runId": result.run_id,
            "conversationId": result.conversation_id,
            "chatDone": result.content,
        }

    @app.post("/jobs", status_code=201)
    async def create_job(body: JobRequest, request: Request) -> dict:
        """Acknowledge the job with its tracking record id; process in background."""
        job = await request.app.state.intake.accept(body)
        return {"recordId": job.record_id}

    return app
