"""
Storefront Audit: API Server
============================

HTTP surface over the audit orchestrator.

Endpoints:
- GET  /health                      -> Liveness
- POST /api/v1/audit                -> Run one audit
- GET  /api/v1/audit/{audit_key}    -> Status of an allocated audit key

Status codes:
- 200 ok/degraded run
- 422 INVALID_REQUEST (nothing was computed)
- 502 failed run, body carries the primary error
- 404 unknown audit key

Usage:
    uvicorn storefront_audit.api.server:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import AuditConfig
from ..contracts.base import RunStatus
from ..engine import AuditOptions, AuditOrchestrator
from ..errors import InvalidRequestError
from .. import __version__
from .schemas import AuditRequest


logger = logging.getLogger(__name__)


# =============================================================================
# INFRASTRUCTURE SETUP
# =============================================================================

def build_orchestrator(config: Optional[AuditConfig] = None) -> AuditOrchestrator:
    """Default wiring: HTTP capture, offline synthesis, file render."""
    from collaborators import (
        FileRenderCollaborator, HttpCaptureCollaborator, OfflineSynthesizer
    )

    config = config or AuditConfig.from_env()
    return AuditOrchestrator(
        capture=HttpCaptureCollaborator(),
        render=FileRenderCollaborator(config.output_dir),
        synthesis=OfflineSynthesizer(),
        config=config,
    )


def _orchestrator(request: Request) -> AuditOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return orchestrator


def create_app(orchestrator: Optional[AuditOrchestrator] = None) -> FastAPI:
    """
    Build the FastAPI application.

    When no orchestrator is given, the default one is built on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "orchestrator", None) is None:
            logger.info("Initializing default audit orchestrator")
            app.state.orchestrator = build_orchestrator()
        yield
        logger.info("Shutting down audit API")

    app = FastAPI(
        title="Storefront Audit API",
        version=__version__,
        description="Cached, evidence-backed product page audits",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    @app.get("/health")
    async def health_check(request: Request):
        """System status."""
        _orchestrator(request)
        return {"status": "online", "version": __version__}

    @app.post("/api/v1/audit")
    async def run_audit(body: AuditRequest, request: Request):
        orchestrator = _orchestrator(request)
        try:
            options = AuditOptions.create(body.copy_ready, body.white_label)
            result = await orchestrator.run_audit(body.url, body.locale, options)
        except InvalidRequestError as e:
            logger.info("Rejected audit request: %s", e.message)
            return JSONResponse(
                status_code=422,
                content={"error": {"code": e.code.value, "message": e.message, "field": e.field}},
            )

        status_code = 502 if result.status is RunStatus.FAILED else 200
        return JSONResponse(status_code=status_code, content=result.to_dict())

    @app.get("/api/v1/audit/{audit_key}")
    async def get_audit_status(audit_key: str, request: Request):
        view = _orchestrator(request).get_status(audit_key)
        if view is None:
            raise HTTPException(status_code=404, detail=f"Unknown audit key: {audit_key}")
        return view.to_dict()

    return app


app = create_app()
