"""
Probes for the field assistant service.

  GET /health       -- Liveness, with the model and guardrail modes in force
  GET /health/ready -- Readiness, one check per pipeline collaborator
"""

import logging
import time

from fastapi import APIRouter, Request

from ..models.responses import HealthResponse, ReadinessResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def liveness(request: Request) -> HealthResponse:
    orchestrator = request.app.state.orchestrator
    config = orchestrator.config
    started = getattr(request.app.state, "start_time", time.time())
    return HealthResponse(
        model=getattr(orchestrator.model_client, "model", ""),
        stream_mode=config.stream_mode,
        paragraph_policy=config.validator.paragraph_policy,
        uptime_seconds=round(time.time() - started, 1),
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(request: Request) -> ReadinessResponse:
    """A missing collaborator makes the service not ready; nothing is called."""
    orchestrator = request.app.state.orchestrator
    checks = {
        "model_client": bool(getattr(orchestrator.model_client, "available", True)),
        "retrieval_provider": orchestrator.retrieval_provider is not None,
        "document_registry": orchestrator.document_registry is not None,
        "audit_store": orchestrator.audit_store is not None,
        "quota_store": getattr(request.app.state, "quota_store", None) is not None,
    }
    ready = all(checks.values())
    if not ready:
        failing = [name for name, ok in checks.items() if not ok]
        logger.warning(f"[Health] Not ready: {', '.join(failing)}")
    return ReadinessResponse(ready=ready, checks=checks)
