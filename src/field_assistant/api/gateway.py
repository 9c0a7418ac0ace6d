"""
API Gateway -- FastAPI application factory.

Creates the FastAPI app with all routes, middleware, and collaborators.
This is the entrypoint for uvicorn:

    uvicorn field_assistant.api.gateway:create_app --factory --host 0.0.0.0 --port 8000

Or through the CLI:

    field-assistant serve --reload

Collaborators default to the environment:
  model client        LLM_PROVIDER / OPENAI_BASE_URL / *_API_KEY
  retrieval + docs    RETRIEVAL_URL, RETRIEVAL_API_KEY (unset: no retrieval,
                      empty document registry)
                      RETRIEVAL_ALLOW_PRIVATE=true for a service on the
                      private network
  audit + quota       SQLite at FIELD_ASSISTANT_DB_PATH
  token resolver      API_KEY bound to DEFAULT_TENANT_ID

Security:
  - CORS restricted to configured origins (default: localhost only)
  - Production auth check on startup
  - Per-tenant daily quota in the shared store
  - All external input validated at the boundary
"""

import logging
import os
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..audit.store import AuditStore, SQLiteAuditStore
from ..config import AssistantConfig
from ..errors import FieldAssistantError, RateLimitExceeded, Unauthorized
from ..llm import ModelClient, create_client
from ..orchestration.field_assistant import FieldAssistantOrchestrator
from ..retrieval.providers import (
    DocumentRegistry,
    HttpDocumentRegistry,
    HttpRetrievalProvider,
    InMemoryDocumentRegistry,
    RetrievalProvider,
)
from .middleware.auth import ApiKeyResolver, TokenResolver, check_production_auth
from .middleware.rate_limit import QuotaStore, SQLiteQuotaStore, quota_headers
from .routes import field_assistant, health

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8080",
]


def _get_cors_origins() -> list[str]:
    """Load CORS origins from environment or use safe defaults."""
    origins_env = os.environ.get("CORS_ORIGINS", "")
    if origins_env.strip():
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return DEFAULT_CORS_ORIGINS


def _retrieval_from_env() -> tuple[RetrievalProvider | None, DocumentRegistry]:
    url = os.environ.get("RETRIEVAL_URL", "").strip()
    if not url:
        logger.warning("[Gateway] RETRIEVAL_URL not set -- retrieval disabled, no tenant documents")
        return None, InMemoryDocumentRegistry()
    api_key = os.environ.get("RETRIEVAL_API_KEY", "")
    allow_private = os.environ.get("RETRIEVAL_ALLOW_PRIVATE", "").lower() in ("1", "true", "yes")
    return (
        HttpRetrievalProvider(url, api_key=api_key, allow_private=allow_private),
        HttpDocumentRegistry(url, api_key=api_key, allow_private=allow_private),
    )


def _register_error_handlers(application: FastAPI) -> None:
    @application.exception_handler(FieldAssistantError)
    async def field_assistant_error(request: Request, exc: FieldAssistantError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimitExceeded):
            headers = quota_headers(exc.quota)
        elif isinstance(exc, Unauthorized):
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(status_code=exc.status_code, content=exc.payload(), headers=headers)

    @application.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid message structure"})


def create_app(
    config: AssistantConfig | None = None,
    model_client: ModelClient | None = None,
    retrieval_provider: RetrievalProvider | None = None,
    document_registry: DocumentRegistry | None = None,
    audit_store: AuditStore | None = None,
    quota_store: QuotaStore | None = None,
    token_resolver: TokenResolver | None = None,
) -> FastAPI:
    """
    Application factory -- creates and configures the FastAPI app.

    Every collaborator is optional; missing ones are built from the
    environment (see module docstring). Tests pass in-memory versions.
    """
    config = config or AssistantConfig.from_env()
    check_production_auth(custom_resolver=token_resolver is not None)

    application = FastAPI(
        title="Field Assistant API",
        description="Document-grounded AI assistant for field service technicians",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Used", "X-RateLimit-Tier"],
    )

    if model_client is None:
        model_client = create_client(provider=config.provider, model=config.model)
    if retrieval_provider is None and document_registry is None:
        retrieval_provider, document_registry = _retrieval_from_env()

    application.state.orchestrator = FieldAssistantOrchestrator(
        model_client=model_client,
        retrieval_provider=retrieval_provider,
        document_registry=document_registry,
        audit_store=audit_store or SQLiteAuditStore(config.db_path),
        config=config,
    )
    application.state.quota_store = quota_store or SQLiteQuotaStore(config.db_path)
    application.state.token_resolver = token_resolver or ApiKeyResolver.from_env()
    application.state.start_time = time.time()

    _register_error_handlers(application)
    application.include_router(health.router, tags=["Health"])
    application.include_router(
        field_assistant.router, prefix="/api/v1", tags=["Field Assistant"]
    )

    logger.info(
        f"[Gateway] API gateway initialized (model={config.model}, "
        f"stream_mode={config.stream_mode})"
    )
    return application
