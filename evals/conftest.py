"""Eval fixtures -- fake streaming model, tenant documents, orchestrator, API app."""

import pytest

from field_assistant.api.middleware.auth import ApiKeyResolver, AuthContext
from field_assistant.api.middleware.rate_limit import InMemoryQuotaStore
from field_assistant.audit.store import InMemoryAuditStore
from field_assistant.config import AssistantConfig
from field_assistant.orchestration.field_assistant import FieldAssistantOrchestrator
from field_assistant.retrieval.models import TenantDocument
from field_assistant.retrieval.providers import InMemoryDocumentRegistry, StaticRetrievalProvider

from .fakes import (
    AIRFLOW_TEXT,
    API_KEY,
    CHARGING_TEXT,
    CITED_ANSWER,
    MANUAL_NAME,
    TENANT_ID,
    FakeModelClient,
    make_chunk,
)


@pytest.fixture
def auth():
    return AuthContext(user_id="user-abc", tenant_id=TENANT_ID, tier="trial", country="US")


@pytest.fixture
def manual():
    return TenantDocument(
        name=MANUAL_NAME,
        category="Manual",
        description="Installation and service instructions",
        extracted_text=CHARGING_TEXT + "\n\n" + AIRFLOW_TEXT,
        has_embeddings=True,
    )


@pytest.fixture
def registry(manual):
    return InMemoryDocumentRegistry({TENANT_ID: [manual]})


@pytest.fixture
def retrieval():
    return StaticRetrievalProvider({
        TENANT_ID: [
            make_chunk("chunk-charge", 0.86),
            make_chunk("chunk-airflow", 0.74, text=AIRFLOW_TEXT),
        ]
    })


@pytest.fixture
def audit_store():
    return InMemoryAuditStore()


@pytest.fixture
def model():
    return FakeModelClient(CITED_ANSWER)


@pytest.fixture
def make_orchestrator(model, retrieval, registry, audit_store):
    """Build an orchestrator; keyword arguments replace the default collaborators."""

    def factory(**overrides):
        return FieldAssistantOrchestrator(
            model_client=overrides.get("model_client", model),
            retrieval_provider=overrides.get("retrieval_provider", retrieval),
            document_registry=overrides.get("document_registry", registry),
            audit_store=overrides.get("audit_store", audit_store),
            config=overrides.get("config", AssistantConfig()),
        )

    return factory


@pytest.fixture
def quota_store():
    return InMemoryQuotaStore()


@pytest.fixture
def make_app(tmp_path, model, retrieval, registry, audit_store, quota_store, monkeypatch):
    """Build the API with in-memory collaborators and one API key for TENANT_ID."""
    from field_assistant.api.gateway import create_app

    monkeypatch.delenv("CORS_ORIGINS", raising=False)

    def factory(tier="trial", **overrides):
        resolver = ApiKeyResolver()
        resolver.add(API_KEY, tenant_id=TENANT_ID, tier=tier)
        return create_app(
            config=overrides.get("config", AssistantConfig(db_path=tmp_path / "api.db")),
            model_client=overrides.get("model_client", model),
            retrieval_provider=overrides.get("retrieval_provider", retrieval),
            document_registry=overrides.get("document_registry", registry),
            audit_store=overrides.get("audit_store", audit_store),
            quota_store=overrides.get("quota_store", quota_store),
            token_resolver=resolver,
        )

    return factory
