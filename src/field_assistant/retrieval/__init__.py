"""Retrieval -- evidence providers, the retrieval gate, and context assembly."""
from .gate import (
    RetrievalGate,
    confidence_tier,
    deduplicate_chunks,
    is_escalation_query,
    retrieval_quality_score,
)
from .models import GateDecision, RetrievedChunk, TenantDocument
from .providers import (
    DocumentRegistry,
    HttpDocumentRegistry,
    HttpRetrievalProvider,
    InMemoryDocumentRegistry,
    RetrievalProvider,
    StaticRetrievalProvider,
)
