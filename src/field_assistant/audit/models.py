"""
Audit data models.

One AuditRecord is written per request, at its terminal state. Records are
frozen: nothing in this package mutates or deletes one after it is built.
Sequence fields are tuples for the same reason.
"""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


class TerminalState:
    """Terminal states of the request pipeline."""

    RESPONDED = "responded"
    REFUSED = "refused"
    REJECTED = "rejected"
    FAILED = "failed"  # upstream model error or caller disconnect


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class AuditRecord:
    """
    Immutable trace of one field-assistant request.

    tenant_id/user_id: who asked.
    context_type/context_id: "job", "equipment" or "general" and the record id.
    blocked/block_reason: set when the response was replaced or the input rejected.
    matched_patterns: validator pattern sources and rule markers that fired.
    response_complete: False when the caller disconnected before the model
        finished; response_text then holds what had been received.
    """

    tenant_id: str
    user_id: str
    user_message: str
    terminal_state: str
    context_type: str = "general"
    context_id: str | None = None
    equipment_type: str | None = None
    conversation_id: str | None = None
    response_text: str = ""
    blocked: bool = False
    block_reason: str | None = None
    refused: bool = False
    injection_detected: bool = False
    documents_available: int = 0
    documents_with_content: int = 0
    document_names: tuple[str, ...] = ()
    chunk_ids: tuple[str, ...] = ()
    similarity_scores: tuple[float, ...] = ()
    retrieval_quality_score: int = 0
    matched_patterns: tuple[str, ...] = ()
    rules_triggered: tuple[str, ...] = ()
    has_citation: bool = False
    human_review_required: bool = False
    human_review_reasons: tuple[str, ...] = ()
    system_prompt_hash: str | None = None
    output_hash: str | None = None
    prompt_tokens_estimate: int = 0
    response_tokens_estimate: int = 0
    response_latency_ms: int = 0
    response_complete: bool = True
    model: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=_utc_now)
