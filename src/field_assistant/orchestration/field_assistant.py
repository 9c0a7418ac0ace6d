"""
FieldAssistantOrchestrator -- sequences the guardrail pipeline for one request.

States:
  RECEIVED -> INJECTION_CHECKED -> RETRIEVED -> GATED -> MODEL_CALLED
  -> VALIDATED -> RESPONDED | REFUSED | REJECTED

  RECEIVED -> REJECTED        injection in any user message (InjectionDetected)
  GATED -> REFUSED            gate requires human review (no model call)
  VALIDATED -> REFUSED        enforcement rejected the model output
  VALIDATED -> RESPONDED      output delivered with ResponseMetadata

Every terminal state writes exactly one AuditRecord. Audit write failures
are logged and never change what the caller receives.

Streaming modes (AssistantConfig.stream_mode):
  buffered     the full model output is reviewed before any content is sent
  speculative  deltas are forwarded as they arrive; a rejected response is
               followed by a retraction event and the canonical refusal

Usage:
    orchestrator = FieldAssistantOrchestrator(model_client, retrieval, registry, audit)
    run = await orchestrator.start(request, auth)      # raises InjectionDetected
    async for event in run.events():
        ...
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass, field
from enum import Enum

from ..api.models.requests import FieldAssistantRequest
from ..audit.models import AuditRecord, TerminalState, sha256_hex
from ..audit.store import AuditStore, InMemoryAuditStore
from ..compliance.code_detection import code_compliance_active
from ..config import (
    CANONICAL_REFUSAL,
    DETERMINISTIC_PARAMETERS,
    INJECTION_BLOCK_MESSAGE,
    AssistantConfig,
)
from ..enforcement.claims import has_citation
from ..enforcement.pipeline import EnforcementPipeline
from ..errors import InjectionDetected, UpstreamModelFailure
from ..llm.client import ModelClient, estimate_tokens
from ..retrieval.context import (
    build_chunk_context,
    build_document_context,
    document_listing,
    extract_search_query,
    latest_user_text,
    message_text,
    sanitize_chunks,
)
from ..retrieval.gate import RetrievalGate, confidence_tier, retrieval_quality_score
from ..retrieval.models import RetrievedChunk
from ..retrieval.providers import DocumentRegistry, InMemoryDocumentRegistry, RetrievalProvider
from ..security.prompt_guard import detect_injection
from .prompts import build_system_prompt

logger = logging.getLogger(__name__)


# =============================================================================
# DATA MODELS
# =============================================================================


class PipelineState(Enum):
    """Where a request is in the guardrail pipeline."""

    RECEIVED = "received"
    INJECTION_CHECKED = "injection_checked"
    RETRIEVED = "retrieved"
    GATED = "gated"
    MODEL_CALLED = "model_called"
    VALIDATED = "validated"
    RESPONDED = "responded"
    REFUSED = "refused"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class ResponseMetadata:
    """Confidence information returned with every response."""

    retrieval_quality_score: int = 0
    confidence: str = "low"
    chunk_count: int = 0
    documents_used: int = 0
    refused: bool = False
    requires_human_review: bool = False
    limited_coverage: bool = False
    code_reference_active: bool = False
    human_review_reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StreamEvent:
    """One event for the caller: a content delta, a retraction, or the final metadata."""

    kind: str  # "content", "retraction", "metadata"
    content: str = ""
    reason: str = ""
    metadata: ResponseMetadata | None = None


def _metadata_for(chunks: list[RetrievedChunk], **flags) -> ResponseMetadata:
    score = retrieval_quality_score(chunks)
    return ResponseMetadata(
        retrieval_quality_score=score,
        confidence=confidence_tier(score),
        chunk_count=len(chunks),
        documents_used=len({c.document_name for c in chunks}),
        **flags,
    )


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class FieldAssistantOrchestrator:
    """
    Holds the collaborators; each request gets its own PipelineRun.

    No state is kept between requests.
    """

    def __init__(
        self,
        model_client: ModelClient,
        retrieval_provider: RetrievalProvider | None = None,
        document_registry: DocumentRegistry | None = None,
        audit_store: AuditStore | None = None,
        config: AssistantConfig | None = None,
    ):
        self.model_client = model_client
        self.retrieval_provider = retrieval_provider
        self.document_registry = document_registry or InMemoryDocumentRegistry()
        self.audit_store = audit_store or InMemoryAuditStore()
        self.config = config or AssistantConfig()
        self.gate = RetrievalGate(self.config.gate)
        self.enforcement = EnforcementPipeline(self.config.validator)

    @property
    def model_name(self) -> str:
        name = getattr(self.model_client, "model", None)
        return name if isinstance(name, str) and name else self.config.model

    async def start(self, request: FieldAssistantRequest, auth) -> "PipelineRun":
        """
        Begin a request: scan every user message for prompt injection.

        Raises:
            InjectionDetected: a user message matched an injection pattern
                (the rejection is audited first).
        """
        run = PipelineRun(self, request, auth)
        run.check_injection()
        return run

    async def respond(self, request: FieldAssistantRequest, auth) -> tuple[str, ResponseMetadata]:
        """Run the whole pipeline and return the delivered text and metadata."""
        run = await self.start(request, auth)
        content = ""
        metadata = ResponseMetadata()
        async for event in run.events():
            if event.kind == "content":
                content += event.content
            elif event.kind == "retraction":
                content = ""
            elif event.kind == "metadata":
                metadata = event.metadata
        return content, metadata

    def write_audit(self, record: AuditRecord) -> None:
        try:
            self.audit_store.write(record)
        except Exception as e:
            logger.error(
                f"[Orchestrator] Audit write failed for tenant={record.tenant_id} "
                f"state={record.terminal_state}: {type(e).__name__}: {e}"
            )


class PipelineRun:
    """State machine for a single request."""

    def __init__(self, orchestrator: FieldAssistantOrchestrator, request: FieldAssistantRequest, auth):
        self._o = orchestrator
        self.request = request
        self.auth = auth
        self.state = PipelineState.RECEIVED
        self.audit_record: AuditRecord | None = None
        self.user_message = latest_user_text(request.messages)
        self._started = time.monotonic()
        context = request.context
        equipment = context.equipment
        self._trace: dict = {
            "context_type": context.context_type,
            "context_id": context.context_id,
            "equipment_type": equipment.equipment_type if equipment else None,
            "conversation_id": request.conversation_id,
        }

    # -- audit -----------------------------------------------------------------

    def _record(self, **fields) -> None:
        self._trace.update(fields)

    def _finish(self, terminal_state: str, **fields) -> None:
        """Write the one audit record for this request."""
        if self.audit_record is not None:
            return
        limit = self._o.config.limits.max_audit_message_length
        values = {**self._trace, **fields}
        self.audit_record = AuditRecord(
            tenant_id=self.auth.tenant_id,
            user_id=self.auth.user_id,
            user_message=self.user_message[:limit],
            terminal_state=terminal_state,
            model=self._o.model_name,
            response_latency_ms=int((time.monotonic() - self._started) * 1000),
            **values,
        )
        self.state = PipelineState(terminal_state)
        self._o.write_audit(self.audit_record)

    # -- RECEIVED -> INJECTION_CHECKED -------------------------------------------

    def check_injection(self) -> None:
        for message in self.request.messages:
            if message.role != "user":
                continue
            result = detect_injection(message_text(message))
            if result.is_injection:
                logger.warning(
                    f"[Orchestrator] Prompt injection blocked for tenant={self.auth.tenant_id}: "
                    f"{result.matched_pattern}"
                )
                self._finish(
                    TerminalState.REJECTED,
                    response_text=INJECTION_BLOCK_MESSAGE,
                    blocked=True,
                    block_reason=f"Prompt injection detected: {result.matched_pattern}",
                    injection_detected=True,
                    matched_patterns=(result.matched_pattern,),
                )
                raise InjectionDetected(INJECTION_BLOCK_MESSAGE, [result.matched_pattern])
        self.state = PipelineState.INJECTION_CHECKED

    # -- INJECTION_CHECKED -> terminal -----------------------------------------

    async def _retrieve(self, has_embedded_documents: bool) -> list[RetrievedChunk]:
        cfg = self._o.config.retrieval
        provider = self._o.retrieval_provider
        query = extract_search_query(
            self.request.messages, cfg.recent_user_messages, cfg.max_query_length
        )
        if provider is None or not has_embedded_documents or len(query) <= cfg.min_query_length:
            return []
        try:
            chunks = await provider.search(
                self.auth.tenant_id, query, cfg.top_k, cfg.similarity_threshold
            )
        except ConnectionError as e:
            logger.warning(f"[Orchestrator] Retrieval failed, continuing without chunks: {e}")
            return []
        logger.info(f"[Orchestrator] Retrieved {len(chunks)} chunk(s) for tenant={self.auth.tenant_id}")
        return sanitize_chunks(chunks)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Run the pipeline from retrieval to a terminal state, yielding caller events."""
        if self.state is not PipelineState.INJECTION_CHECKED:
            raise RuntimeError(f"PipelineRun.events() called in state {self.state.name}")

        o = self._o
        context = self.request.context
        try:
            documents = await o.document_registry.list_documents(self.auth.tenant_id)
        except ConnectionError as e:
            logger.warning(f"[Orchestrator] Document registry unavailable, continuing without documents: {e}")
            documents = []
        with_content = [d for d in documents if d.has_content]
        self._record(
            documents_available=len(documents),
            documents_with_content=len(with_content),
            document_names=tuple(d.name for d in documents),
        )

        chunks = await self._retrieve(any(d.has_embeddings for d in documents))
        self.state = PipelineState.RETRIEVED

        decision = o.gate.evaluate(chunks, self.user_message)
        usable = decision.usable_chunks
        self.state = PipelineState.GATED
        self._record(
            rules_triggered=tuple(decision.rules_triggered),
            injection_detected=any(c.injection_detected for c in chunks),
        )

        if decision.requires_human_review:
            logger.warning(
                f"[Orchestrator] Human review required, model not called: "
                f"{', '.join(decision.rules_triggered)}"
            )
            self._finish(
                TerminalState.REFUSED,
                response_text=CANONICAL_REFUSAL,
                output_hash=sha256_hex(CANONICAL_REFUSAL),
                blocked=True,
                refused=True,
                block_reason=f"Human review required: {', '.join(decision.rules_triggered)}",
                human_review_required=True,
                response_tokens_estimate=estimate_tokens(CANONICAL_REFUSAL),
            )
            yield StreamEvent(kind="content", content=CANONICAL_REFUSAL)
            yield StreamEvent(
                kind="metadata",
                metadata=ResponseMetadata(refused=True, requires_human_review=True),
            )
            return

        max_chars = o.config.retrieval.max_context_chars
        if usable:
            evidence = build_chunk_context(usable, max_chars)
        else:
            evidence = build_document_context(with_content, max_chars)

        country = context.country if "country" in context.model_fields_set else self.auth.country
        code_active, detection = code_compliance_active(
            context.code_reference_enabled, self.user_message, country
        )
        system_prompt = build_system_prompt(
            context,
            document_listing=document_listing(documents),
            evidence_context=evidence,
            limited_coverage=decision.limited_coverage,
            chunk_count=len(usable),
            code_detection=detection if context.code_reference_enabled else None,
        )
        messages = [{"role": "system", "content": system_prompt}] + [
            m.as_model_message() for m in self.request.messages
        ]
        self._record(
            chunk_ids=tuple(c.id for c in usable),
            similarity_scores=tuple(c.similarity for c in usable),
            retrieval_quality_score=retrieval_quality_score(usable),
            system_prompt_hash=sha256_hex(system_prompt),
            prompt_tokens_estimate=estimate_tokens(system_prompt)
            + sum(estimate_tokens(message_text(m)) for m in self.request.messages),
        )

        speculative = o.config.stream_mode == "speculative"
        parts: list[str] = []
        self.state = PipelineState.MODEL_CALLED
        try:
            async for delta in o.model_client.stream_chat(messages, DETERMINISTIC_PARAMETERS):
                parts.append(delta)
                if speculative:
                    yield StreamEvent(kind="content", content=delta)
        except UpstreamModelFailure as e:
            self._finish(
                TerminalState.FAILED,
                response_text="".join(parts),
                block_reason=f"Upstream model failure: {e.message}",
                response_complete=False,
            )
            raise
        except (asyncio.CancelledError, GeneratorExit):
            logger.info("[Orchestrator] Caller disconnected, model stream abandoned")
            self._finish(
                TerminalState.FAILED,
                response_text="".join(parts),
                block_reason="Caller disconnected before the response completed",
                output_hash=sha256_hex("".join(parts)),
                response_complete=False,
            )
            raise

        raw = "".join(parts)
        review = o.enforcement.review(
            raw,
            has_documents=bool(with_content) or bool(usable),
            document_names=[d.name for d in documents] or None,
            source_text=evidence,
            query_text=self.user_message,
            code_reference_active=code_active,
        )
        self.state = PipelineState.VALIDATED

        self._finish(
            TerminalState.RESPONDED if review.valid else TerminalState.REFUSED,
            response_text=raw,
            output_hash=sha256_hex(raw),
            blocked=not review.valid,
            refused=not review.valid,
            block_reason=review.reason or None,
            matched_patterns=tuple(review.matched_patterns),
            has_citation=has_citation(raw),
            human_review_required=review.requires_human_review,
            human_review_reasons=tuple(review.human_review_reasons),
            response_tokens_estimate=estimate_tokens(raw),
        )

        if not speculative:
            yield StreamEvent(kind="content", content=review.content)
        elif review.content.startswith(raw):
            if len(review.content) > len(raw):
                yield StreamEvent(kind="content", content=review.content[len(raw):])
        else:
            yield StreamEvent(kind="retraction", reason=review.reason or "Response replaced")
            yield StreamEvent(kind="content", content=review.content)

        yield StreamEvent(
            kind="metadata",
            metadata=_metadata_for(
                [] if not review.valid else usable,
                refused=not review.valid,
                requires_human_review=review.requires_human_review,
                limited_coverage=decision.limited_coverage,
                code_reference_active=code_active,
                human_review_reasons=list(review.human_review_reasons),
            ),
        )
