"""
RetrievalGate -- decide whether retrieved evidence is enough to answer.

Rules, applied in order:
  1. Escalation queries (warranty, coverage, void, compliance, liability,
     safety procedure) drop every chunk below the escalation floor (0.65).
  2. Escalation queries that retrieved anything then need at least 2
     surviving chunks, or exactly one chunk that is both strong (>= 0.8)
     and long (>= 200 chars). An empty retrieval is not gated here; the
     response validator decides.
  3. Any query left with exactly one weak chunk requires human review.
  4. Near-duplicate chunks (> 70% word overlap with an earlier chunk) are
     removed from the usable set.

Chunks flagged by the sanitizer stay in the set with their redacted text.
When human review is required the orchestrator refuses without calling
the model.

Usage:
    gate = RetrievalGate()
    decision = gate.evaluate(chunks, "Is the compressor covered by warranty?")
    if decision.requires_human_review:
        ...
"""

import logging
import re

from ..config import GateConfig
from .models import GateDecision, RetrievedChunk

logger = logging.getLogger(__name__)

ESCALATION_KEYWORDS = re.compile(
    r"warranty|coverage|void|compliance|liability|safety\s+procedure",
    re.IGNORECASE,
)


def is_escalation_query(query_text: str) -> bool:
    """True if the query touches warranty, compliance or safety topics."""
    return bool(query_text) and ESCALATION_KEYWORDS.search(query_text) is not None


def retrieval_quality_score(chunks: list[RetrievedChunk]) -> int:
    """
    Score evidence quality 0-100.

    50% best similarity, 30% mean similarity, 20% chunk count (saturates at 5).
    """
    if not chunks:
        return 0
    similarities = [c.similarity for c in chunks]
    best = max(similarities)
    mean = sum(similarities) / len(similarities)
    coverage = min(len(chunks) / 5, 1.0)
    return round(best * 50 + mean * 30 + coverage * 20)


def confidence_tier(score: int) -> str:
    if score >= 75:
        return "high"
    if score >= 50:
        return "medium"
    return "low"


def deduplicate_chunks(
    chunks: list[RetrievedChunk], overlap_ratio: float = 0.7
) -> list[RetrievedChunk]:
    """Drop chunks whose words mostly repeat an earlier chunk (chunker overlap)."""
    kept: list[RetrievedChunk] = []
    for chunk in chunks:
        words = chunk.chunk_text.lower().split()
        duplicate = False
        for existing in kept:
            existing_words = set(existing.chunk_text.lower().split())
            overlap = sum(1 for w in words if w in existing_words)
            if overlap / max(len(words), 1) > overlap_ratio:
                duplicate = True
                break
        if not duplicate:
            kept.append(chunk)
    return kept


class RetrievalGate:
    """Applies similarity, sufficiency and duplicate rules to retrieved chunks."""

    def __init__(self, config: GateConfig | None = None):
        self._config = config or GateConfig()

    def _is_strong(self, chunk: RetrievedChunk) -> bool:
        return (
            chunk.similarity >= self._config.single_chunk_min_similarity
            and len(chunk.chunk_text) >= self._config.single_chunk_min_length
        )

    def evaluate(self, chunks: list[RetrievedChunk], query_text: str) -> GateDecision:
        """Grade retrieved chunks for the given query."""
        cfg = self._config
        decision = GateDecision(is_escalation_query=is_escalation_query(query_text))
        usable = list(chunks)

        for chunk in usable:
            if chunk.injection_detected:
                decision.rules_triggered.append(f"CHUNK_REDACTED:{chunk.id}")

        if decision.is_escalation_query and usable:
            before = len(usable)
            usable = [c for c in usable if c.similarity >= cfg.escalation_similarity_floor]
            if len(usable) < before:
                decision.rules_triggered.append("ESCALATION_SIMILARITY_FILTER")
                logger.info(
                    f"[Gate] Escalation filter (>={cfg.escalation_similarity_floor}): "
                    f"{before} -> {len(usable)} chunks"
                )

        if (
            decision.is_escalation_query
            and chunks
            and len(usable) < cfg.escalation_min_chunks
        ):
            if not (len(usable) == 1 and self._is_strong(usable[0])):
                decision.requires_human_review = True
                decision.rules_triggered.append("ESCALATION_INSUFFICIENT_CHUNKS")
                logger.warning(
                    f"[Gate] Escalation query with {len(usable)} chunk(s) "
                    f"at >={cfg.escalation_similarity_floor} requires human review"
                )

        if len(usable) == 1:
            single = usable[0]
            decision.limited_coverage = True
            if not self._is_strong(single):
                decision.requires_human_review = True
                decision.rules_triggered.append(
                    f"SINGLE_CHUNK_WEAK:sim={single.similarity:.2f},"
                    f"len={len(single.chunk_text)}"
                )
                logger.warning(
                    f"[Gate] Single chunk insufficient: similarity="
                    f"{single.similarity:.2f}, length={len(single.chunk_text)}"
                )

        if len(usable) > 1:
            deduped = deduplicate_chunks(usable, cfg.duplicate_overlap_ratio)
            if len(deduped) < len(usable):
                logger.info(f"[Gate] Deduplication: {len(usable)} -> {len(deduped)} chunks")
                decision.rules_triggered.append("CHUNK_DEDUPLICATION")
            usable = deduped

        decision.usable_chunks = usable
        return decision
