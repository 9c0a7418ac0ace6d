"""Data models for retrieval and evidence gating."""

from dataclasses import dataclass, field


@dataclass
class TenantDocument:
    """A document uploaded by a tenant, as listed by the document registry.

    Attributes:
        name: Display name. Citations are matched against it.
        category: Free-form grouping ("Manual", "Warranty", ...).
        extracted_text: Full extracted text, if extraction has finished.
        has_embeddings: True once the document is indexed for semantic search.
    """

    name: str
    category: str = "General"
    description: str = ""
    extracted_text: str = ""
    has_embeddings: bool = False

    @property
    def has_content(self) -> bool:
        return bool(self.extracted_text)


@dataclass
class RetrievedChunk:
    """A ranked chunk of document text returned by the retrieval provider.

    injection_detected is set by the sanitizer; the text itself is then the
    redacted version.
    """

    id: str
    chunk_text: str
    similarity: float
    document_name: str = ""
    document_category: str = "General"
    injection_detected: bool = False


@dataclass
class GateDecision:
    """Outcome of the retrieval gate for one request."""

    usable_chunks: list[RetrievedChunk] = field(default_factory=list)
    requires_human_review: bool = False
    is_escalation_query: bool = False
    limited_coverage: bool = False
    rules_triggered: list[str] = field(default_factory=list)

    @property
    def sufficient(self) -> bool:
        return not self.requires_human_review
