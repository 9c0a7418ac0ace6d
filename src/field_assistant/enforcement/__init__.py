"""
Response Enforcement -- decides whether a model response may be delivered.

Runs after the complete model response has been received and before any of
it is committed to the caller (buffered mode) or finalized (speculative mode).

Components:
  - claims: The single claim-pattern table (blocked, technical, numeric)
  - ResponseValidator: Global and per-paragraph citation enforcement
  - CitationValidator: Checks that cited sources exist (pluggable registry)
  - NumericClaimVerifier: Numeric values must appear in the source text
  - EnforcementPipeline: Runs all of the above plus truncation, the warranty
    disclaimer and human-review triggers
"""

from .citation_validator import CitationValidator, DocumentSourceRegistry, SourceRegistry
from .models import ParagraphReport, ReviewResult, ValidationResult, Violation
from .numeric_verifier import NumericClaimVerifier
from .pipeline import EnforcementPipeline
from .response_validator import ResponseValidator

__all__ = [
    "CitationValidator",
    "DocumentSourceRegistry",
    "EnforcementPipeline",
    "NumericClaimVerifier",
    "ParagraphReport",
    "ResponseValidator",
    "ReviewResult",
    "SourceRegistry",
    "ValidationResult",
    "Violation",
]
