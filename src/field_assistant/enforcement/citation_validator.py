"""
CitationValidator -- checks that cited sources actually exist.

Uses a pluggable SourceRegistry protocol. DocumentSourceRegistry matches
citations against the tenant's uploaded document names (case-insensitive
equality or containment in either direction) and, only when code-reference
mode is active for the request, against known regulatory-code prefixes.
"""

import logging
from typing import Protocol, runtime_checkable

from .claims import KNOWN_CODE_PREFIXES, SOURCE_NAME_PATTERN
from .models import ValidationResult, Violation

logger = logging.getLogger(__name__)


@runtime_checkable
class SourceRegistry(Protocol):
    """Protocol for validating that cited sources exist."""

    def source_exists(self, source_name: str) -> bool:
        """Check if a named source is known to the system."""
        ...


def fuzzy_name_match(cited: str, known: str) -> bool:
    """Case-insensitive equality or containment in either direction."""
    cited_norm = cited.strip().lower()
    known_norm = known.strip().lower()
    if not cited_norm or not known_norm:
        return False
    return cited_norm == known_norm or cited_norm in known_norm or known_norm in cited_norm


class DocumentSourceRegistry:
    """Known sources for one request: the tenant's document names, plus codes in code mode."""

    def __init__(self, document_names: list[str], code_reference_active: bool = False):
        self._document_names = [n for n in document_names if n and n.strip()]
        self._code_reference_active = code_reference_active

    def source_exists(self, source_name: str) -> bool:
        if self._code_reference_active:
            upper = source_name.strip().upper()
            if any(upper.startswith(prefix) for prefix in KNOWN_CODE_PREFIXES):
                return True
        return any(fuzzy_name_match(source_name, name) for name in self._document_names)


class CitationValidator:
    """Validates that cited sources exist in the configured registry.

    Usage:
        validator = CitationValidator(DocumentSourceRegistry(["Service Manual"]))
        result = validator.check("350 PSI [Source: Service Manual]")
    """

    def __init__(self, registry: SourceRegistry):
        self._registry = registry

    def check(self, text: str) -> ValidationResult:
        """Validate all source citations in text."""
        violations = []
        for match in SOURCE_NAME_PATTERN.finditer(text):
            source = match.group(1).strip()
            if not source:
                continue
            if not self._registry.source_exists(source):
                violations.append(Violation(
                    rule="citation:fabricated_source",
                    severity="critical",
                    message=f"Source '{source}' is not an uploaded document or known code",
                    location=match.group(0),
                ))

        if not violations:
            return ValidationResult(outcome="accepted")

        unknown = ", ".join(v.location for v in violations)
        logger.warning(f"[CitationValidator] Fabricated citation(s): {unknown}")
        return ValidationResult(
            outcome="rejected",
            violations=violations,
            reason=(
                f"Response cites unknown documents: {unknown}. "
                "Only uploaded documents and known code references are allowed."
            ),
            matched_patterns=["FABRICATED_CITATION"],
        )
