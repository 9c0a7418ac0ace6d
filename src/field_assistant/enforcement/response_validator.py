"""
ResponseValidator -- enforce the citation requirement on a complete model response.

Two granularities over the same claim table (claims.py):

  validate()            -- global: any blocked claim needs a citation somewhere;
                           citations need documents; cited sources must exist
  validate_paragraphs() -- per paragraph: every technical paragraph over the
                           minimum length needs its own citation

Usage:
    validator = ResponseValidator()
    result = validator.validate(text, has_documents=True, document_names=["Service Manual"])
    if not result.valid:
        ...  # deliver the canonical refusal instead
"""

import logging
import re

from ..config import ValidatorConfig
from .citation_validator import CitationValidator, DocumentSourceRegistry
from .claims import blocked_matches, has_citation, has_code_citation, is_technical
from .models import ParagraphReport, ValidationResult, Violation

logger = logging.getLogger(__name__)

PARAGRAPH_SPLIT = re.compile(r"\n\s*\n+")


class ResponseValidator:
    """Global and per-paragraph citation enforcement."""

    def __init__(self, config: ValidatorConfig | None = None):
        self._config = config or ValidatorConfig()

    @property
    def paragraph_policy(self) -> str:
        return self._config.paragraph_policy

    def validate(
        self,
        text: str,
        has_documents: bool,
        code_reference_active: bool = False,
        document_names: list[str] | None = None,
    ) -> ValidationResult:
        """
        Decide whether the response may be delivered.

        Rejects when:
          - a blocked claim appears and the response has no citation
            (code citations count only when code_reference_active)
          - a citation appears but no documents were available and it is
            not a code citation in code mode
          - a cited source matches no known document name or code prefix
            (skipped when document_names is None)
        """
        matches = blocked_matches(text)
        matched_patterns = [claim.pattern.pattern for claim, _ in matches]
        doc_citation = has_citation(text)
        code_citation = code_reference_active and has_code_citation(text)

        if matches and not doc_citation and not code_citation:
            violations = [
                Violation(
                    rule=f"uncited_claim:{claim.category}",
                    severity="critical",
                    message=claim.message,
                    location=fragment,
                )
                for claim, fragment in matches
            ]
            first = matches[0][0]
            logger.warning(
                f"[Validator] Uncited technical claim ({first.category}): "
                f"{matches[0][1]!r}"
            )
            return ValidationResult(
                outcome="rejected",
                violations=violations,
                reason=(
                    "Response contains technical information without documentation "
                    f"citation. Pattern detected: {first.pattern.pattern}"
                ),
                matched_patterns=matched_patterns,
            )

        if doc_citation and not has_documents and not code_citation:
            logger.warning("[Validator] Citation present but no documents are available")
            return ValidationResult(
                outcome="rejected",
                violations=[Violation(
                    rule="citation:no_documents",
                    severity="critical",
                    message="Citation present but no documentation is available",
                )],
                reason=(
                    "Response cites a source but no documentation is available "
                    "in the system."
                ),
                matched_patterns=matched_patterns + ["CITATION_WITHOUT_DOCUMENTS"],
            )

        if document_names is not None and doc_citation:
            registry = DocumentSourceRegistry(document_names, code_reference_active)
            citation_result = CitationValidator(registry).check(text)
            if not citation_result.valid:
                citation_result.matched_patterns = (
                    matched_patterns + citation_result.matched_patterns
                )
                return citation_result

        return ValidationResult(outcome="accepted", matched_patterns=matched_patterns)

    def validate_paragraphs(self, text: str) -> ParagraphReport:
        """Count technical paragraphs and how many of them lack their own citation."""
        report = ParagraphReport()
        for paragraph in PARAGRAPH_SPLIT.split(text):
            if len(paragraph.strip()) <= self._config.min_paragraph_length:
                continue
            if not is_technical(paragraph):
                continue
            report.total_technical_paragraphs += 1
            if not has_citation(paragraph):
                report.uncited_paragraphs += 1
        return report

    def check_paragraphs(self, text: str) -> ValidationResult:
        """Apply the configured paragraph policy to validate_paragraphs()."""
        report = self.validate_paragraphs(text)
        if report.uncited_paragraphs == 0:
            return ValidationResult(outcome="accepted")

        marker = (
            f"UNCITED_PARAGRAPHS: {report.uncited_paragraphs}/"
            f"{report.total_technical_paragraphs}"
        )
        if not report.rejects(self.paragraph_policy):
            return ValidationResult(outcome="challenged", matched_patterns=[marker])

        logger.warning(f"[Validator] {marker} ({self.paragraph_policy} policy)")
        return ValidationResult(
            outcome="rejected",
            violations=[Violation(
                rule="uncited_paragraph",
                severity="critical",
                message="Technical paragraphs need individual citations",
            )],
            reason=(
                f"{report.uncited_paragraphs} of {report.total_technical_paragraphs} "
                "technical paragraphs lack individual citations"
            ),
            matched_patterns=[marker],
        )
