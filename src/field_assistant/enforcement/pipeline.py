"""
EnforcementPipeline -- final review of a complete model response.

Runs, in order:
  1. ResponseValidator.validate      (global citation rules, fabricated sources)
  2. NumericClaimVerifier.check      (numeric values must appear in the sources)
  3. Length limit                    (truncate at a sentence boundary)
  4. ResponseValidator.check_paragraphs (per-paragraph citations, when documents exist)
  5. Warranty disclaimer             (appended when warranty language survives)
  6. Human-review triggers           (recorded for the audit trail, never block)

Any rejection replaces the whole response with the canonical refusal. The
model's text is never partially redacted. There is no rewrite loop: a
rejected response is refused, not retried.
"""

import logging
import re

from ..config import CANONICAL_REFUSAL, ValidatorConfig
from .models import ReviewResult, ValidationResult
from .numeric_verifier import NumericClaimVerifier
from .response_validator import ResponseValidator

logger = logging.getLogger(__name__)

WARRANTY_DISCLAIMER = (
    "\n\n---\n**IMPORTANT DISCLAIMER:** Warranty information provided is based solely "
    "on uploaded documentation and may not reflect the most current warranty terms. "
    "Always verify warranty coverage directly with the manufacturer or your "
    "organization's warranty administrator before making service decisions that "
    "depend on warranty status."
)

WARRANTY_LANGUAGE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"warranty|warranted|warrantee",
        r"covered\s+(?:under|by)|coverage\s+(?:period|term)",
        r"manufacturer(?:'s)?\s+(?:guarantee|liability|responsibility)",
        r"void(?:ed|ing)?\s+(?:the\s+)?warranty",
        r"parts?\s+and\s+labor\s+(?:coverage|warranty)",
        r"claim\s+(?:process|procedure|filing)",
    )
]

HUMAN_REVIEW_TRIGGERS: dict[str, re.Pattern] = {
    "warrantyDecision": re.compile(
        r"warranty.*(?:void|claim|approve|deny|decline|coverage)", re.IGNORECASE
    ),
    "safetyProcedure": re.compile(
        r"lockout|tagout|hazardous|high\s*voltage|gas\s*leak|refrigerant\s*recovery",
        re.IGNORECASE,
    ),
    "legalLanguage": re.compile(
        r"liability|negligence|compliance\s*violation|code\s*violation|recall",
        re.IGNORECASE,
    ),
    "costEstimate": re.compile(r"\$\s*\d+|cost\s*estimate|price\s*quote", re.IGNORECASE),
}

TRUNCATION_NOTICE = "\n\n[Response truncated for length. Please ask a more specific question.]"
TRUNCATION_NOTICE_SHORT = "\n\n[Response truncated for length.]"


def truncate_response(text: str, max_chars: int) -> tuple[str, bool]:
    """Cut text to max_chars, at the last sentence end when one is in the final 20%."""
    if len(text) <= max_chars:
        return text, False
    cut = text[:max_chars]
    last_period = cut.rfind(".")
    if last_period > max_chars * 0.8:
        return cut[: last_period + 1] + TRUNCATION_NOTICE, True
    return cut + TRUNCATION_NOTICE_SHORT, True


def contains_warranty_language(text: str) -> bool:
    return any(p.search(text) for p in WARRANTY_LANGUAGE_PATTERNS)


def human_review_reasons(response_text: str, query_text: str) -> list[str]:
    """Names of the human-review triggers hit by the response or the question."""
    return [
        name
        for name, pattern in HUMAN_REVIEW_TRIGGERS.items()
        if pattern.search(response_text) or (query_text and pattern.search(query_text))
    ]


class EnforcementPipeline:
    """Reviews a complete model response before it is delivered.

    Usage:
        pipeline = EnforcementPipeline()
        review = pipeline.review(
            text,
            has_documents=True,
            document_names=["Service Manual"],
            source_text=context,
            query_text="What is the operating pressure?",
        )
        deliver(review.content)
    """

    def __init__(self, config: ValidatorConfig | None = None):
        self._config = config or ValidatorConfig()
        self.validator = ResponseValidator(self._config)
        self.numeric_verifier = NumericClaimVerifier(self._config)

    def _refuse(self, result: ValidationResult, collected: list[str], **extra) -> ReviewResult:
        logger.warning(f"[Enforcement] Response rejected: {result.reason}")
        return ReviewResult(
            outcome="rejected",
            content=CANONICAL_REFUSAL,
            reason=result.reason,
            violations=result.violations,
            matched_patterns=collected + result.matched_patterns,
            **extra,
        )

    def review(
        self,
        text: str,
        *,
        has_documents: bool,
        document_names: list[str] | None = None,
        source_text: str = "",
        query_text: str = "",
        code_reference_active: bool = False,
    ) -> ReviewResult:
        """Validate a complete response and produce the text to deliver."""
        matched: list[str] = []

        result = self.validator.validate(
            text,
            has_documents=has_documents,
            code_reference_active=code_reference_active,
            document_names=document_names,
        )
        if not result.valid:
            return self._refuse(result, matched)

        numeric = self.numeric_verifier.check(text, source_text, query_text)
        unverified = [v.location for v in numeric.violations]
        if not numeric.valid:
            return self._refuse(numeric, matched, unverified_claims=unverified)
        matched.extend(numeric.matched_patterns)

        content, truncated = truncate_response(text, self._config.max_response_chars)
        if truncated:
            matched.append("RESPONSE_TRUNCATED")
            logger.warning(
                f"[Enforcement] Response truncated: {len(text)} > "
                f"{self._config.max_response_chars} chars"
            )

        if has_documents:
            paragraphs = self.validator.check_paragraphs(content)
            if not paragraphs.valid:
                return self._refuse(paragraphs, matched, unverified_claims=unverified)
            matched.extend(paragraphs.matched_patterns)

        reasons = human_review_reasons(text, query_text)
        if reasons:
            matched.append(f"HUMAN_REVIEW: {', '.join(reasons)}")

        disclaimer = contains_warranty_language(text)
        if disclaimer:
            content += WARRANTY_DISCLAIMER

        return ReviewResult(
            outcome="challenged" if unverified or reasons else "accepted",
            content=content,
            matched_patterns=result.matched_patterns + matched,
            violations=numeric.violations,
            unverified_claims=unverified,
            human_review_reasons=reasons,
            truncated=truncated,
            disclaimer_appended=disclaimer,
        )
