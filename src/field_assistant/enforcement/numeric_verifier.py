"""
NumericClaimVerifier -- checks numeric unit claims against the source text.

Every pressure, temperature, electrical or wire-gauge value in the response
must appear somewhere in the assembled document context. Values that don't
are "unverified". Warranty and safety questions reject on the first
unverified value; other questions tolerate one.

No-op when there is no source text (the global citation check covers that).
"""

import logging
import re

from ..config import ValidatorConfig
from .claims import numeric_claims
from .models import ValidationResult, Violation

logger = logging.getLogger(__name__)

SENSITIVE_QUERY_PATTERN = re.compile(
    r"warranty|safety|danger|hazard|injury|legal|liability|lockout|tagout",
    re.IGNORECASE,
)


class NumericClaimVerifier:
    """Validates numeric claims against the document context for one request.

    Usage:
        verifier = NumericClaimVerifier()
        result = verifier.check("Set it to 350 PSI", source_text, query_text)
    """

    def __init__(self, config: ValidatorConfig | None = None):
        self._config = config or ValidatorConfig()

    @staticmethod
    def is_sensitive(query_text: str) -> bool:
        return bool(query_text) and SENSITIVE_QUERY_PATTERN.search(query_text) is not None

    def threshold_for(self, query_text: str) -> int:
        if self.is_sensitive(query_text):
            return self._config.unverified_claims_threshold_sensitive
        return self._config.unverified_claims_threshold

    @staticmethod
    def appears_in(value: str, source_text: str) -> bool:
        """Whole-number match: 11 is not found in 118, nor 5 in 1.5."""
        return re.search(rf"(?<![\d.]){re.escape(value)}(?!\.?\d)", source_text) is not None

    def unverified_claims(self, text: str, source_text: str) -> list[str]:
        return [
            fragment
            for value, fragment in numeric_claims(text)
            if not self.appears_in(value, source_text)
        ]

    def check(self, text: str, source_text: str, query_text: str = "") -> ValidationResult:
        """Reject when unverified numeric claims reach the threshold for this query."""
        if not source_text:
            return ValidationResult(outcome="accepted")

        unverified = self.unverified_claims(text, source_text)
        if not unverified:
            return ValidationResult(outcome="accepted")

        marker = f"UNVERIFIED_CLAIMS: {', '.join(unverified)}"
        violations = [
            Violation(
                rule="numeric:unverified",
                severity="warning",
                message=f"Value '{fragment}' does not appear in the source documents",
                location=fragment,
            )
            for fragment in unverified
        ]
        logger.warning(f"[NumericVerifier] Unverified numeric claims: {unverified}")

        threshold = self.threshold_for(query_text)
        if len(unverified) < threshold:
            return ValidationResult(
                outcome="challenged", violations=violations, matched_patterns=[marker]
            )

        sensitive = self.is_sensitive(query_text)
        return ValidationResult(
            outcome="rejected",
            violations=violations,
            reason=(
                f"Response contains {len(unverified)} numerical value(s) not found in "
                "source documents"
                + (" (stricter threshold for warranty/safety context)" if sensitive else "")
                + f": {', '.join(unverified[:3])}"
            ),
            matched_patterns=[marker],
        )
