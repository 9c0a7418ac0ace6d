"""
Document Sanitizer -- neutralize extracted document text before it reaches the model.

Two passes:
  1. Strip control characters (except tab, newline, carriage return) and
     Unicode bidirectional marks/overrides/isolates. Uploaded manuals can
     smuggle hidden-direction text or null bytes.
  2. Replace every prompt-injection match in place with a fixed marker.
     Surrounding text and paragraph structure are kept intact.

Sanitizing already-sanitized text returns it unchanged.
"""

import logging
import re
from dataclasses import dataclass

from .prompt_guard import INJECTION_PATTERNS

logger = logging.getLogger(__name__)

REDACTION_MARKER = "[REDACTED-SUSPICIOUS-CONTENT]"

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
BIDI_CHARS = re.compile(r"[\u200E\u200F\u202A-\u202E\u2066-\u2069]")


@dataclass(frozen=True)
class SanitizedText:
    """Sanitizer output."""

    sanitized: str
    injection_detected: bool
    redactions: int = 0


def strip_hidden_characters(text: str) -> str:
    """Remove control and bidirectional-override characters."""
    return BIDI_CHARS.sub("", CONTROL_CHARS.sub("", text))


def sanitize_document_text(raw_text: str) -> SanitizedText:
    """
    Sanitize one piece of extracted document text (usually a retrieved chunk).

    Returns the cleaned text and whether any injection pattern was redacted.
    """
    if not raw_text:
        return SanitizedText(sanitized="", injection_detected=False)

    sanitized = strip_hidden_characters(raw_text)

    redactions = 0
    for pattern in INJECTION_PATTERNS:
        sanitized, count = pattern.subn(REDACTION_MARKER, sanitized)
        redactions += count

    if redactions:
        logger.warning(
            f"[Sanitizer] Redacted {redactions} injection match(es) "
            f"in document text ({len(raw_text)} chars)"
        )

    return SanitizedText(
        sanitized=sanitized,
        injection_detected=redactions > 0,
        redactions=redactions,
    )
