"""
Prompt Guard - Detect prompt injection in user messages and document text.

Patterns are anchored on explicit command verbs plus instruction/restriction
nouns, so urgency or authority claims alone ("my boss said...", "this is
urgent") are not flagged. The scanner is heuristic: it tolerates false
negatives and the citation validator remains the last line of defense.

Functions:
  detect_injection()         -- First matching pattern (gate decision + audit)
  detect_injection_attempt() -- All matching patterns (logging)
  wrap_user_content()        -- Wrap untrusted text in boundary tags
  sanitize_for_prompt()      -- Null byte removal + length enforcement

All patterns are compiled once and matched with search()/finditer(), which
keep no scan position between calls.

Reference: OWASP LLM Top 10 (2025) - LLM01: Prompt Injection
"""

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Ordered: first match wins
INJECTION_PATTERN_SOURCES: list[str] = [
    # instruction override
    r"ignore\s+(?:all\s+)?(?:previous|all|any|above|prior)\s+(?:instructions?|prompts?|rules?|guidelines?)",
    r"disregard\s+(?:all\s+)?(?:previous|all|any|above|prior)\s+(?:instructions?|prompts?|rules?|guidelines?)",
    r"forget\s+(?:everything|all|what)\s+(?:you\s+)?(?:know|learned|were\s+told)",
    # role reassignment
    r"you\s+are\s+now\s+(?:a|an)\s+(?:different|new|unrestricted)",
    r"pretend\s+(?:you\s+)?(?:are|to\s+be)\s+(?:a|an|unrestricted|jailbroken)",
    r"act\s+as\s+(?:if|though)\s+you\s+(?:don't|do\s+not)\s+have\s+(?:any\s+)?restrictions",
    # prompt disclosure
    r"system\s*prompt\s*(?:is|:|shows?|says?|reveals?)",
    r"reveal\s+(?:your|the|system)\s+(?:system\s+)?(?:prompt|instructions?|rules?)",
    r"what\s+(?:are|were)\s+your\s+(?:initial|original|system)\s+(?:instructions?|prompts?)",
    r"tell\s+me\s+(?:your|the)\s+(?:system\s+)?(?:prompt|instructions?)",
    r"output\s+(?:your|the)\s+(?:system\s+)?(?:prompt|instructions?)",
    # jailbreak / mode switch
    r"jailbreak|dan\s+mode|evil\s+mode|bypass\s+(?:safety|restrictions?|filters?)",
    r"admin\s+(?:mode|access|override|privileges?)",
    r"\bsudo\b|root\s+access|developer\s+mode",
    # coercion
    r"important:\s*override|new\s+instructions?:",
    r"you\s+must\s+comply|you\s+have\s+no\s+choice|override\s+all",
    # raw chat-template delimiters
    r"\[inst\]|\[/inst\]|<\|im_start\|>|<\|system\|>",
]

INJECTION_PATTERNS: list[re.Pattern] = [
    re.compile(source, re.IGNORECASE) for source in INJECTION_PATTERN_SOURCES
]


@dataclass(frozen=True)
class InjectionResult:
    """Outcome of an injection scan. matched_pattern is the regex source."""

    is_injection: bool
    matched_pattern: str | None = None


def detect_injection(text: str) -> InjectionResult:
    """
    Scan text for prompt injection. First matching pattern wins.

    Used on user messages (a match rejects the request) and on document
    chunks (a match is redacted by the sanitizer, the request continues).
    """
    if not text:
        return InjectionResult(is_injection=False)

    normalized = text.lower()
    for pattern in INJECTION_PATTERNS:
        if pattern.search(normalized):
            return InjectionResult(is_injection=True, matched_pattern=pattern.pattern)

    return InjectionResult(is_injection=False)


def detect_injection_attempt(text: str) -> list[str]:
    """
    Return the source of every injection pattern found in text (empty = clean).

    Does NOT block -- logs findings and returns them for the caller to decide.
    """
    if not text:
        return []

    normalized = text.lower()
    findings = [p.pattern for p in INJECTION_PATTERNS if p.search(normalized)]

    if findings:
        logger.warning(
            f"[PromptGuard] Detected {len(findings)} potential injection pattern(s) "
            f"in input ({len(text)} chars)"
        )

    return findings


def wrap_user_content(content: str, label: str = "retrieved-document-chunk", **attributes: str) -> str:
    """
    Wrap untrusted content in boundary tags for inclusion in the system prompt.

    Attribute values are stripped of quotes and angle brackets so a document
    name cannot close the tag early.

    Args:
        content: Untrusted text (already sanitized)
        label: Tag name for the wrapper
        attributes: Rendered as key="value" pairs on the opening tag

    Returns:
        Wrapped content string
    """
    rendered = "".join(
        f' {key.replace("_", "-")}="{_clean_attribute(value)}"'
        for key, value in attributes.items()
    )
    return f"<{label}{rendered}>\n{content}\n</{label}>"


def _clean_attribute(value: str) -> str:
    return re.sub(r"[\"<>]", "", str(value))


def sanitize_for_prompt(
    content: str,
    max_length: int = 100_000,
    strip_null: bool = True,
) -> str:
    """
    Sanitize content for safe inclusion in LLM prompts.

    - Truncates to max_length (prevents token budget blowout)
    - Strips null bytes (prevents processing errors)
    - Does NOT remove injection patterns (see security.sanitizer for that)
    """
    if not content:
        return ""

    if strip_null:
        content = content.replace("\x00", "")

    if len(content) > max_length:
        content = content[:max_length] + "\n[TRUNCATED]"
        logger.info(f"[PromptGuard] Content truncated to {max_length} chars")

    return content
