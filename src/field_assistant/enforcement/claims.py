"""
Claim patterns -- the single table behind every response check.

Each entry says what it matches and where it is used:
  blocks      -- may not appear in a response without a [Source: ...] citation
  technical   -- marks a paragraph as technical for the per-paragraph check
  numeric     -- a numeric unit claim checked against the source text
                 (the value is captured in the "value" group)

Patterns are compiled once and only used with search()/finditer(), so no
scan position survives between calls.

Categories:
  - pressure, temperature, electrical: numeric unit values
  - refrigerant: refrigerant codes (R-410A, R22)
  - procedural: "Step 1:", "First ..., then ..."
  - generic_advice: hedging and industry generalizations
  - diagnostic: diagnostic conclusions ("this usually means", "chances are")
  - recommendation: unsolicited advice ("you should", "I'd recommend")
"""

import re
from dataclasses import dataclass

_VALUE = r"(?P<value>\d+(?:\.\d+)?)"


@dataclass(frozen=True)
class ClaimPattern:
    category: str
    pattern: re.Pattern
    message: str
    blocks: bool = True
    technical: bool = False
    numeric: bool = False


def _claim(category: str, source: str, message: str, **flags) -> ClaimPattern:
    return ClaimPattern(
        category=category,
        pattern=re.compile(source, re.IGNORECASE),
        message=message,
        **flags,
    )


CLAIM_PATTERNS: list[ClaimPattern] = [
    _claim(
        "pressure",
        _VALUE + r"\s*(?:psi[ag]?|kpa|bar)(?!\w)",
        "Pressure values require a document citation",
        technical=True, numeric=True,
    ),
    _claim(
        "temperature",
        _VALUE + r"\s*(?:°\s*[fc]|degrees?|fahrenheit|celsius)(?!\w)",
        "Temperature values require a document citation",
        technical=True, numeric=True,
    ),
    _claim(
        "electrical",
        _VALUE + r"\s*(?:volts?|vac|vdc|v|amps?|a|watts?|w|ohms?|Ω)(?!\w)",
        "Electrical values require a document citation",
        technical=True, numeric=True,
    ),
    _claim(
        "wire_gauge",
        _VALUE + r"\s*(?:awg|gauge)(?!\w)",
        "Wire gauge values must appear in the source documents",
        blocks=False, numeric=True,
    ),
    _claim(
        "refrigerant",
        r"\bR-?\d{2,3}[A-Z]?\b",
        "Refrigerant types require a document citation",
    ),
    _claim(
        "procedural",
        r"\bstep\s+\d+[:.]|\bfirst[,:]?\s+.*?\bthen[,:]?\s+",
        "Step-by-step procedures require a document citation",
    ),
    _claim(
        "technical_topic",
        r"\bstep\s+\d+|\bprocedure\b|\bspecifications?\b|\bwarranty\b",
        "Technical paragraph",
        blocks=False, technical=True,
    ),
    _claim(
        "generic_advice",
        r"\b(?:typically|usually|normally|generally|in most cases)\s",
        "No generic advice without documentation",
    ),
    _claim(
        "generic_advice",
        r"\b(?:as a rule|as a general rule|standard practice|it'?s common to)\s",
        "No generic advice without documentation",
    ),
    _claim(
        "generic_advice",
        r"\b(?:in most scenarios|conventionally|routinely|customarily)\s",
        "No generic advice without documentation",
    ),
    _claim(
        "generic_advice",
        r"\b(?:more often than not|nine times out of ten|for the most part)\s",
        "No probabilistic hedging without documentation",
    ),
    _claim(
        "generic_advice",
        r"\b(?:industry standard|best practice|rule of thumb|common approach)\s",
        "No industry generalizations without documentation",
    ),
    _claim(
        "diagnostic",
        r"\b(?:the problem is likely|this usually means|common cause)",
        "Diagnostic conclusions require a document citation",
    ),
    _claim(
        "diagnostic",
        r"\b(?:most likely|probably means|chances are|in all likelihood)",
        "Probabilistic conclusions require a document citation",
    ),
    _claim(
        "recommendation",
        r"\b(?:you should|you'll want to|i'?d recommend|i suggest)\s",
        "Recommendations require a document citation",
    ),
]

BLOCKING_PATTERNS = [c for c in CLAIM_PATTERNS if c.blocks]
TECHNICAL_PATTERNS = [c for c in CLAIM_PATTERNS if c.technical]
NUMERIC_PATTERNS = [c for c in CLAIM_PATTERNS if c.numeric]

CITATION_PATTERN = re.compile(r"\[Source:\s*[^\]\s][^\]]*\]", re.IGNORECASE)
SOURCE_NAME_PATTERN = re.compile(r"\[Source:\s*([^\]]*)\]", re.IGNORECASE)

KNOWN_CODE_PREFIXES = (
    "NEC", "CEC", "CSA", "IPC", "UPC", "NPC", "IRC", "IMC",
    "NFPA", "NBC", "ASHRAE", "EPA", "TSSA", "ANSI",
)

CODE_CITATION_PATTERN = re.compile(
    r"\[Source:\s*(?:" + "|".join(KNOWN_CODE_PREFIXES) + r")\b[^\]]*\]",
    re.IGNORECASE,
)


def has_citation(text: str) -> bool:
    """True if text carries at least one [Source: <non-empty name>] citation."""
    return CITATION_PATTERN.search(text) is not None


def has_code_citation(text: str) -> bool:
    return CODE_CITATION_PATTERN.search(text) is not None


def cited_sources(text: str) -> list[str]:
    """Names of every non-empty cited source, in order."""
    names = (m.group(1).strip() for m in SOURCE_NAME_PATTERN.finditer(text))
    return [n for n in names if n]


def blocked_matches(text: str) -> list[tuple[ClaimPattern, str]]:
    """First match of every blocking pattern found in text."""
    found = []
    for claim in BLOCKING_PATTERNS:
        match = claim.pattern.search(text)
        if match:
            found.append((claim, match.group(0)))
    return found


def is_technical(text: str) -> bool:
    return any(c.pattern.search(text) for c in TECHNICAL_PATTERNS)


def numeric_claims(text: str) -> list[tuple[str, str]]:
    """(value, matched text) for every numeric unit claim in text."""
    claims = []
    for claim in NUMERIC_PATTERNS:
        for match in claim.pattern.finditer(text):
            claims.append((match.group("value"), match.group(0).strip()))
    return claims
