"""
Code-compliance query detection.

A tenant can opt into code-reference mode. It only becomes active for a
request when the latest user message is actually a code question (NEC, IPC,
GFCI, breaker size, permits, ...). Jurisdiction comes from the text and falls
back to the tenant's country; trades are detected by keyword.
"""

import re
from dataclasses import dataclass, field

CODE_QUERY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(code|codes|NEC|IPC|UPC|IRC|IMC|NFPA|EPA\s*608|CEC|NPC|CSA|TSSA|NBC|ASHRAE)\b",
        r"\b(code\s+complian|code\s+require|code\s+section|article\s+\d|section\s+\d)",
        r"\b(minimum\s+(clearance|distance|size|gauge|ampacity|pipe\s+size))",
        r"\b(required\s+by\s+code|per\s+code|to\s+code|meets?\s+code)",
        r"\b(GFCI|AFCI|ground\s+fault|arc\s+fault|tamper\s+resistant)",
        r"\b(backflow\s+preventer|trap\s+size|vent\s+size|drain\s+size|fixture\s+unit)",
        r"\b(wire\s+gauge|conductor\s+size|ampacity|breaker\s+size|overcurrent)",
        r"\b(combustion\s+air|flue\s+size|vent\s+connector|clearance\s+to\s+combustible)",
        r"\b(permit|inspection|inspector|AHJ|authority\s+having\s+jurisdiction)",
    )
]

CANADA_INDICATORS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(CEC|CSA|TSSA|NPC|NBC|canadian|canada|ontario|quebec|alberta"
        r"|british\s+columbia|manitoba|saskatchewan)\b",
        r"\b(CSA\s+[BC]\d|C22\.1|B149|B52|B44)\b",
        r"\b(province|provincial)\b",
    )
]

US_INDICATORS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(NEC|IPC|UPC|IRC|IMC|NFPA|EPA\s+608)\b",
        r"\b(state\s+code|county\s+code|city\s+code|local\s+amendment)\b",
    )
]

TRADE_PATTERNS = {
    "electrical": re.compile(
        r"\b(NEC|CEC|wire|wiring|circuit|breaker|outlet|GFCI|AFCI|ampacity"
        r"|conductor|panel|grounding|voltage|electrical)\b",
        re.IGNORECASE,
    ),
    "plumbing": re.compile(
        r"\b(IPC|UPC|NPC|drain|pipe|plumb|fixture\s+unit|trap|vent|backflow"
        r"|water\s+heater|sewer)\b",
        re.IGNORECASE,
    ),
    "hvac": re.compile(
        r"\b(IMC|NFPA\s+90|furnace|duct|combustion|flue|refrigerant|EPA\s+608"
        r"|ASHRAE|clearance|hvac|heating|cooling)\b",
        re.IGNORECASE,
    ),
}


@dataclass(frozen=True)
class CodeComplianceDetection:
    is_code_query: bool
    jurisdiction: str | None = None  # "us", "canada", "both"
    trades: tuple[str, ...] = field(default_factory=tuple)


def detect_code_compliance_query(text: str, tenant_country: str = "US") -> CodeComplianceDetection:
    """Classify a user message as a building/trade code question."""
    if not text or not any(p.search(text) for p in CODE_QUERY_PATTERNS):
        return CodeComplianceDetection(is_code_query=False)

    has_canada = any(p.search(text) for p in CANADA_INDICATORS)
    has_us = any(p.search(text) for p in US_INDICATORS)

    if has_canada and has_us:
        jurisdiction = "both"
    elif has_canada:
        jurisdiction = "canada"
    elif has_us:
        jurisdiction = "us"
    else:
        jurisdiction = "canada" if (tenant_country or "").upper() == "CA" else "us"

    trades = tuple(name for name, pattern in TRADE_PATTERNS.items() if pattern.search(text))
    return CodeComplianceDetection(
        is_code_query=True,
        jurisdiction=jurisdiction,
        trades=trades or ("general",),
    )


def code_compliance_active(
    code_reference_enabled: bool, text: str, tenant_country: str = "US"
) -> tuple[bool, CodeComplianceDetection]:
    """Code mode is active only when the tenant enabled it and the query is a code question."""
    if not code_reference_enabled:
        return False, CodeComplianceDetection(is_code_query=False)
    detection = detect_code_compliance_query(text, tenant_country)
    return detection.is_code_query, detection
