"""Data models for the response enforcement pipeline."""

from dataclasses import dataclass, field


@dataclass
class Violation:
    """A single enforcement violation found in a model response.

    Attributes:
        rule: Category of violation (e.g. "uncited_claim:pressure", "citation:fabricated_source").
        severity: "critical" rejects the response; "warning" is recorded only.
        message: Human-readable explanation of what's wrong.
        location: The text fragment that triggered the violation.
    """

    rule: str
    severity: str  # "critical" or "warning"
    message: str
    location: str = ""


@dataclass
class ValidationResult:
    """Result of running a validator on a model response.

    Attributes:
        outcome: "accepted" (no issues), "challenged" (warnings recorded),
                 or "rejected" (replaced with the canonical refusal).
        violations: All violations found.
        reason: Why the response was rejected, for the audit trail.
        matched_patterns: Pattern sources and rule markers that fired.
    """

    outcome: str = "accepted"  # "accepted", "challenged", "rejected"
    violations: list[Violation] = field(default_factory=list)
    reason: str = ""
    matched_patterns: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.outcome != "rejected"


@dataclass
class ParagraphReport:
    """Per-paragraph citation coverage."""

    uncited_paragraphs: int = 0
    total_technical_paragraphs: int = 0

    def rejects(self, policy: str = "strict") -> bool:
        """strict: any uncited technical paragraph. majority: >= 2 technical and over half uncited."""
        if policy == "majority":
            return (
                self.total_technical_paragraphs >= 2
                and self.uncited_paragraphs > self.total_technical_paragraphs / 2
            )
        return self.uncited_paragraphs > 0


@dataclass
class ReviewResult:
    """Final decision on a complete model response.

    content is the text to deliver: the (possibly truncated, possibly
    disclaimed) model output when accepted, the canonical refusal otherwise.
    """

    outcome: str
    content: str
    reason: str = ""
    violations: list[Violation] = field(default_factory=list)
    matched_patterns: list[str] = field(default_factory=list)
    unverified_claims: list[str] = field(default_factory=list)
    human_review_reasons: list[str] = field(default_factory=list)
    truncated: bool = False
    disclaimer_appended: bool = False

    @property
    def valid(self) -> bool:
        return self.outcome != "rejected"

    @property
    def requires_human_review(self) -> bool:
        return bool(self.human_review_reasons)
