"""
Code graders -- named, deterministic checks over guardrail outputs.

A grader bundles the checks one eval cares about (delivered or refused,
cited, no unverified numbers, audit state) so a failing eval reports every
broken property at once instead of stopping at the first assert.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

Check = Callable[[Any], bool]


@dataclass
class CodeGraderResult:
    eval_name: str
    passed_checks: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def checks_total(self) -> int:
        return len(self.passed_checks) + len(self.failures)

    @property
    def passed(self) -> bool:
        return not self.failures

    @property
    def score(self) -> float:
        """Fraction of checks that held (1.0 for an empty grader)."""
        if not self.checks_total:
            return 1.0
        return len(self.passed_checks) / self.checks_total


class CodeGrader:
    """
    Runs named predicates against one pipeline output.

    Usage:
        grader = CodeGrader("grounded_response")
        grader.add_check("delivered", lambda r: r.valid)
        grader.add_check("cited", lambda r: has_citation(r.content))
        result = grader.grade(review)

    A predicate that raises counts as a failure and its error is kept in
    the failure text.
    """

    def __init__(self, eval_name: str):
        self.eval_name = eval_name
        self._checks: list[tuple[str, Check]] = []

    def add_check(self, name: str, check_fn: Check) -> "CodeGrader":
        self._checks.append((name, check_fn))
        return self

    def grade(self, output: Any) -> CodeGraderResult:
        result = CodeGraderResult(eval_name=self.eval_name)
        for name, check_fn in self._checks:
            try:
                held = bool(check_fn(output))
            except Exception as e:
                result.failures.append(f"ERROR: {name} -- {e}")
                continue
            if held:
                result.passed_checks.append(name)
            else:
                result.failures.append(f"FAIL: {name}")

        if result.failures:
            logger.info(
                f"[CodeGrader] {self.eval_name}: {len(result.failures)}/"
                f"{result.checks_total} check(s) failed"
            )
        return result
