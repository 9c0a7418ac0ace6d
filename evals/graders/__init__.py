"""Deterministic graders for the guardrail evals."""

from .code_grader import CodeGrader, CodeGraderResult
