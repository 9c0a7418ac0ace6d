"""
Evaluation suite for the guardrail pipeline -- code-graded eval tasks.

Run evals: pytest evals/ -v
"""
