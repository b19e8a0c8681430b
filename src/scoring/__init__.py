"""Weighted scoring of dream outcomes."""

from sre_dreamer.scoring.evaluator import (
    WEIGHTS,
    PageHealthEvaluator,
    apply_latency,
    compute_score,
    score_latency,
    score_safety_issues,
)

__all__ = [
    "WEIGHTS",
    "PageHealthEvaluator",
    "apply_latency",
    "compute_score",
    "score_latency",
    "score_safety_issues",
]
