"""Pass/fail policy for a structured review. Pure and total."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prbounty_store.models import StructuredReview

PASS = "pass"
FAIL = "fail"

PASS_THRESHOLD = 80


def is_blocking(issue) -> bool:
    """Critical findings and error-typed findings block a pass; warnings and suggestions do not."""
    return issue.severity == "critical" or issue.kind == "error"


def compute_verdict(review: StructuredReview) -> str:
    if review.score >= PASS_THRESHOLD and not any(is_blocking(i) for i in review.issues):
        return PASS
    return FAIL
