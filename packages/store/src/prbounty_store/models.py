"""PR lifecycle data models.

Decoupled from prbounty_core so the store layer can be used independently.
The core produces StructuredReview values; the store only persists them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

STATUS_REVIEWING = "reviewing"
STATUS_PASS = "pass"
STATUS_FAIL = "fail"
STATUS_CREDITED = "credited"
STATUS_ERROR = "error"

VALID_STATUSES = frozenset({STATUS_REVIEWING, STATUS_PASS, STATUS_FAIL, STATUS_CREDITED, STATUS_ERROR})

_KEY_RE = re.compile(r"^(?P<owner>[^/#\s]+)/(?P<repo>[^/#\s]+)#(?P<number>\d+)$")


def make_key(owner: str, repo: str, pr_number: int) -> str:
    """Build the composite ``owner/repo#number`` key."""
    return f"{owner}/{repo}#{pr_number}"


def parse_key(key: str) -> tuple[str, str, int]:
    """Split a composite key into (owner, repo, number). Raises ValueError if malformed."""
    match = _KEY_RE.match((key or "").strip())
    if not match:
        raise ValueError(f"Malformed PR key {key!r}; expected owner/repo#number.")
    return match.group("owner"), match.group("repo"), int(match.group("number"))


@dataclass(frozen=True)
class ReviewIssue:
    """A single finding extracted from a bot review."""

    kind: str  # "error" | "warning" | "suggestion"
    severity: str  # "critical" | "moderate" | "minor"
    message: str
    file: str | None = None
    line: int | None = None


@dataclass(frozen=True)
class StructuredReview:
    """Normalized review extracted from free text. Never patched, only replaced."""

    score: int
    summary: str
    issues: tuple[ReviewIssue, ...] = ()
    raw_message: str = ""


@dataclass
class PRRecord:
    """A tracked pull request. Owned by the store; every mutation goes through it."""

    key: str
    title: str
    author: str
    owner: str
    repo: str
    pr_number: int
    status: str = STATUS_REVIEWING
    review_reference: str | None = None
    review: StructuredReview | None = None
    notes: str = ""
    credited_amount: int | None = None  # minor currency units
    payment_account_id: str | None = None
    credit_claim: str | None = None  # set while a payout is in flight
    updated_at: datetime | None = None


@dataclass
class AccountMapping:
    """Operator-configured author handle to payment account mapping."""

    handle: str
    payment_account_id: str


def review_to_dict(review: StructuredReview | None) -> dict | None:
    if review is None:
        return None
    return {
        "score": review.score,
        "summary": review.summary,
        "issues": [
            {
                "type": i.kind,
                "severity": i.severity,
                "message": i.message,
                "file": i.file,
                "line": i.line,
            }
            for i in review.issues
        ],
        "message": review.raw_message,
    }


def review_from_dict(d: dict | None) -> StructuredReview | None:
    if not d:
        return None
    return StructuredReview(
        score=d.get("score", 0),
        summary=d.get("summary", ""),
        issues=tuple(
            ReviewIssue(
                kind=i.get("type", "warning"),
                severity=i.get("severity", "minor"),
                message=i.get("message", ""),
                file=i.get("file"),
                line=i.get("line"),
            )
            for i in d.get("issues", [])
        ),
        raw_message=d.get("message", ""),
    )


def record_to_dict(record: PRRecord) -> dict:
    """JSON-friendly view of a record, used by the SQLite backend and the HTTP API."""
    return {
        "id": record.key,
        "title": record.title,
        "author": record.author,
        "owner": record.owner,
        "repo": record.repo,
        "prNumber": record.pr_number,
        "status": record.status,
        "reviewReference": record.review_reference,
        "review": review_to_dict(record.review),
        "notes": record.notes,
        "creditedAmount": record.credited_amount,
        "paymentAccountId": record.payment_account_id,
        "creditClaim": record.credit_claim,
        "updatedAt": record.updated_at.isoformat() if record.updated_at else None,
    }


def record_from_dict(d: dict) -> PRRecord:
    updated_at = d.get("updatedAt")
    return PRRecord(
        key=d["id"],
        title=d.get("title", ""),
        author=d.get("author", ""),
        owner=d.get("owner", ""),
        repo=d.get("repo", ""),
        pr_number=d.get("prNumber", 0),
        status=d.get("status", STATUS_REVIEWING),
        review_reference=d.get("reviewReference"),
        review=review_from_dict(d.get("review")),
        notes=d.get("notes") or "",
        credited_amount=d.get("creditedAmount"),
        payment_account_id=d.get("paymentAccountId"),
        credit_claim=d.get("creditClaim"),
        updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
    )
