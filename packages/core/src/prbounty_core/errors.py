"""Error taxonomy shared by the pipeline and the HTTP layer.

Every error carries a stable machine-readable ``kind`` and the HTTP status the
server maps it to. Messages are human-readable and never include stack detail.
"""

from __future__ import annotations


class PRBountyError(Exception):
    kind = "error"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class ValidationError(PRBountyError):
    """Missing or malformed identifiers. Client error, never retried."""

    kind = "validation_error"
    http_status = 400


class AuthenticationError(PRBountyError):
    """Webhook signature verification failed in strict mode."""

    kind = "authentication_error"
    http_status = 401


class NotFoundError(PRBountyError):
    kind = "not_found"
    http_status = 404


class ExtractionPending(PRBountyError):
    """Bot review text is not available or not yet parseable. Not a failure."""

    kind = "extraction_pending"
    http_status = 202


class UpstreamError(PRBountyError):
    """GitHub, the review service or the payments provider failed or timed out.

    The caller retries by re-polling or re-invoking; the core never retries silently.
    """

    kind = "upstream_error"
    http_status = 502


class DuplicateCreditError(PRBountyError):
    """Credit attempted on an already-credited or non-passing record. Permanent."""

    kind = "duplicate_credit"
    http_status = 400


class InternalError(PRBountyError):
    kind = "internal_error"
    http_status = 500
