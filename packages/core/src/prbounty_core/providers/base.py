"""Base review-service client implementing the Template Method pattern.

    request_review() → _submit()  ← differs per service
                     → cache any inline result under the returned reference
    fetch_review_text() → cache hit, else _fetch()  ← differs per service

Subclasses implement _submit and _fetch only. Both should raise
UpstreamError on transport or API failure; nothing here retries.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prbounty_core.cache import ResponseCache

logger = logging.getLogger(__name__)


class BaseReviewService(ABC):
    def __init__(self, cache: ResponseCache | None = None):
        self._cache = cache

    def request_review(self, owner: str, repo: str, pr_number: int) -> str:
        """Ask the service to review a PR and return its reference for later lookup."""
        reference, inline_text = self._submit(owner, repo, pr_number)
        if inline_text and self._cache is not None:
            self._cache.set(reference, inline_text)
        logger.info("Requested review for %s/%s#%d (reference %s)", owner, repo, pr_number, reference)
        return reference

    def fetch_review_text(self, reference: str) -> str | None:
        """Return the review text stored under ``reference``, or None if not ready."""
        if self._cache is not None:
            cached = self._cache.get(reference)
            if cached is not None:
                return cached
        text = self._fetch(reference)
        if text and self._cache is not None:
            self._cache.set(reference, text)
        return text

    def close(self) -> None:
        """Release network resources. No-op by default."""

    @abstractmethod
    def _submit(self, owner: str, repo: str, pr_number: int) -> tuple[str, str | None]:
        """Submit a review request. Returns (reference, review text if returned inline)."""

    @abstractmethod
    def _fetch(self, reference: str) -> str | None:
        """Fetch a review by reference. Returns None if the service has nothing yet."""
