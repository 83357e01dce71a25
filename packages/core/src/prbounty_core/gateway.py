"""Event ingestion: webhook intake, on-demand polling and crediting.

Lifecycle per PR key:

    reviewing ──bot review──▶ pass ──credit──▶ credited
        │                      │
        └──────────────────────┴──▶ fail / error

A PR opened/synchronize/reopened event upserts the record back to
"reviewing" unless it is locked: already credited, or holding a live credit
claim while a payout is in flight. A locked record is never overwritten by the
automatic pipeline. Re-delivered bot comments re-derive the same
review and overwrite the record with equivalent data.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from prbounty_core.config import is_production
from prbounty_core.errors import (
    AuthenticationError,
    DuplicateCreditError,
    ExtractionPending,
    InternalError,
    NotFoundError,
    PRBountyError,
    UpstreamError,
    ValidationError,
)
from prbounty_core.extractor import extract_review
from prbounty_core.signature import verify_signature
from prbounty_core.verdict import PASS, compute_verdict
from prbounty_store.models import (
    STATUS_CREDITED,
    STATUS_ERROR,
    STATUS_REVIEWING,
    PRRecord,
    make_key,
    parse_key,
)

if TYPE_CHECKING:
    from prbounty_core.crediting import CreditingCoordinator
    from prbounty_core.gh.pull_request import GitHubSource
    from prbounty_core.providers.base import BaseReviewService
    from prbounty_store.base import BaseStore
    from prbounty_store.models import StructuredReview

logger = logging.getLogger(__name__)

PR_TRACKING_ACTIONS = frozenset({"opened", "synchronize", "reopened"})


def _login(obj) -> str:
    if not isinstance(obj, dict):
        return ""
    user = obj.get("user")
    return (user.get("login") if isinstance(user, dict) else "") or ""


def review_summary(review: StructuredReview) -> dict:
    return {"score": review.score, "issues": len(review.issues), "summary": review.summary}


class EventGateway:
    def __init__(
        self,
        store: BaseStore,
        config: dict,
        review_service: BaseReviewService | None = None,
        github: GitHubSource | None = None,
        coordinator: CreditingCoordinator | None = None,
    ):
        self.store = store
        self.config = config
        self._github = github
        self._review_service = review_service
        self._coordinator = coordinator

    @property
    def bot_login(self) -> str:
        return self.config.get("bot_login", "greptile-apps[bot]")

    # ------------------------------------------------------------------ #
    # Webhook intake                                                       #
    # ------------------------------------------------------------------ #

    def handle_event(self, payload: bytes, signature: str | None, event_name: str | None = None) -> dict:
        """Verify, parse and dispatch one inbound webhook delivery."""
        self._verify(payload, signature)

        try:
            event = json.loads(payload or b"")
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Request body is not valid JSON.")
        if not isinstance(event, dict):
            raise ValidationError("Request body must be a JSON object.")

        action = event.get("action")
        logger.info("Webhook received: event=%s action=%s", event_name or "?", action)

        if event_name in (None, "issue_comment") and action == "created" and isinstance(event.get("comment"), dict):
            issue = event.get("issue")
            if isinstance(issue, dict) and issue.get("pull_request"):
                return self._handle_bot_comment(event)

        review = event.get("review")
        if event_name in (None, "pull_request_review") and action == "submitted" and isinstance(review, dict):
            if isinstance(event.get("pull_request"), dict):
                return self._handle_bot_review(event)

        if event_name in (None, "pull_request") and action in PR_TRACKING_ACTIONS:
            if isinstance(event.get("pull_request"), dict):
                return self._handle_pr_event(event)

        return {"success": True, "message": "Event ignored"}

    def _verify(self, payload: bytes, signature: str | None) -> None:
        if verify_signature(payload, signature, self.config.get("webhook_secret")):
            return
        if is_production(self.config):
            logger.warning("Rejected webhook with invalid signature")
            raise AuthenticationError("Invalid signature")
        logger.warning("Invalid webhook signature; accepting because environment is not production")

    def _repo_parts(self, event: dict) -> tuple[str, str]:
        repository = event.get("repository")
        if not isinstance(repository, dict):
            raise ValidationError("Missing repository in event payload.")
        owner_obj = repository.get("owner")
        owner = owner_obj.get("login") if isinstance(owner_obj, dict) else None
        name = repository.get("name")
        full_name = repository.get("full_name")
        if (not owner or not name) and isinstance(full_name, str) and "/" in full_name:
            owner, name = full_name.split("/", 1)
        if not owner or not name:
            raise ValidationError("Missing repository owner or name in event payload.")
        return owner, name

    def _handle_pr_event(self, event: dict) -> dict:
        pr = event["pull_request"]
        owner, repo = self._repo_parts(event)
        number = pr.get("number") or event.get("number")
        title = pr.get("title")
        author = _login(pr)
        missing = [n for n, v in (("number", number), ("title", title), ("author", author)) if not v]
        if missing:
            raise ValidationError(f"Missing required PR field(s): {', '.join(missing)}")
        if isinstance(number, bool) or not isinstance(number, int):
            raise ValidationError("PR number must be an integer.")

        key = make_key(owner, repo, number)
        existing = self.store.get(key)
        if existing is not None and self._is_locked(existing):
            logger.info("Ignoring %s for %s: record is locked (%s)", event.get("action"), key, existing.status)
            return self._locked_response(existing)

        record = PRRecord(
            key=key,
            title=title,
            author=author,
            owner=owner,
            repo=repo,
            pr_number=number,
            status=STATUS_REVIEWING,
            review_reference=self._request_review(owner, repo, number),
        )
        if self.store.create(record, guard=self._writable) is None:
            current = self.store.get(key)
            if current is None:
                raise NotFoundError(f"PR {key} was removed while being updated.")
            return self._locked_response(current)

        logger.info("PR %s tracked with status %r", key, STATUS_REVIEWING)
        return {
            "success": True,
            "id": key,
            "status": STATUS_REVIEWING,
            "message": f"PR {key} is being tracked. Waiting for review.",
        }

    def _request_review(self, owner: str, repo: str, number: int) -> str | None:
        if not self.config.get("request_review_on_open") or self._review_service is None:
            return None
        try:
            return self._review_service.request_review(owner, repo, number)
        except UpstreamError as e:
            logger.warning("Review request for %s/%s#%d failed: %s", owner, repo, number, e.message)
            return None

    def _handle_bot_comment(self, event: dict) -> dict:
        comment = event["comment"]
        if _login(comment) != self.bot_login:
            return {"success": True, "message": "Event ignored"}
        owner, repo = self._repo_parts(event)
        number = event["issue"].get("number")
        if not isinstance(number, int) or isinstance(number, bool):
            raise ValidationError("Missing issue number in comment event.")
        logger.info("Bot comment detected on %s", make_key(owner, repo, number))
        return self.apply_review_text(make_key(owner, repo, number), comment.get("body"))

    def _handle_bot_review(self, event: dict) -> dict:
        review = event["review"]
        if _login(review) != self.bot_login or not (review.get("body") or "").strip():
            return {"success": True, "message": "Event ignored"}
        owner, repo = self._repo_parts(event)
        number = event["pull_request"].get("number")
        if not isinstance(number, int) or isinstance(number, bool):
            raise ValidationError("Missing pull request number in review event.")
        logger.info("Bot review detected on %s", make_key(owner, repo, number))
        return self.apply_review_text(make_key(owner, repo, number), review.get("body"))

    # ------------------------------------------------------------------ #
    # Shared extraction → verdict → update path                            #
    # ------------------------------------------------------------------ #

    def apply_review_text(self, key: str, text: str | None) -> dict:
        record = self.store.get(key)
        if record is None:
            raise NotFoundError(f"PR {key} not found.")
        if self._is_locked(record):
            return self._locked_response(record)

        try:
            review = self._extract(text)
        except ExtractionPending as e:
            return {"success": True, "id": key, "status": record.status, "pending": True, "message": e.message}

        verdict = compute_verdict(review)
        updated = self.store.update(
            key,
            {"status": verdict, "review": review, "notes": f"Score: {review.score}/100. {review.summary}"},
            guard=self._writable,
        )
        if updated is None:
            current = self.store.get(key)
            if current is None:
                raise NotFoundError(f"PR {key} not found.")
            return self._locked_response(current)
        logger.info("Review for %s: score=%d verdict=%s", key, review.score, verdict)

        response = {"success": True, "id": key, "status": verdict, "review": review_summary(review)}
        if verdict == PASS and self._coordinator is not None and self.config.get("auto_credit", True):
            response.update(self._auto_credit(key))
        return response

    @staticmethod
    def _extract(text: str | None) -> StructuredReview:
        review = extract_review(text)
        if review is None:
            raise ExtractionPending("Review still in progress")
        return review

    def _auto_credit(self, key: str) -> dict:
        try:
            result = self._coordinator.credit(key)
        except DuplicateCreditError as e:
            logger.info("Skipping automatic credit for %s: %s", key, e.message)
            return {}
        except PRBountyError as e:
            # The verdict is already recorded; only the payout failed.
            logger.error("Automatic credit for %s failed: %s", key, e.message)
            raise
        return {
            "status": STATUS_CREDITED,
            "credit": {
                "payment_account_id": result.payment_account_id,
                "amount": result.amount,
                "transaction_id": result.transaction_id,
            },
        }

    def _is_locked(self, record: PRRecord) -> bool:
        """Credited, or a payout holds a live claim on the record."""
        if record.status == STATUS_CREDITED:
            return True
        if not record.credit_claim:
            return False
        return self._coordinator is None or self._coordinator.is_claim_live(record)

    def _writable(self, record: PRRecord | None) -> bool:
        return record is None or not self._is_locked(record)

    def _locked_response(self, record: PRRecord) -> dict:
        if record.status == STATUS_CREDITED:
            return self._already_credited(record)
        return {
            "success": True,
            "id": record.key,
            "status": record.status,
            "message": f"Credit for PR {record.key} is in progress",
        }

    @staticmethod
    def _already_credited(record: PRRecord) -> dict:
        response = {
            "success": True,
            "id": record.key,
            "status": STATUS_CREDITED,
            "message": f"PR {record.key} already credited",
        }
        if record.review is not None:
            response["review"] = review_summary(record.review)
        return response

    # ------------------------------------------------------------------ #
    # On-demand operations                                                 #
    # ------------------------------------------------------------------ #

    def _require_record(self, key: str | None) -> PRRecord:
        if not key or not isinstance(key, str):
            raise ValidationError("Missing PR id")
        try:
            parse_key(key)
        except ValueError as e:
            raise ValidationError(str(e))
        record = self.store.get(key)
        if record is None:
            raise NotFoundError("PR not found")
        return record

    def poll(self, key: str | None) -> dict:
        """Re-fetch the bot's review for a PR when the push event was missed."""
        record = self._require_record(key)
        if self._is_locked(record):
            return self._locked_response(record)

        text = None
        if self._github is not None:
            text = self._github.fetch_bot_content(record.owner, record.repo, record.pr_number, self.bot_login)
        if not text and record.review_reference and self._review_service is not None:
            text = self._review_service.fetch_review_text(record.review_reference)

        if not text:
            expired = self._expire_if_stale(record)
            if expired is not None:
                return {"success": True, "id": record.key, "status": STATUS_ERROR, "message": expired.notes}
            return {
                "success": True,
                "id": record.key,
                "status": record.status,
                "pending": True,
                "message": "Review still in progress - waiting for the review bot",
            }
        return self.apply_review_text(record.key, text)

    def _expire_if_stale(self, record: PRRecord) -> PRRecord | None:
        timeout = self.config.get("pending_timeout_minutes")
        if not timeout or record.status != STATUS_REVIEWING or record.updated_at is None:
            return None
        if datetime.now(timezone.utc) - record.updated_at < timedelta(minutes=float(timeout)):
            return None
        note = f"No review received within {timeout} minutes"
        logger.warning("Marking %s as error: %s", record.key, note)
        return self.store.compare_and_set(record.key, STATUS_REVIEWING, {"status": STATUS_ERROR, "notes": note})

    def credit(self, key: str | None, amount: int | None = None) -> dict:
        self._require_record(key)
        if self._coordinator is None:
            raise InternalError("Crediting is not configured (STRIPE_SECRET_KEY is unset).")
        result = self._coordinator.credit(key, amount)
        return {
            "success": True,
            "payment_account_id": result.payment_account_id,
            "amount": result.amount,
            "transaction_id": result.transaction_id,
            "message": result.message,
        }

    def list_records(self) -> list[PRRecord]:
        return self.store.list_records()

    def close(self) -> None:
        """Release outbound clients. The store is owned by the caller and stays open."""
        if self._review_service is not None:
            self._review_service.close()


def build_gateway(config: dict, store: BaseStore) -> EventGateway:
    """Wire the gateway's collaborators from config; absent credentials disable a collaborator."""
    from prbounty_core.cache import ResponseCache
    from prbounty_core.crediting import CreditingCoordinator
    from prbounty_core.gh.pull_request import GitHubSource

    timeout = config.get("request_timeout", 20)
    github = GitHubSource(token=config.get("github_token"), timeout=timeout)

    review_service = None
    if config.get("review_service_api_key"):
        from prbounty_core.providers.greptile import GreptileReviewService

        review_service = GreptileReviewService(
            api_key=config["review_service_api_key"],
            github_token=config.get("github_token"),
            base_url=config.get("review_service_url", GreptileReviewService.DEFAULT_URL),
            branch=config.get("review_branch", "main"),
            timeout=timeout,
            cache=ResponseCache(
                ttl_seconds=config.get("cache_ttl_seconds", 3600),
                max_entries=config.get("cache_max_entries", 256),
            ),
        )

    coordinator = None
    if config.get("payments_api_key"):
        from prbounty_core.payments.stripe import StripePaymentsProvider

        coordinator = CreditingCoordinator(
            store,
            StripePaymentsProvider(api_key=config["payments_api_key"]),
            default_amount=config.get("credit_amount", 500),
            currency=config.get("currency", "usd"),
            fallback_email_domain=config.get("fallback_email_domain", "example.dev"),
            claim_timeout_minutes=config.get("credit_claim_timeout_minutes", 15),
        )
    else:
        logger.warning("STRIPE_SECRET_KEY is not set; passing PRs will not be credited")

    return EventGateway(store, config, github=github, review_service=review_service, coordinator=coordinator)
