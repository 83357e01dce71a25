"""Tests for webhook intake, polling and crediting through the gateway."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from prbounty_core.config import DEFAULT_CONFIG
from prbounty_core.crediting import CreditingCoordinator
from prbounty_core.errors import (
    AuthenticationError,
    InternalError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from prbounty_core.gateway import EventGateway, build_gateway
from prbounty_core.gh.pull_request import GitHubSource
from prbounty_core.payments.base import BasePaymentsProvider
from prbounty_core.providers.base import BaseReviewService
from prbounty_core.signature import sign_payload
from prbounty_store.memory import InMemoryStore
from prbounty_store.models import STATUS_CREDITED, STATUS_ERROR, STATUS_FAIL, STATUS_PASS, STATUS_REVIEWING

SECRET = "s3cret"
BOT = "greptile-apps[bot]"
KEY = "acme/widgets#12"

CLEAN_REVIEW = """## Summary
Adds a bounded retry loop to the uploader.

## Important Files Changed
| Filename | Score | Overview |
|----------|-------|----------|
| src/upload.py | 5/5 | Retry loop with backoff |

## Confidence score: 5/5
"""

RISKY_REVIEW = """## Summary
Rewrites session handling.

## Important Files Changed
| Filename | Score | Overview |
|----------|-------|----------|
| auth/session.py | 2/5 | Expiry check removed |

## Confidence score: 2/5
"""

REPOSITORY = {"name": "widgets", "full_name": "acme/widgets", "owner": {"login": "acme"}}


def _config(**overrides):
    config = dict(DEFAULT_CONFIG, webhook_secret=SECRET, environment="production")
    config.update(overrides)
    return config


def _payments():
    payments = MagicMock(spec=BasePaymentsProvider)
    payments.find_or_create_account.return_value = "cus_alice"
    payments.credit_balance.return_value = "cbtxn_1"
    return payments


def _gateway(store=None, payments=None, github=None, review_service=None, **config):
    store = store or InMemoryStore()
    coordinator = CreditingCoordinator(store, payments) if payments is not None else None
    if github is None:
        github = MagicMock(spec=GitHubSource)
        github.fetch_bot_content.return_value = None
    return EventGateway(
        store,
        _config(**config),
        review_service=review_service,
        github=github,
        coordinator=coordinator,
    )


def _deliver(gateway, event_name, payload, secret=SECRET):
    body = json.dumps(payload).encode("utf-8")
    return gateway.handle_event(body, sign_payload(body, secret), event_name)


def _pr_event(action="opened", number=12, title="Add retry to uploader", author="alice"):
    return {
        "action": action,
        "number": number,
        "pull_request": {"number": number, "title": title, "user": {"login": author}},
        "repository": REPOSITORY,
    }


def _comment_event(body, login=BOT, number=12):
    return {
        "action": "created",
        "issue": {"number": number, "pull_request": {"url": f"https://github.com/acme/widgets/pull/{number}"}},
        "comment": {"body": body, "user": {"login": login}},
        "repository": REPOSITORY,
    }


def _review_event(body, login=BOT, number=12):
    return {
        "action": "submitted",
        "review": {"body": body, "user": {"login": login}},
        "pull_request": {"number": number, "title": "Add retry to uploader", "user": {"login": "alice"}},
        "repository": REPOSITORY,
    }


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------


class TestEndToEnd:
    def test_opened_review_credit(self):
        payments = _payments()
        gateway = _gateway(payments=payments, auto_credit=False)

        opened = _deliver(gateway, "pull_request", _pr_event())
        assert opened["id"] == KEY
        assert gateway.store.get(KEY).status == STATUS_REVIEWING

        reviewed = _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))
        assert reviewed["status"] == STATUS_PASS
        assert reviewed["review"]["score"] == 100
        record = gateway.store.get(KEY)
        assert record.status == STATUS_PASS
        assert record.review.score == 100
        assert record.notes == "Score: 100/100. Adds a bounded retry loop to the uploader."

        credited = gateway.credit(KEY)
        assert credited["success"] is True
        assert credited["payment_account_id"] == "cus_alice"
        assert credited["transaction_id"] == "cbtxn_1"
        record = gateway.store.get(KEY)
        assert record.status == STATUS_CREDITED
        assert record.credited_amount == 500

    def test_auto_credit_on_pass(self):
        payments = _payments()
        gateway = _gateway(payments=payments)
        _deliver(gateway, "pull_request", _pr_event())

        result = _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))

        assert result["status"] == STATUS_CREDITED
        assert result["credit"] == {"payment_account_id": "cus_alice", "amount": 500, "transaction_id": "cbtxn_1"}
        assert gateway.store.get(KEY).status == STATUS_CREDITED

    def test_failing_review(self):
        payments = _payments()
        gateway = _gateway(payments=payments)
        _deliver(gateway, "pull_request", _pr_event())

        result = _deliver(gateway, "issue_comment", _comment_event(RISKY_REVIEW))

        assert result["status"] == STATUS_FAIL
        assert result["review"] == {"score": 40, "issues": 1, "summary": "Rewrites session handling."}
        payments.credit_balance.assert_not_called()


# ---------------------------------------------------------------------------
# Signature handling
# ---------------------------------------------------------------------------


class TestSignature:
    def test_strict_mode_rejects_bad_signature_without_mutation(self):
        gateway = _gateway()
        with pytest.raises(AuthenticationError):
            _deliver(gateway, "pull_request", _pr_event(), secret="wrong")
        assert gateway.store.get(KEY) is None

    def test_strict_mode_rejects_missing_signature(self):
        gateway = _gateway()
        with pytest.raises(AuthenticationError):
            gateway.handle_event(json.dumps(_pr_event()).encode(), None, "pull_request")

    def test_permissive_mode_accepts_with_warning(self, caplog):
        gateway = _gateway(environment="development")
        result = _deliver(gateway, "pull_request", _pr_event(), secret="wrong")
        assert result["status"] == STATUS_REVIEWING
        assert "signature" in caplog.text.lower()

    def test_signature_checked_before_json(self):
        with pytest.raises(AuthenticationError):
            _gateway().handle_event(b"not json", "sha256=00", "pull_request")


# ---------------------------------------------------------------------------
# Event dispatch
# ---------------------------------------------------------------------------


class TestHandleEvent:
    def test_malformed_json(self):
        gateway = _gateway()
        body = b"{not json"
        with pytest.raises(ValidationError):
            gateway.handle_event(body, sign_payload(body, SECRET), "pull_request")

    def test_non_object_json(self):
        gateway = _gateway()
        body = b"[1, 2]"
        with pytest.raises(ValidationError):
            gateway.handle_event(body, sign_payload(body, SECRET), "pull_request")

    def test_unrelated_event_ignored(self):
        result = _deliver(_gateway(), "push", {"ref": "refs/heads/main"})
        assert result == {"success": True, "message": "Event ignored"}

    def test_closed_pr_ignored(self):
        gateway = _gateway()
        assert _deliver(gateway, "pull_request", _pr_event(action="closed"))["message"] == "Event ignored"
        assert gateway.store.get(KEY) is None

    def test_missing_pr_fields(self):
        event = _pr_event()
        del event["pull_request"]["title"]
        with pytest.raises(ValidationError, match="title"):
            _deliver(_gateway(), "pull_request", event)

    def test_missing_repository(self):
        event = _pr_event()
        del event["repository"]
        with pytest.raises(ValidationError):
            _deliver(_gateway(), "pull_request", event)

    def test_synchronize_resets_to_reviewing(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())
        _deliver(gateway, "issue_comment", _comment_event(RISKY_REVIEW))
        assert gateway.store.get(KEY).status == STATUS_FAIL

        _deliver(gateway, "pull_request", _pr_event(action="synchronize"))
        assert gateway.store.get(KEY).status == STATUS_REVIEWING

    def test_credited_pr_is_never_reset(self):
        gateway = _gateway(payments=_payments())
        _deliver(gateway, "pull_request", _pr_event())
        _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))

        result = _deliver(gateway, "pull_request", _pr_event(action="reopened"))

        assert result["status"] == STATUS_CREDITED
        assert gateway.store.get(KEY).status == STATUS_CREDITED

    def test_comment_from_other_user_ignored(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())
        result = _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW, login="mallory"))
        assert result["message"] == "Event ignored"
        assert gateway.store.get(KEY).status == STATUS_REVIEWING

    def test_comment_on_plain_issue_ignored(self):
        event = _comment_event(CLEAN_REVIEW)
        del event["issue"]["pull_request"]
        assert _deliver(_gateway(), "issue_comment", event)["message"] == "Event ignored"

    def test_bot_comment_on_unknown_pr(self):
        with pytest.raises(NotFoundError):
            _deliver(_gateway(), "issue_comment", _comment_event(CLEAN_REVIEW))

    def test_unparseable_comment_is_pending(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())
        before = gateway.store.get(KEY)

        result = _deliver(gateway, "issue_comment", _comment_event("Reviewing..."))

        assert result["pending"] is True
        assert result["status"] == STATUS_REVIEWING
        assert gateway.store.get(KEY) == before

    def test_pull_request_review_handled_like_comment(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())
        result = _deliver(gateway, "pull_request_review", _review_event(RISKY_REVIEW))
        assert result["status"] == STATUS_FAIL

    def test_empty_bot_review_ignored(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())
        assert _deliver(gateway, "pull_request_review", _review_event(""))["message"] == "Event ignored"

    def test_bot_comment_is_idempotent(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())

        _deliver(gateway, "issue_comment", _comment_event(RISKY_REVIEW))
        once = gateway.store.get(KEY)
        _deliver(gateway, "issue_comment", _comment_event(RISKY_REVIEW))
        twice = gateway.store.get(KEY)

        assert (twice.status, twice.review, twice.notes) == (once.status, once.review, once.notes)

    def test_redelivered_comment_after_credit_pays_once(self):
        payments = _payments()
        gateway = _gateway(payments=payments)
        _deliver(gateway, "pull_request", _pr_event())

        _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))
        result = _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))

        assert result["status"] == STATUS_CREDITED
        assert payments.credit_balance.call_count == 1

    def test_credit_failure_keeps_pass(self):
        payments = _payments()
        payments.credit_balance.side_effect = UpstreamError("Payments provider error")
        gateway = _gateway(payments=payments)
        _deliver(gateway, "pull_request", _pr_event())

        with pytest.raises(UpstreamError):
            _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))

        assert gateway.store.get(KEY).status == STATUS_PASS

    def test_synchronize_during_payout_does_not_pay_twice(self):
        payments = _payments()
        gateway = _gateway(payments=payments)
        _deliver(gateway, "pull_request", _pr_event())
        during_payout = []

        def pay_while_pushed(*args, **kwargs):
            during_payout.append(_deliver(gateway, "pull_request", _pr_event(action="synchronize")))
            return "cbtxn_1"

        payments.credit_balance.side_effect = pay_while_pushed

        first = _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))
        again = _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))

        assert during_payout[0]["message"] == f"Credit for PR {KEY} is in progress"
        assert first["status"] == STATUS_CREDITED
        assert again["status"] == STATUS_CREDITED
        assert payments.credit_balance.call_count == 1
        record = gateway.store.get(KEY)
        assert record.status == STATUS_CREDITED
        assert record.credit_claim is None

    def test_bot_comment_during_payout_leaves_record_alone(self):
        payments = _payments()
        gateway = _gateway(payments=payments)
        _deliver(gateway, "pull_request", _pr_event())
        during_payout = []

        def pay_while_rereviewed(*args, **kwargs):
            during_payout.append(_deliver(gateway, "issue_comment", _comment_event(RISKY_REVIEW)))
            return "cbtxn_1"

        payments.credit_balance.side_effect = pay_while_rereviewed

        _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))

        assert during_payout[0]["status"] == STATUS_PASS
        assert gateway.store.get(KEY).status == STATUS_CREDITED

    def test_lost_claim_is_reported_as_error(self):
        payments = _payments()
        gateway = _gateway(payments=payments)
        _deliver(gateway, "pull_request", _pr_event())

        def pay_after_reset(*args, **kwargs):
            gateway.store.delete(KEY)
            _deliver(gateway, "pull_request", _pr_event(action="reopened"))
            return "cbtxn_1"

        payments.credit_balance.side_effect = pay_after_reset

        with pytest.raises(InternalError, match="cbtxn_1"):
            _deliver(gateway, "issue_comment", _comment_event(CLEAN_REVIEW))
        assert gateway.store.get(KEY).status == STATUS_REVIEWING

    def test_review_requested_on_open(self):
        review_service = MagicMock(spec=BaseReviewService)
        review_service.request_review.return_value = "greptile-pr-acme-widgets-12"
        gateway = _gateway(review_service=review_service, request_review_on_open=True)

        _deliver(gateway, "pull_request", _pr_event())

        review_service.request_review.assert_called_once_with("acme", "widgets", 12)
        assert gateway.store.get(KEY).review_reference == "greptile-pr-acme-widgets-12"

    def test_failed_review_request_does_not_fail_event(self):
        review_service = MagicMock(spec=BaseReviewService)
        review_service.request_review.side_effect = UpstreamError("Review service returned HTTP 500.")
        gateway = _gateway(review_service=review_service, request_review_on_open=True)

        result = _deliver(gateway, "pull_request", _pr_event())

        assert result["status"] == STATUS_REVIEWING
        assert gateway.store.get(KEY).review_reference is None


# ---------------------------------------------------------------------------
# Poll
# ---------------------------------------------------------------------------


class TestPoll:
    @pytest.mark.parametrize("key", [None, "", "acme/widgets", "widgets#12"])
    def test_invalid_key(self, key):
        with pytest.raises(ValidationError):
            _gateway().poll(key)

    def test_unknown_key(self):
        with pytest.raises(NotFoundError):
            _gateway().poll(KEY)

    def test_pending_when_bot_silent(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())
        before = gateway.store.get(KEY)

        result = gateway.poll(KEY)

        assert result["pending"] is True
        assert result["status"] == STATUS_REVIEWING
        assert gateway.store.get(KEY) == before

    def test_applies_github_content(self):
        github = MagicMock(spec=GitHubSource)
        github.fetch_bot_content.return_value = RISKY_REVIEW
        gateway = _gateway(github=github)
        _deliver(gateway, "pull_request", _pr_event())

        result = gateway.poll(KEY)

        github.fetch_bot_content.assert_called_once_with("acme", "widgets", 12, BOT)
        assert result["status"] == STATUS_FAIL
        assert result["review"]["score"] == 40

    def test_falls_back_to_review_service(self):
        review_service = MagicMock(spec=BaseReviewService)
        review_service.request_review.return_value = "ref-12"
        review_service.fetch_review_text.return_value = CLEAN_REVIEW
        gateway = _gateway(review_service=review_service, request_review_on_open=True)
        _deliver(gateway, "pull_request", _pr_event())

        result = gateway.poll(KEY)

        review_service.fetch_review_text.assert_called_once_with("ref-12")
        assert result["status"] == STATUS_PASS

    def test_upstream_failure_leaves_status(self):
        github = MagicMock(spec=GitHubSource)
        github.fetch_bot_content.side_effect = UpstreamError("GitHub API error (502) while fetching comments.")
        gateway = _gateway(github=github)
        _deliver(gateway, "pull_request", _pr_event())

        with pytest.raises(UpstreamError):
            gateway.poll(KEY)
        assert gateway.store.get(KEY).status == STATUS_REVIEWING

    def test_pending_timeout_moves_to_error(self):
        gateway = _gateway(pending_timeout_minutes=30)
        _deliver(gateway, "pull_request", _pr_event())
        stale = datetime.now(timezone.utc) - timedelta(minutes=31)
        gateway.store._records[KEY].updated_at = stale

        result = gateway.poll(KEY)

        assert result["status"] == STATUS_ERROR
        assert gateway.store.get(KEY).status == STATUS_ERROR

    def test_pending_without_timeout_stays_reviewing(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())
        gateway.store._records[KEY].updated_at = datetime.now(timezone.utc) - timedelta(days=30)

        assert gateway.poll(KEY)["pending"] is True
        assert gateway.store.get(KEY).status == STATUS_REVIEWING


# ---------------------------------------------------------------------------
# Credit and wiring
# ---------------------------------------------------------------------------


class TestCredit:
    def test_requires_coordinator(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event())
        with pytest.raises(InternalError):
            gateway.credit(KEY)

    def test_unknown_key(self):
        with pytest.raises(NotFoundError):
            _gateway(payments=_payments()).credit(KEY)

    def test_list_records(self):
        gateway = _gateway()
        _deliver(gateway, "pull_request", _pr_event(number=1))
        _deliver(gateway, "pull_request", _pr_event(number=2))
        assert [r.key for r in gateway.list_records()] == ["acme/widgets#2", "acme/widgets#1"]


class TestBuildGateway:
    def test_without_credentials(self):
        gateway = build_gateway(_config(), InMemoryStore())
        assert gateway._review_service is None
        assert gateway._coordinator is None
        assert gateway._github is not None

    def test_with_credentials(self):
        gateway = build_gateway(
            _config(review_service_api_key="gk", payments_api_key="sk_test"),
            InMemoryStore(),
        )
        assert gateway._review_service is not None
        assert gateway._coordinator is not None
        gateway.close()

    def test_close_releases_review_service(self):
        review_service = MagicMock(spec=BaseReviewService)
        _gateway(review_service=review_service).close()
        review_service.close.assert_called_once_with()

    def test_close_without_review_service(self):
        _gateway().close()
