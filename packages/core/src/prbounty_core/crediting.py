"""At-most-once payout for PRs whose review passed.

A credit runs in three steps:
  1. claim the record in the store: an atomic update that sets ``credit_claim``
     only while status == "pass" and no live claim exists,
  2. resolve the account and call the payments provider with an idempotency
     key derived from the PR key,
  3. commit status="credited", guarded on still holding the claim.

The claim lives in the store, so it holds across threads and across processes
sharing one SQLite file. While it is set the gateway refuses to reset or
re-review the record. A claim older than ``claim_timeout_minutes`` belongs to a
payout that died mid-flight and may be taken over; the idempotency key makes
the retried payment collapse onto the original one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from prbounty_core.errors import DuplicateCreditError, InternalError, NotFoundError, ValidationError
from prbounty_store.models import STATUS_CREDITED, STATUS_PASS

if TYPE_CHECKING:
    from prbounty_core.payments.base import BasePaymentsProvider
    from prbounty_store.base import BaseStore
    from prbounty_store.models import PRRecord

logger = logging.getLogger(__name__)

DEFAULT_CREDIT_AMOUNT = 500
DEFAULT_CLAIM_TIMEOUT_MINUTES = 15


@dataclass
class CreditResult:
    key: str
    payment_account_id: str
    amount: int
    transaction_id: str
    author: str = ""

    @property
    def message(self) -> str:
        return f"Credited {format_amount(self.amount)} to {self.author or self.payment_account_id}"


def format_amount(minor_units: int) -> str:
    return f"${minor_units / 100:.2f}"


def idempotency_key(key: str) -> str:
    return f"pr-bonus-{key}"


class CreditingCoordinator:
    def __init__(
        self,
        store: BaseStore,
        payments: BasePaymentsProvider,
        default_amount: int = DEFAULT_CREDIT_AMOUNT,
        currency: str = "usd",
        fallback_email_domain: str = "example.dev",
        claim_timeout_minutes: float = DEFAULT_CLAIM_TIMEOUT_MINUTES,
    ):
        self._store = store
        self._payments = payments
        self._default_amount = default_amount
        self._currency = currency
        self._fallback_email_domain = fallback_email_domain
        self._claim_timeout = timedelta(minutes=claim_timeout_minutes)

    def credit(self, key: str, amount: int | None = None) -> CreditResult:
        amount = self._default_amount if amount is None else amount
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Credit amount must be a positive integer number of minor units.")

        token = uuid.uuid4().hex
        record = self._store.update(key, {"credit_claim": token}, guard=self._claimable)
        if record is None:
            self._refuse(key)

        try:
            account_id = self.resolve_account(record.author)
            transaction_id = self._payments.credit_balance(
                account_id,
                amount,
                currency=self._currency,
                description=f"PR bonus: {record.key} - {record.title}",
                metadata={"pr_id": record.key},
                idempotency_key=idempotency_key(record.key),
            )
        except Exception:
            self._store.update(key, {"credit_claim": None}, guard=lambda current: current.credit_claim == token)
            raise

        return self._commit(record, token, account_id, amount, transaction_id)

    def resolve_account(self, handle: str) -> str:
        """Explicit operator mapping first, else find-or-create by a synthesized contact identity."""
        mapped = self._store.get_mapping(handle)
        if mapped:
            return mapped
        email = f"{handle.lower()}@{self._fallback_email_domain}"
        return self._payments.find_or_create_account(email=email, name=handle)

    def is_claim_live(self, record: PRRecord) -> bool:
        if not record.credit_claim:
            return False
        if record.updated_at is None:
            return True
        return datetime.now(timezone.utc) - record.updated_at < self._claim_timeout

    def _claimable(self, record: PRRecord) -> bool:
        return record.status == STATUS_PASS and not self.is_claim_live(record)

    def _refuse(self, key: str) -> None:
        current = self._store.get(key)
        if current is None:
            raise NotFoundError(f"PR {key} not found.")
        if current.status == STATUS_CREDITED:
            raise DuplicateCreditError(f"Credit already issued for {key}.")
        if current.status == STATUS_PASS:
            raise DuplicateCreditError(f"A credit for {key} is already in progress.")
        raise DuplicateCreditError(f"PR {key} must have 'pass' status to receive credit (current: {current.status}).")

    def _commit(self, record: PRRecord, token: str, account_id: str, amount: int, transaction_id: str) -> CreditResult:
        note = f"Credited {format_amount(amount)} to account {account_id}"
        committed = self._store.update(
            record.key,
            {
                "status": STATUS_CREDITED,
                "credited_amount": amount,
                "payment_account_id": account_id,
                "credit_claim": None,
                "notes": f"{record.notes}\n{note}" if record.notes else note,
            },
            guard=lambda current: current.credit_claim == token,
        )
        if committed is None:
            logger.error(
                "Credit transaction %s for %s succeeded but the claim was lost before it could be recorded",
                transaction_id,
                record.key,
            )
            raise InternalError(
                f"Payment {transaction_id} for {record.key} went through but the record could not be marked credited."
            )
        logger.info(
            "Credited %s to %s for %s (transaction %s)", format_amount(amount), account_id, record.key, transaction_id
        )
        return CreditResult(
            key=record.key,
            payment_account_id=account_id,
            amount=amount,
            transaction_id=transaction_id,
            author=record.author,
        )
