from __future__ import annotations

import logging

from prbounty_core.errors import UpstreamError
from prbounty_core.payments.base import BasePaymentsProvider

logger = logging.getLogger(__name__)


class StripePaymentsProvider(BasePaymentsProvider):
    """Customer balance credits through the Stripe API.

    Stripe models a credit as a balance transaction with a negative amount.
    """

    def __init__(self, api_key: str):
        try:
            import stripe
        except ImportError:
            raise ImportError("The 'stripe' package is required for crediting. Install it with: pip install stripe")
        if not api_key:
            raise ValueError("A Stripe secret key is required.")
        self._stripe = stripe
        self._api_key = api_key

    def find_or_create_account(self, email: str, name: str) -> str:
        try:
            existing = self._stripe.Customer.list(email=email, limit=1, api_key=self._api_key)
            if existing.data:
                return existing.data[0].id
            customer = self._stripe.Customer.create(
                email=email,
                name=name,
                description=f"GitHub contributor: {name}",
                api_key=self._api_key,
            )
            logger.info("Created payment account %s for %s", customer.id, name)
            return customer.id
        except self._stripe.StripeError as e:
            logger.error("Stripe customer lookup failed for %s: %s", email, e)
            raise UpstreamError(f"Payments provider error: {e.user_message or type(e).__name__}") from e

    def credit_balance(
        self,
        account_id: str,
        amount: int,
        currency: str,
        description: str,
        metadata: dict,
        idempotency_key: str | None = None,
    ) -> str:
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        try:
            transaction = self._stripe.Customer.create_balance_transaction(
                account_id,
                amount=-amount,
                currency=currency,
                description=description,
                metadata=metadata,
                api_key=self._api_key,
                **options,
            )
        except self._stripe.StripeError as e:
            logger.error("Stripe balance credit failed for %s: %s", account_id, e)
            raise UpstreamError(f"Payments provider error: {e.user_message or type(e).__name__}") from e
        return transaction.id
