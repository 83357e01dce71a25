"""Payments provider interface consumed by the crediting coordinator."""

from __future__ import annotations

from abc import ABC, abstractmethod


class BasePaymentsProvider(ABC):
    """Implementations translate provider failures into UpstreamError."""

    @abstractmethod
    def find_or_create_account(self, email: str, name: str) -> str:
        """Return the id of the account registered under ``email``, creating it if needed."""

    @abstractmethod
    def credit_balance(
        self,
        account_id: str,
        amount: int,
        currency: str,
        description: str,
        metadata: dict,
        idempotency_key: str | None = None,
    ) -> str:
        """Credit ``amount`` minor units to the account balance and return the transaction id.

        Repeating a call with the same ``idempotency_key`` must not pay twice.
        """
