"""
Transaction Re-Verification
===========================

Before a success webhook is trusted, the transaction is fetched again from
the provider's own API. The fetched record must name the same reference
and report a successful status. Its amount must match the listed price of
the plan.

The same check backs checkout confirmation, when the buyer returns from
the hosted page before the webhook arrives.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from app.config import settings
from app.core import pricing
from app.core.errors import (
    AuthorizationError,
    ErrorCodes,
    InternalError,
    ServiceUnavailableError,
    ValidationError,
)
from app.models.subscription import PAID_PLANS, BillingInterval, PaymentProvider
from app.schemas.webhooks import ChargeSucceeded
from app.services.credentials import CredentialResolver
from app.services.providers import (
    FlutterwaveClient,
    PaystackClient,
    ProviderError,
    ProviderUnavailable,
)
from app.services.webhook_events import (
    SUCCESS_STATUSES,
    checkout_metadata,
    minor_to_major,
)

logger = logging.getLogger(__name__)

# Providers whose success webhooks must be re-fetched
REVERIFIED_PROVIDERS = {PaymentProvider.PAYSTACK, PaymentProvider.FLUTTERWAVE}

# Providers return floats for major-unit amounts
AMOUNT_TOLERANCE = Decimal("0.01")

CONFIRM_EVENT_TYPE = "checkout.confirm"


@dataclass
class VerifiedTransaction:
    """The provider's authoritative view of a transaction."""

    reference: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    customer_code: Optional[str] = None
    authorization_code: Optional[str] = None


def normalize_status(status: Optional[str]) -> str:
    value = (status or "").strip().lower()
    return "success" if value in SUCCESS_STATUSES else value


class TransactionVerifier:
    """Re-fetch and cross-check transactions for Paystack and Flutterwave."""

    def __init__(
        self,
        credentials: CredentialResolver,
        paystack_client: Optional[PaystackClient] = None,
        flutterwave_client: Optional[FlutterwaveClient] = None,
    ):
        self.credentials = credentials
        self._paystack_client = paystack_client
        self._flutterwave_client = flutterwave_client

    async def _paystack(self) -> PaystackClient:
        if self._paystack_client is None:
            secret = await self.credentials.get("PAYSTACK_SECRET_KEY")
            if not secret:
                raise InternalError("Paystack is not configured", code=ErrorCodes.PROVIDER_NOT_CONFIGURED)
            self._paystack_client = PaystackClient(secret)
        return self._paystack_client

    async def _flutterwave(self) -> FlutterwaveClient:
        if self._flutterwave_client is None:
            secret = await self.credentials.get("FLUTTERWAVE_CLIENT_SECRET")
            if not secret:
                raise InternalError("Flutterwave is not configured", code=ErrorCodes.PROVIDER_NOT_CONFIGURED)
            self._flutterwave_client = FlutterwaveClient(secret)
        return self._flutterwave_client

    async def fetch(self, provider: PaymentProvider, verification_id: str) -> VerifiedTransaction:
        """Fetch the provider record for a transaction."""
        if provider == PaymentProvider.PAYSTACK:
            client = await self._paystack()
            data = await client.verify_transaction(verification_id)
            return VerifiedTransaction(
                reference=str(data.get("reference") or ""),
                status=normalize_status(data.get("status")),
                amount=minor_to_major(
                    Decimal(str(data["amount"])) if data.get("amount") is not None else None,
                    data.get("currency"),
                ),
                currency=(data.get("currency") or "").upper() or None,
                transaction_id=str(data["id"]) if data.get("id") is not None else None,
                metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else {},
                customer_code=_nested(data, "customer", "customer_code"),
                authorization_code=_nested(data, "authorization", "authorization_code"),
            )

        if provider == PaymentProvider.FLUTTERWAVE:
            client = await self._flutterwave()
            data = await client.verify_transaction(verification_id)
            return VerifiedTransaction(
                reference=str(data.get("tx_ref") or ""),
                status=normalize_status(data.get("status")),
                amount=Decimal(str(data["amount"])) if data.get("amount") is not None else None,
                currency=(data.get("currency") or "").upper() or None,
                transaction_id=str(data["id"]) if data.get("id") is not None else None,
                metadata=data.get("meta") if isinstance(data.get("meta"), dict) else {},
            )

        raise ValueError(f"{provider} transactions are not re-verified")

    async def verify(self, event: ChargeSucceeded) -> ChargeSucceeded:
        """
        Confirm a success event against the provider.

        Returns the event with amount, currency and checkout metadata taken
        from the provider's record where it has them.

        Raises:
            AuthorizationError: reference, status or amount mismatch
            ServiceUnavailableError: provider timed out or is down, so the
                webhook fails and the provider retries it
        """
        provider = PaymentProvider(event.provider)
        if provider not in REVERIFIED_PROVIDERS:
            return event

        verification_id = event.verification_id or event.reference

        try:
            verified = await self.fetch(provider, verification_id)
        except ProviderUnavailable as e:
            logger.error("Transaction re-verification unavailable: %s ref=%s", e, event.reference)
            raise ServiceUnavailableError(message="Payment provider unavailable, retry later")
        except ProviderError as e:
            logger.warning("Transaction re-verification rejected: %s ref=%s", e, event.reference)
            raise AuthorizationError("Transaction could not be verified with the provider")

        if verified.reference != event.reference:
            logger.warning(
                "Re-verification reference mismatch: provider=%s webhook=%s fetched=%s",
                provider.value,
                event.reference,
                verified.reference,
            )
            raise AuthorizationError("Verified transaction reference does not match webhook")

        if verified.status != "success":
            logger.warning(
                "Re-verification status not successful: provider=%s ref=%s status=%s",
                provider.value,
                event.reference,
                verified.status,
            )
            raise AuthorizationError("Transaction is not successful")

        merged = _merge(event, verified)
        self.check_amount(merged)
        return merged

    @staticmethod
    def check_amount(event: ChargeSucceeded) -> None:
        """
        Compare a verified charge with the listed price of its plan.

        Skipped when the amount or a paid plan is unknown; the reconciler
        rejects a missing plan on its own.

        Raises:
            AuthorizationError: amount differs from the quoted price
        """
        if event.amount is None or event.plan_id not in PAID_PLANS:
            return

        currency = event.currency or pricing.DEFAULT_CURRENCY
        expected = pricing.quote_amount(
            event.plan_id,
            currency,
            event.billing_interval.value,
            settings.PAID_TRIAL_MULTIPLIER,
        )
        if abs(event.amount - expected) > AMOUNT_TOLERANCE:
            logger.warning(
                "Amount mismatch: provider=%s ref=%s plan=%s interval=%s expected=%s %s received=%s",
                event.provider.value,
                event.reference,
                event.plan_id,
                event.billing_interval.value,
                expected,
                currency,
                event.amount,
            )
            raise AuthorizationError("Amount mismatch for verified transaction")

    async def confirm(
        self,
        provider: str,
        reference: str,
        transaction_id: Optional[str] = None,
    ) -> ChargeSucceeded:
        """
        Build a verified success event for a buyer returning from checkout.

        Paystack looks the charge up by reference, Flutterwave by its
        transaction id. Every paid interval except a trial was sold with a
        provider plan attached, so the event is treated as recurring.

        Raises:
            ValidationError: unknown provider or missing identifiers
            AuthorizationError: the provider does not confirm the charge
        """
        try:
            resolved = PaymentProvider((provider or "").strip().lower())
        except ValueError:
            resolved = None
        if resolved not in REVERIFIED_PROVIDERS:
            raise ValidationError("Invalid provider", field="provider")

        if not reference:
            raise ValidationError("Missing reference", field="reference")

        verification_id = reference
        if resolved == PaymentProvider.FLUTTERWAVE:
            if not transaction_id:
                raise ValidationError("Missing transactionId", field="transactionId")
            verification_id = transaction_id

        event = await self.verify(
            ChargeSucceeded(
                provider=resolved,
                event_type=CONFIRM_EVENT_TYPE,
                reference=reference,
                verification_id=verification_id,
            )
        )
        return event.model_copy(
            update={"has_recurring_plan": event.billing_interval != BillingInterval.TRIAL}
        )


def _nested(data: dict[str, Any], key: str, field_name: str) -> Optional[str]:
    value = data.get(key)
    if isinstance(value, dict) and value.get(field_name):
        return str(value[field_name])
    return None


def _merge(event: ChargeSucceeded, verified: VerifiedTransaction) -> ChargeSucceeded:
    update: dict[str, Any] = {}

    if verified.amount is not None:
        update["amount"] = verified.amount
    if verified.currency:
        update["currency"] = verified.currency
    if verified.transaction_id:
        update["transaction_id"] = verified.transaction_id
    if verified.customer_code:
        update["customer_code"] = verified.customer_code
    if verified.authorization_code:
        update["authorization_code"] = verified.authorization_code

    if verified.metadata:
        for key, value in checkout_metadata(verified.metadata).items():
            if key == "billing_interval":
                # only trust an interval the provider actually echoed back
                if any(k in verified.metadata for k in ("billingInterval", "billing_interval", "interval")):
                    update[key] = value
            elif value:
                update[key] = value

    return event.model_copy(update=update)
