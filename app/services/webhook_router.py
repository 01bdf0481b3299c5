"""
Webhook Event Router
====================

Authenticates a raw webhook delivery, normalizes it into a canonical event,
re-verifies successful charges with the provider and hands the event to
the reconciler.
"""

import json
import logging
from typing import Mapping, Optional

from fastapi import status

from app.core.errors import AppException, ErrorCodes, InternalError, ValidationError
from app.models.subscription import PaymentProvider
from app.schemas.webhooks import BillingEvent, ChargeSucceeded
from app.services.billing_store import BillingStore
from app.services.credentials import CredentialResolver
from app.services.reconciler import SubscriptionReconciler
from app.services.signatures import (
    FLUTTERWAVE_LEGACY_HEADER,
    SIGNATURE_HEADERS,
    verify_signature,
)
from app.services.transaction_verifier import TransactionVerifier
from app.services.webhook_events import parse_event

logger = logging.getLogger(__name__)

MAX_WEBHOOK_BODY_BYTES = 1024 * 1024

# Credential holding each provider's webhook signing secret
WEBHOOK_SECRET_NAMES = {
    PaymentProvider.PAYSTACK: "PAYSTACK_SECRET_KEY",
    PaymentProvider.FLUTTERWAVE: "FLW_SECRET_HASH",
    PaymentProvider.STRIPE: "STRIPE_WEBHOOK_SECRET",
}


class WebhookRouter:
    """End-to-end handling of one webhook delivery."""

    def __init__(
        self,
        store: BillingStore,
        credentials: CredentialResolver,
        verifier: TransactionVerifier,
        reconciler: SubscriptionReconciler,
    ):
        self.store = store
        self.credentials = credentials
        self.verifier = verifier
        self.reconciler = reconciler

    async def authenticate(
        self,
        provider: PaymentProvider,
        body: bytes,
        headers: Mapping[str, str],
    ) -> None:
        """
        Check the provider signature over the raw body.

        Raises:
            ValidationError: signature header missing
            InternalError: signing secret not configured
            AuthorizationError: signature does not match
        """
        signature: Optional[str] = headers.get(SIGNATURE_HEADERS[provider])
        options = {}

        if not signature and provider == PaymentProvider.FLUTTERWAVE:
            signature = headers.get(FLUTTERWAVE_LEGACY_HEADER)
            options["legacy"] = True

        if not signature:
            raise ValidationError("Missing webhook signature header", field="signature")

        secret = await self.credentials.get(WEBHOOK_SECRET_NAMES[provider])
        if not secret:
            logger.error("Webhook secret for %s is not configured", provider.value)
            raise InternalError(
                f"{provider.value} webhook secret not configured",
                code=ErrorCodes.PROVIDER_NOT_CONFIGURED,
            )

        verify_signature(provider, body, signature, secret, **options)

    @staticmethod
    def decode(body: bytes):
        try:
            return json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Invalid webhook payload: %s", e)
            raise ValidationError("Invalid JSON payload")

    async def handle(
        self,
        provider: PaymentProvider,
        body: bytes,
        headers: Mapping[str, str],
    ) -> BillingEvent:
        """
        Process one delivery and commit its effects.

        Nothing is parsed until the signature has been checked, and nothing
        is committed unless the whole event applied cleanly.
        """
        provider = PaymentProvider(provider)

        if len(body) > MAX_WEBHOOK_BODY_BYTES:
            raise AppException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                code=ErrorCodes.VALIDATION_ERROR,
                message="Webhook payload too large",
            )

        await self.authenticate(provider, body, headers)

        event = parse_event(provider, self.decode(body))

        logger.info(
            "Webhook received: provider=%s type=%s kind=%s",
            provider.value,
            event.event_type,
            event.kind,
        )

        if isinstance(event, ChargeSucceeded):
            event = await self.verifier.verify(event)

        await self.reconciler.apply(event)
        await self.store.commit()

        return event
