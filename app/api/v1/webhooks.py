"""
Webhooks API Endpoints
======================

Receives payment provider webhooks (Paystack, Flutterwave, Stripe).

Authentication:
    Each provider signs the raw request body. The signature is checked
    before the body is parsed; see ``app.services.signatures``.

Idempotency:
    Deliveries are at-least-once. Every write is an upsert or
    insert-if-absent keyed by provider identifiers, so replays are safe
    without an event-id cache.
"""

import logging

from fastapi import APIRouter, Depends, Request

from app.core.errors import AppException, InternalError
from app.core.rate_limit import webhook_rate_limit
from app.dependencies import WebhookRouterDep
from app.models.subscription import PaymentProvider
from app.schemas.webhooks import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(webhook_rate_limit)])


async def _process(
    provider: PaymentProvider,
    request: Request,
    webhook_router: WebhookRouterDep,
) -> WebhookAck:
    body = await request.body()
    request.state.webhook_provider = provider.value

    try:
        await webhook_router.handle(provider, body, request.headers)
    except AppException:
        await webhook_router.store.rollback()
        raise
    except Exception:
        logger.exception("Webhook processing error: provider=%s", provider.value)
        await webhook_router.store.rollback()
        raise InternalError("Webhook processing failed")

    return WebhookAck()


@router.post("/paystack", response_model=WebhookAck)
async def paystack_webhook(request: Request, webhook_router: WebhookRouterDep):
    """
    Handle Paystack events, signed with ``x-paystack-signature``.

    Events handled:
    - charge.success
    - subscription.create (acknowledged, no-op)
    - subscription.disable
    - subscription.not_renew
    - invoice.failed / invoice.payment_failed / charge.failed
    """
    return await _process(PaymentProvider.PAYSTACK, request, webhook_router)


@router.post("/flutterwave", response_model=WebhookAck)
async def flutterwave_webhook(request: Request, webhook_router: WebhookRouterDep):
    """
    Handle Flutterwave events, signed with ``flutterwave-signature``
    (or the legacy ``verif-hash``).

    Events handled:
    - charge.completed
    - subscription.cancelled
    """
    return await _process(PaymentProvider.FLUTTERWAVE, request, webhook_router)


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request, webhook_router: WebhookRouterDep):
    """
    Handle Stripe events, signed with ``stripe-signature``.

    Events handled:
    - checkout.session.completed
    - invoice.paid
    - customer.subscription.created / updated / deleted
    - invoice.payment_failed
    """
    return await _process(PaymentProvider.STRIPE, request, webhook_router)
