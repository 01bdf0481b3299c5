"""
Checkout API Endpoints
======================

Creates provider-hosted checkout sessions for paid plans and confirms
them when the buyer is redirected back.
"""

import logging

from fastapi import APIRouter, Depends, Request

from app.config import settings
from app.core.errors import AuthenticationError, ErrorCodes, ForbiddenError
from app.core.rate_limit import checkout_rate_limit
from app.dependencies import (
    CheckoutServiceDep,
    CheckoutUserOptional,
    CurrencyDetectorDep,
    ReconcilerDep,
    TransactionVerifierDep,
)
from app.schemas.checkout import (
    CheckoutConfirmRequest,
    CheckoutConfirmResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
)
from app.services.cache import CacheKeys, CacheManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/create-session",
    response_model=CheckoutSessionResponse,
    response_model_by_alias=True,
    dependencies=[Depends(checkout_rate_limit)],
)
async def create_checkout_session(
    body: CheckoutSessionRequest,
    request: Request,
    checkout_service: CheckoutServiceDep,
    detector: CurrencyDetectorDep,
    user: CheckoutUserOptional,
) -> CheckoutSessionResponse:
    """
    Create a hosted payment session.

    Signed-in users are identified by their bearer token; guests must
    supply an email. Country is taken from ``countryCode`` or geo headers
    and decides the currency; the provider defaults to the one preferred
    for that currency.

    When ``idempotencyKey`` is given, a retry with the same key returns the
    session created the first time.
    """
    if user is None and not body.email:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_REQUIRED,
            message="Authentication required or email must be provided",
        )

    if user is not None:
        request.state.user_id = user.user_id

    cache_key = None
    if body.idempotency_key:
        owner = user.user_id if user else (body.email or "").strip().lower()
        cache_key = CacheKeys.checkout_session(owner, body.idempotency_key)
        cached = await CacheManager.get(cache_key)
        if cached is not None:
            logger.info("Replaying checkout session for idempotency key %s", body.idempotency_key)
            return CheckoutSessionResponse.model_validate(cached)

    location = detector.detect(request.headers, body.country_code)
    session = await checkout_service.create_session(body, location, user)

    if cache_key:
        await CacheManager.set(
            cache_key,
            session.model_dump(mode="json", by_alias=True),
            ttl=settings.CHECKOUT_IDEMPOTENCY_TTL_SECONDS,
        )

    return session


@router.post(
    "/confirm",
    response_model=CheckoutConfirmResponse,
    response_model_by_alias=True,
    dependencies=[Depends(checkout_rate_limit)],
)
async def confirm_checkout(
    body: CheckoutConfirmRequest,
    request: Request,
    verifier: TransactionVerifierDep,
    reconciler: ReconcilerDep,
    user: CheckoutUserOptional,
) -> CheckoutConfirmResponse:
    """
    Confirm a payment after the provider redirects the buyer back.

    The transaction is re-fetched from the provider and written through the
    same reconciler as the webhook, so both converge on the same
    subscription and payment rows. The payment metadata must name the
    signed-in user.
    """
    if user is None:
        raise AuthenticationError()

    request.state.user_id = user.user_id

    event = await verifier.confirm(body.provider, body.reference.strip(), body.transaction_id)

    if event.user_id != user.user_id:
        logger.warning(
            "Checkout confirm user mismatch: ref=%s metadata_user=%s caller=%s",
            event.reference,
            event.user_id,
            user.user_id,
        )
        raise ForbiddenError(message="Metadata user mismatch")

    try:
        record = await reconciler.apply(event)
        await reconciler.store.commit()
    except Exception:
        await reconciler.store.rollback()
        raise

    return CheckoutConfirmResponse(
        provider=event.provider.value,
        reference=event.reference,
        plan_id=event.plan_id,
        billing_interval=event.billing_interval.value,
        subscription_code=record.provider_subscription_code if record else None,
    )
