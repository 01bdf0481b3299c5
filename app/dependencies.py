"""
FastAPI Dependencies
====================

Dependency injection for the billing routes. Every collaborator is built
here so tests can swap any of them through ``app.dependency_overrides``.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.security import decode_token
from app.db.session import get_db
from app.services.billing_store import BillingStore, SqlAlchemyBillingStore
from app.services.checkout import CheckoutService, CheckoutUser
from app.services.credentials import CredentialResolver, get_credential_resolver
from app.services.currency import (
    CurrencyDetector,
    ProviderRecommender,
    get_currency_detector,
    get_provider_recommender,
)
from app.services.reconciler import SubscriptionReconciler
from app.services.transaction_verifier import TransactionVerifier
from app.services.webhook_router import WebhookRouter

logger = logging.getLogger(__name__)

# HTTP Bearer token security scheme; checkout also serves guests
security = HTTPBearer(auto_error=False)

DBSession = Annotated[AsyncSession, Depends(get_db)]
Credentials = Annotated[CredentialResolver, Depends(get_credential_resolver)]


def get_billing_store(db: DBSession) -> BillingStore:
    return SqlAlchemyBillingStore(db)


def get_transaction_verifier(credentials: Credentials) -> TransactionVerifier:
    return TransactionVerifier(credentials)


def get_reconciler(
    store: Annotated[BillingStore, Depends(get_billing_store)],
) -> SubscriptionReconciler:
    return SubscriptionReconciler(store, trial_days=settings.PAID_TRIAL_DAYS)


def get_webhook_router(
    store: Annotated[BillingStore, Depends(get_billing_store)],
    credentials: Credentials,
    verifier: Annotated[TransactionVerifier, Depends(get_transaction_verifier)],
    reconciler: Annotated[SubscriptionReconciler, Depends(get_reconciler)],
) -> WebhookRouter:
    return WebhookRouter(store, credentials, verifier, reconciler)


def get_checkout_service(
    credentials: Credentials,
    recommender: Annotated[ProviderRecommender, Depends(get_provider_recommender)],
) -> CheckoutService:
    return CheckoutService(credentials, recommender)


async def get_checkout_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Optional[CheckoutUser]:
    """
    Resolve the buyer from a bearer token, if one was sent.

    Invalid or expired tokens are treated as anonymous so the request can
    still proceed as a guest checkout with an email.
    """
    if credentials is None:
        return None

    payload = decode_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        logger.info("Ignoring invalid bearer token on checkout")
        return None

    return CheckoutUser(user_id=str(payload["sub"]), email=payload.get("email"))


# Type aliases
WebhookRouterDep = Annotated[WebhookRouter, Depends(get_webhook_router)]
CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]
CheckoutUserOptional = Annotated[Optional[CheckoutUser], Depends(get_checkout_user)]
TransactionVerifierDep = Annotated[TransactionVerifier, Depends(get_transaction_verifier)]
ReconcilerDep = Annotated[SubscriptionReconciler, Depends(get_reconciler)]
CurrencyDetectorDep = Annotated[CurrencyDetector, Depends(get_currency_detector)]
