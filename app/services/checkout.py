"""
Checkout Session Issuer
=======================

Chooses currency, provider and payment method for a purchase and creates
a provider-hosted payment page.

Every session embeds ``userId``, ``planId`` and ``billingInterval`` in the
provider metadata; the webhook reconciler cannot attribute a payment
without them.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from app.config import settings
from app.core import pricing
from app.core.errors import ErrorCodes, InternalError, ValidationError
from app.models.subscription import PAID_PLANS, BillingInterval, PaymentProvider
from app.schemas.checkout import CheckoutSessionRequest, CheckoutSessionResponse
from app.services.billing_period import normalize_billing_interval
from app.services.credentials import CredentialResolver
from app.services.currency import CountryCurrency, ProviderRecommender
from app.services.providers import FlutterwaveClient, PaystackClient, ProviderError

logger = logging.getLogger(__name__)

# Providers with a working checkout adapter
INTEGRATED_PROVIDERS = (PaymentProvider.PAYSTACK.value, PaymentProvider.FLUTTERWAVE.value)

# Credentials that must all be present for a provider to be offered
REQUIRED_CREDENTIALS = {
    PaymentProvider.PAYSTACK.value: (
        "PAYSTACK_SECRET_KEY",
        "PAYSTACK_PLAN_CODE_PRO",
        "PAYSTACK_PLAN_CODE_BUSINESS",
    ),
    PaymentProvider.FLUTTERWAVE.value: (
        "FLUTTERWAVE_CLIENT_ID",
        "FLUTTERWAVE_CLIENT_SECRET",
        "FLUTTERWAVE_PLAN_ID_PRO",
        "FLUTTERWAVE_PLAN_ID_BUSINESS",
    ),
}

PAYSTACK_PLAN_CODES = {
    "pro": "PAYSTACK_PLAN_CODE_PRO",
    "business": "PAYSTACK_PLAN_CODE_BUSINESS",
}
FLUTTERWAVE_PLAN_IDS = {
    "pro": "FLUTTERWAVE_PLAN_ID_PRO",
    "business": "FLUTTERWAVE_PLAN_ID_BUSINESS",
}


@dataclass
class CheckoutUser:
    """Signed-in buyer, when the request carried a valid token."""

    user_id: str
    email: Optional[str] = None


@dataclass
class CheckoutContext:
    plan_id: str
    interval: BillingInterval
    currency: str
    country_code: str
    success_url: str
    cancel_url: str
    email: str
    payment_method: str
    user_id: str
    reference: str


def append_query_param(url: str, key: str, value: str) -> str:
    """Set a query parameter on an absolute or relative URL."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    query.append((key, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


class CheckoutService:
    """Create hosted checkout sessions."""

    def __init__(
        self,
        credentials: CredentialResolver,
        recommender: ProviderRecommender,
        paystack_client: Optional[PaystackClient] = None,
        flutterwave_client: Optional[FlutterwaveClient] = None,
        clock_ms: Optional[Callable[[], int]] = None,
    ):
        self.credentials = credentials
        self.recommender = recommender
        self._paystack_client = paystack_client
        self._flutterwave_client = flutterwave_client
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

        self._adapters = {
            PaymentProvider.PAYSTACK.value: self._create_paystack_session,
            PaymentProvider.FLUTTERWAVE.value: self._create_flutterwave_session,
        }

    # -------------------------------------------------------------------------
    # Provider selection
    # -------------------------------------------------------------------------

    async def available_providers(self) -> list[str]:
        """Integrated providers whose credentials are all configured."""
        available = []
        for provider in INTEGRATED_PROVIDERS:
            names = REQUIRED_CREDENTIALS[provider]
            values = [await self.credentials.get(name) for name in names]
            if all(values):
                available.append(provider)
        return available

    def choose_default_provider(self, currency: str, available: list[str]) -> str:
        preferred = self.recommender.recommend(currency)
        if preferred in available:
            return preferred
        return available[0] if available else preferred

    # -------------------------------------------------------------------------
    # Session creation
    # -------------------------------------------------------------------------

    def _build_context(
        self,
        request: CheckoutSessionRequest,
        location: CountryCurrency,
        user: Optional[CheckoutUser],
    ) -> CheckoutContext:
        if not request.plan_id or not request.success_url or not request.cancel_url:
            raise ValidationError(
                "Missing required fields: planId, successUrl, and cancelUrl are required"
            )

        plan_id = request.plan_id.strip().lower()
        if plan_id not in PAID_PLANS:
            raise ValidationError("Invalid plan ID or free plan selected", field="planId")

        email = (user.email if user and user.email else None) or request.email
        if not email:
            raise ValidationError("Email is required", field="email")

        currency = location.currency
        if request.currency and pricing.is_supported_currency(request.currency):
            currency = request.currency.upper()

        now_ms = self._clock_ms()
        user_id = user.user_id if user else f"guest_{now_ms}"
        suffix = request.idempotency_key or str(now_ms)

        return CheckoutContext(
            plan_id=plan_id,
            interval=normalize_billing_interval(request.billing_interval),
            currency=currency,
            country_code=location.country_code,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
            email=email,
            payment_method=request.payment_method or "card",
            user_id=user_id,
            reference=f"{plan_id}_{user_id}_{suffix}",
        )

    async def create_session(
        self,
        request: CheckoutSessionRequest,
        location: CountryCurrency,
        user: Optional[CheckoutUser] = None,
    ) -> CheckoutSessionResponse:
        """
        Create a hosted payment session.

        Raises:
            ValidationError: bad plan, missing fields, unsupported provider
                or payment method
            InternalError: the provider refused or could not be reached
        """
        context = self._build_context(request, location, user)

        available = await self.available_providers()
        provider = (request.provider or "").strip().lower() or self.choose_default_provider(
            context.currency, available
        )

        supported = pricing.supported_payment_methods(provider, context.country_code, context.currency)
        if context.payment_method not in supported:
            raise ValidationError(
                f"Selected provider does not support payment method: {context.payment_method}",
                field="paymentMethod",
            )

        if provider not in available or provider not in self._adapters:
            allowed = ", ".join(available) if available else "(none configured)"
            raise ValidationError(f"Unsupported provider. Allowed: {allowed}", field="provider")

        amount = pricing.quote_amount(
            context.plan_id,
            context.currency,
            context.interval.value,
            settings.PAID_TRIAL_MULTIPLIER,
        )

        logger.info(
            "Creating checkout: plan=%s interval=%s currency=%s provider=%s user=%s",
            context.plan_id,
            context.interval.value,
            context.currency,
            provider,
            context.user_id,
        )

        try:
            url, test_mode = await self._adapters[provider](context, amount)
        except ProviderError as e:
            logger.error("Checkout session creation failed: %s ref=%s", e, context.reference)
            raise InternalError("Failed to create checkout session")

        return CheckoutSessionResponse(
            provider=provider,
            reference=context.reference,
            url=url,
            test_mode=test_mode,
            currency=context.currency,
            amount=amount,
            billing_interval=context.interval.value,
        )

    def _metadata(self, context: CheckoutContext, provider: str) -> dict[str, Any]:
        return {
            "userId": context.user_id,
            "planId": context.plan_id,
            "billingInterval": context.interval.value,
            "userEmail": context.email,
            "provider": provider,
            "paymentMethod": context.payment_method,
            "currency": context.currency,
            "countryCode": context.country_code,
        }

    async def _secret(self, name: str) -> str:
        value = await self.credentials.get(name)
        if not value:
            raise InternalError(f"{name} not configured", code=ErrorCodes.PROVIDER_NOT_CONFIGURED)
        return value

    async def _create_paystack_session(self, context: CheckoutContext, amount) -> tuple[str, bool]:
        client = self._paystack_client or PaystackClient(await self._secret("PAYSTACK_SECRET_KEY"))

        plan_code = None
        if context.interval != BillingInterval.TRIAL:
            plan_code = await self.credentials.get(PAYSTACK_PLAN_CODES[context.plan_id])
            if not plan_code:
                raise ValidationError("Invalid plan ID for Paystack. Available plans: pro, business")

        channels = ["card"] if context.payment_method == "card" else None

        data = await client.initialize_transaction(
            email=context.email,
            amount=pricing.to_minor_units(amount, context.currency),
            currency=context.currency,
            reference=context.reference,
            callback_url=append_query_param(context.success_url, "reference", context.reference),
            metadata={**self._metadata(context, "paystack"), "cancel_action": context.cancel_url},
            plan=plan_code,
            channels=channels,
        )
        url = data.get("authorization_url")
        if not url:
            raise ProviderError("paystack", "no authorization_url in response")
        return url, client.test_mode

    async def _create_flutterwave_session(self, context: CheckoutContext, amount) -> tuple[str, bool]:
        client = self._flutterwave_client or FlutterwaveClient(await self._secret("FLUTTERWAVE_CLIENT_SECRET"))

        payment_plan = None
        if context.interval != BillingInterval.TRIAL:
            payment_plan = await self.credentials.get(FLUTTERWAVE_PLAN_IDS[context.plan_id])
            if not payment_plan:
                raise ValidationError("Invalid plan ID for Flutterwave. Available plans: pro, business")

        plan_name = f"{context.plan_id.capitalize()} Plan"
        data = await client.create_payment(
            tx_ref=context.reference,
            amount=str(amount),
            currency=context.currency,
            redirect_url=append_query_param(context.success_url, "reference", context.reference),
            customer={
                "email": context.email,
                "name": context.email.split("@")[0],
            },
            meta=self._metadata(context, "flutterwave"),
            payment_method=context.payment_method,
            payment_plan=payment_plan,
            customizations={
                "title": plan_name,
                "description": f"Subscription payment for {plan_name}",
                "logo": settings.APP_LOGO_URL,
            },
        )
        url = data.get("link")
        if not url:
            raise ProviderError("flutterwave", "no link in response")
        return url, client.test_mode
