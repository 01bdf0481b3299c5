"""
Webhook Signature Verification
==============================

Per-provider verification of raw webhook bodies.

Every verifier takes the exact bytes received on the wire, the signature
header value and the provider secret, and either returns or raises
``AuthorizationError``. Callers must not parse the body before this passes.

Paystack and Flutterwave are plain HMACs over the body; Stripe's signed
timestamp scheme is checked with the Stripe SDK.
"""

import base64
import hashlib
import hmac
import logging
from typing import Callable, Optional

import stripe

from app.config import settings
from app.core.errors import AuthorizationError
from app.models.subscription import PaymentProvider

logger = logging.getLogger(__name__)

# Header carrying each provider's signature
SIGNATURE_HEADERS = {
    PaymentProvider.PAYSTACK: "x-paystack-signature",
    PaymentProvider.FLUTTERWAVE: "flutterwave-signature",
    PaymentProvider.STRIPE: "stripe-signature",
}

# Older Flutterwave dashboards send the secret hash itself in this header
FLUTTERWAVE_LEGACY_HEADER = "verif-hash"


def _require(signature: Optional[str], secret: Optional[str]) -> None:
    if not signature:
        raise AuthorizationError("Missing webhook signature")
    if not secret:
        raise AuthorizationError("Webhook secret not configured")


def _matches(expected: str, received: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), received.strip().encode("utf-8"))


def verify_paystack_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """Paystack: hex HMAC-SHA512 of the body keyed with the secret key."""
    _require(signature, secret)

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
    if not _matches(expected, signature.lower()):
        raise AuthorizationError("Invalid Paystack signature")


def verify_flutterwave_signature(
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    legacy: bool = False,
) -> None:
    """
    Flutterwave: base64 HMAC-SHA256 of the body.

    The older ``verif-hash`` header carries the secret hash itself rather
    than a digest; pass ``legacy=True`` for that scheme.
    """
    _require(signature, secret)

    if legacy:
        if not _matches(secret, signature):
            raise AuthorizationError("Invalid Flutterwave verif-hash")
        return

    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    if not _matches(expected, signature):
        raise AuthorizationError("Invalid Flutterwave signature")


def verify_stripe_signature(
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    tolerance_seconds: Optional[int] = None,
) -> None:
    """
    Stripe: ``t=<unix>,v1=<hex>`` where v1 is HMAC-SHA256 of ``"<t>.<body>"``.

    Any listed v1 signature may match. Deliveries signed longer ago than
    the tolerance are rejected; a tolerance of 0 disables the window.
    """
    _require(signature, secret)

    tolerance = tolerance_seconds if tolerance_seconds is not None else settings.STRIPE_SIGNATURE_TOLERANCE_SECONDS

    try:
        payload = body.decode("utf-8")
    except UnicodeDecodeError:
        raise AuthorizationError("Invalid Stripe signature")

    try:
        stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance=tolerance or None)
    except stripe.SignatureVerificationError as e:
        logger.warning("Stripe signature rejected: %s", e)
        raise AuthorizationError("Invalid Stripe signature")


SignatureVerifier = Callable[..., None]

VERIFIERS: dict[PaymentProvider, SignatureVerifier] = {
    PaymentProvider.PAYSTACK: verify_paystack_signature,
    PaymentProvider.FLUTTERWAVE: verify_flutterwave_signature,
    PaymentProvider.STRIPE: verify_stripe_signature,
}


def verify_signature(
    provider: PaymentProvider,
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    **options,
) -> None:
    """Dispatch to the provider's verifier; ``options`` go to that verifier."""
    verifier = VERIFIERS[PaymentProvider(provider)]
    verifier(body, signature, secret, **options)
