"""
Webhook Signature Tests
=======================

HMAC verification for each provider, including tampering, the Stripe
timestamp window and the legacy Flutterwave hash header.
"""

import time
from unittest.mock import patch

import pytest

from app.core.errors import AuthorizationError
from app.models.subscription import PaymentProvider
from app.services.signatures import (
    verify_flutterwave_signature,
    verify_paystack_signature,
    verify_signature,
    verify_stripe_signature,
)
from tests.conftest import (
    FLW_HASH,
    PAYSTACK_SECRET,
    STRIPE_SECRET,
    flutterwave_signature,
    paystack_signature,
    stripe_signature,
)

BODY = b'{"event":"charge.success","data":{"reference":"ref_1","amount":500000}}'


def _flip_one_byte(body: bytes) -> bytes:
    return body[:10] + bytes([body[10] ^ 0x01]) + body[11:]


class TestPaystackSignature:
    """Tests for verify_paystack_signature"""

    def test_valid_signature(self):
        verify_paystack_signature(BODY, paystack_signature(BODY), PAYSTACK_SECRET)

    def test_uppercase_hex_accepted(self):
        verify_paystack_signature(BODY, paystack_signature(BODY).upper(), PAYSTACK_SECRET)

    def test_tampered_body_rejected(self):
        signature = paystack_signature(BODY)
        with pytest.raises(AuthorizationError):
            verify_paystack_signature(_flip_one_byte(BODY), signature, PAYSTACK_SECRET)

    def test_wrong_secret_rejected(self):
        with pytest.raises(AuthorizationError):
            verify_paystack_signature(BODY, paystack_signature(BODY, "sk_other"), PAYSTACK_SECRET)

    def test_missing_signature_rejected(self):
        with pytest.raises(AuthorizationError):
            verify_paystack_signature(BODY, None, PAYSTACK_SECRET)

    def test_missing_secret_rejected(self):
        with pytest.raises(AuthorizationError):
            verify_paystack_signature(BODY, paystack_signature(BODY), "")


class TestFlutterwaveSignature:
    """Tests for verify_flutterwave_signature"""

    def test_valid_signature(self):
        verify_flutterwave_signature(BODY, flutterwave_signature(BODY), FLW_HASH)

    def test_tampered_body_rejected(self):
        signature = flutterwave_signature(BODY)
        with pytest.raises(AuthorizationError):
            verify_flutterwave_signature(_flip_one_byte(BODY), signature, FLW_HASH)

    def test_legacy_hash_matches_secret(self):
        verify_flutterwave_signature(BODY, FLW_HASH, FLW_HASH, legacy=True)

    def test_legacy_hash_mismatch_rejected(self):
        with pytest.raises(AuthorizationError):
            verify_flutterwave_signature(BODY, "not-the-hash", FLW_HASH, legacy=True)

    def test_digest_not_accepted_as_legacy_hash(self):
        with pytest.raises(AuthorizationError):
            verify_flutterwave_signature(BODY, flutterwave_signature(BODY), FLW_HASH, legacy=True)


class TestStripeSignature:
    """Tests for verify_stripe_signature"""

    def test_valid_signature(self):
        verify_stripe_signature(BODY, stripe_signature(BODY), STRIPE_SECRET, tolerance_seconds=300)

    def test_any_v1_may_match(self):
        now = int(time.time())
        good = stripe_signature(BODY, timestamp=now).split(",v1=")[1]
        header = f"t={now},v1={'0' * 64},v1={good}"
        verify_stripe_signature(BODY, header, STRIPE_SECRET, tolerance_seconds=300)

    def test_tampered_body_rejected(self):
        header = stripe_signature(BODY)
        with pytest.raises(AuthorizationError):
            verify_stripe_signature(_flip_one_byte(BODY), header, STRIPE_SECRET, tolerance_seconds=300)

    def test_wrong_secret_rejected(self):
        header = stripe_signature(BODY, secret="whsec_other")
        with pytest.raises(AuthorizationError):
            verify_stripe_signature(BODY, header, STRIPE_SECRET, tolerance_seconds=300)

    def test_stale_timestamp_rejected(self):
        header = stripe_signature(BODY, timestamp=int(time.time()) - 301)
        with pytest.raises(AuthorizationError):
            verify_stripe_signature(BODY, header, STRIPE_SECRET, tolerance_seconds=300)

    def test_zero_tolerance_disables_window(self):
        header = stripe_signature(BODY, timestamp=int(time.time()) - 86400)
        verify_stripe_signature(BODY, header, STRIPE_SECRET, tolerance_seconds=0)

    def test_default_tolerance_from_settings(self):
        header = stripe_signature(BODY, timestamp=int(time.time()) - 3600)
        with patch("app.services.signatures.settings") as mock_settings:
            mock_settings.STRIPE_SIGNATURE_TOLERANCE_SECONDS = 300
            with pytest.raises(AuthorizationError):
                verify_stripe_signature(BODY, header, STRIPE_SECRET)

    def test_non_utf8_body_rejected(self):
        with pytest.raises(AuthorizationError):
            verify_stripe_signature(b"\xff\xfe", stripe_signature(b"\xff\xfe"), STRIPE_SECRET)

    @pytest.mark.parametrize(
        "header",
        ["garbage", "t=,v1=abc", "t=1760000000", "v1=abc", "t=notanumber,v1=abc"],
    )
    def test_malformed_header_rejected(self, header):
        with pytest.raises(AuthorizationError):
            verify_stripe_signature(BODY, header, STRIPE_SECRET, tolerance_seconds=300)


class TestVerifySignatureDispatch:
    """Tests for verify_signature"""

    def test_dispatches_by_provider(self):
        verify_signature(PaymentProvider.PAYSTACK, BODY, paystack_signature(BODY), PAYSTACK_SECRET)

    def test_accepts_provider_string(self):
        with pytest.raises(AuthorizationError):
            verify_signature("flutterwave", BODY, "bad", FLW_HASH)

    def test_passes_options_to_verifier(self):
        verify_signature(PaymentProvider.FLUTTERWAVE, BODY, FLW_HASH, FLW_HASH, legacy=True)

    def test_stripe_through_registry(self):
        verify_signature(PaymentProvider.STRIPE, BODY, stripe_signature(BODY), STRIPE_SECRET)
