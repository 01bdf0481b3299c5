"""
Paystack Client
===============

Transaction initialization and verification against the Paystack API.
"""

from typing import Any, Optional

from app.services.providers.base import ProviderClient, ProviderError


class PaystackClient(ProviderClient):
    """Client for https://api.paystack.co."""

    BASE_URL = "https://api.paystack.co"
    PROVIDER = "paystack"

    @property
    def test_mode(self) -> bool:
        return self.secret_key.startswith("sk_test_")

    def _unwrap(self, body: dict[str, Any]) -> dict[str, Any]:
        # Paystack wraps every response as {"status": bool, "message": str, "data": {...}}
        if not body.get("status") or not isinstance(body.get("data"), dict):
            raise ProviderError(self.PROVIDER, body.get("message") or "request failed")
        return body["data"]

    async def initialize_transaction(
        self,
        *,
        email: str,
        amount: int,
        currency: str,
        reference: str,
        callback_url: str,
        metadata: dict[str, Any],
        plan: Optional[str] = None,
        channels: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """
        Create a hosted checkout.

        Args:
            amount: Amount in minor units (kobo, pesewas, cents)
            plan: Paystack plan code, making the charge start a subscription

        Returns:
            ``data`` object with ``authorization_url``, ``access_code``, ``reference``
        """
        payload: dict[str, Any] = {
            "email": email,
            "amount": amount,
            "currency": currency,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata,
        }
        if plan:
            payload["plan"] = plan
        if channels:
            payload["channels"] = channels

        return self._unwrap(await self._request("POST", "/transaction/initialize", payload))

    async def verify_transaction(self, reference: str) -> dict[str, Any]:
        """Fetch the authoritative transaction record for a reference."""
        return self._unwrap(await self._request("GET", f"/transaction/verify/{reference}"))
