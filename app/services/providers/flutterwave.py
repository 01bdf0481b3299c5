"""
Flutterwave Client
==================

Hosted payment links and transaction verification against the
Flutterwave v3 API.
"""

from typing import Any, Optional

from app.services.providers.base import ProviderClient, ProviderError

# payment_options values for each checkout payment method
PAYMENT_OPTIONS = {
    "card": "card",
    "mobile_money": "mobilemoney,mpesa,ussd,account,banktransfer",
}
ALL_PAYMENT_OPTIONS = "card,mobilemoney,mpesa,ussd,account,banktransfer"


def payment_options_for(method: Optional[str]) -> str:
    return PAYMENT_OPTIONS.get(method or "", ALL_PAYMENT_OPTIONS)


class FlutterwaveClient(ProviderClient):
    """Client for https://api.flutterwave.com/v3."""

    BASE_URL = "https://api.flutterwave.com/v3"
    PROVIDER = "flutterwave"

    @property
    def test_mode(self) -> bool:
        return "_TEST" in self.secret_key.upper()

    def _unwrap(self, body: dict[str, Any]) -> dict[str, Any]:
        # Flutterwave wraps responses as {"status": "success", "message": str, "data": {...}}
        if body.get("status") != "success" or not isinstance(body.get("data"), dict):
            raise ProviderError(self.PROVIDER, body.get("message") or "request failed")
        return body["data"]

    async def create_payment(
        self,
        *,
        tx_ref: str,
        amount: str,
        currency: str,
        redirect_url: str,
        customer: dict[str, str],
        meta: dict[str, Any],
        payment_method: Optional[str] = None,
        payment_plan: Optional[str] = None,
        customizations: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """
        Create a hosted payment link.

        Returns:
            ``data`` object with ``link``
        """
        payload: dict[str, Any] = {
            "tx_ref": tx_ref,
            "amount": amount,
            "currency": currency,
            "redirect_url": redirect_url,
            "payment_options": payment_options_for(payment_method),
            "customer": customer,
            "meta": meta,
        }
        if payment_plan:
            payload["payment_plan"] = payment_plan
        if customizations:
            payload["customizations"] = customizations

        return self._unwrap(await self._request("POST", "/payments", payload))

    async def verify_transaction(self, transaction_id: str) -> dict[str, Any]:
        """Fetch the authoritative transaction record by Flutterwave id."""
        return self._unwrap(await self._request("GET", f"/transactions/{transaction_id}/verify"))
