"""
Payment Provider Clients
========================

Thin httpx clients for the provider REST APIs used by checkout and
transaction re-verification.
"""

from app.services.providers.base import ProviderError, ProviderUnavailable
from app.services.providers.flutterwave import FlutterwaveClient
from app.services.providers.paystack import PaystackClient

__all__ = [
    "ProviderError",
    "ProviderUnavailable",
    "PaystackClient",
    "FlutterwaveClient",
]
