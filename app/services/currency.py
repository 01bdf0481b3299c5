"""
Currency Detection
==================

Country/currency detection from request headers and the provider
recommendation for a currency.
"""

import re
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

from app.core import pricing

_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")

# Headers set by the app or by the CDN in front of it, most specific first
COUNTRY_HEADERS = ("x-checkout-country", "x-country", "cf-ipcountry", "x-vercel-ip-country")


@dataclass(frozen=True)
class CountryCurrency:
    country_code: str
    currency: str


class CurrencyDetector(Protocol):
    def detect(
        self,
        headers: Mapping[str, str],
        explicit_country: Optional[str] = None,
    ) -> CountryCurrency:
        ...


class ProviderRecommender(Protocol):
    def recommend(self, currency: str) -> str:
        ...


def normalize_country(value: Optional[str]) -> Optional[str]:
    """Return an upper-case ISO alpha-2 code, or None if the input isn't one."""
    normalized = (value or "").strip().upper()
    return normalized if _COUNTRY_RE.match(normalized) else None


class HeaderCurrencyDetector:
    """Detect the buyer's country from an explicit value or geo headers."""

    def detect(
        self,
        headers: Mapping[str, str],
        explicit_country: Optional[str] = None,
    ) -> CountryCurrency:
        country = normalize_country(explicit_country)

        if country is None:
            for header in COUNTRY_HEADERS:
                country = normalize_country(headers.get(header))
                if country:
                    break

        country = country or pricing.DEFAULT_COUNTRY
        return CountryCurrency(
            country_code=country,
            currency=pricing.currency_for_country(country),
        )


class PricingProviderRecommender:
    """Recommend the provider configured as preferred for a currency."""

    def recommend(self, currency: str) -> str:
        return pricing.preferred_provider(currency)


def get_currency_detector() -> CurrencyDetector:
    return HeaderCurrencyDetector()


def get_provider_recommender() -> ProviderRecommender:
    return PricingProviderRecommender()
