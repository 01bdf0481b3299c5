"""
Pricing
=======

Currency, price and payment-method tables used by checkout.
"""

from decimal import ROUND_HALF_UP, Decimal

# Supported currencies and the provider preferred for each
CURRENCY_CONFIGS = {
    "USD": {"symbol": "$", "minor_unit": 100, "preferred_provider": "flutterwave", "countries": ["US"]},
    "NGN": {"symbol": "₦", "minor_unit": 100, "preferred_provider": "paystack", "countries": ["NG"]},
    "GHS": {"symbol": "GH₵", "minor_unit": 100, "preferred_provider": "paystack", "countries": ["GH"]},
    "KES": {"symbol": "KSh", "minor_unit": 100, "preferred_provider": "flutterwave", "countries": ["KE"]},
    "ZAR": {"symbol": "R", "minor_unit": 100, "preferred_provider": "paystack", "countries": ["ZA"]},
    "GBP": {"symbol": "£", "minor_unit": 100, "preferred_provider": "flutterwave", "countries": ["GB"]},
    "EUR": {
        "symbol": "€",
        "minor_unit": 100,
        "preferred_provider": "flutterwave",
        "countries": ["DE", "FR", "IT", "ES", "NL", "BE", "AT", "IE", "PT", "FI", "GR"],
    },
}

DEFAULT_CURRENCY = "USD"
DEFAULT_COUNTRY = "US"

# Monthly list prices; USD is the fallback for currencies without a local price
SUBSCRIPTION_PRICING = {
    "pro": {
        "usd_price": Decimal("9.99"),
        "local_prices": {
            "NGN": Decimal("15000"),
            "GHS": Decimal("150"),
            "KES": Decimal("1200"),
            "ZAR": Decimal("180"),
            "GBP": Decimal("8.49"),
            "EUR": Decimal("9.49"),
        },
    },
    "business": {
        "usd_price": Decimal("29.99"),
        "local_prices": {
            "NGN": Decimal("45000"),
            "GHS": Decimal("450"),
            "KES": Decimal("3600"),
            "ZAR": Decimal("540"),
            "GBP": Decimal("24.99"),
            "EUR": Decimal("27.99"),
        },
    },
}

YEARLY_MULTIPLIER = Decimal("10")
DEFAULT_TRIAL_MULTIPLIER = Decimal("0.3")
MIN_TRIAL_MULTIPLIER = Decimal("0.05")
MAX_TRIAL_MULTIPLIER = Decimal("1")

LOCAL_CURRENCIES = {"NGN", "GHS", "KES", "ZAR"}

AFRICAN_COUNTRY_CODES = {
    "DZ", "AO", "BJ", "BW", "BF", "BI", "CV", "CM", "CF", "TD", "KM", "CG",
    "CD", "CI", "DJ", "EG", "GQ", "ER", "SZ", "ET", "GA", "GM", "GH", "GN",
    "GW", "KE", "LS", "LR", "LY", "MG", "MW", "ML", "MR", "MU", "MA", "MZ",
    "NA", "NE", "NG", "RW", "ST", "SN", "SC", "SL", "SO", "ZA", "SS", "SD",
    "TZ", "TG", "TN", "UG", "ZM", "ZW",
}

EUR_COUNTRY_CODES = {
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR",
    "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK",
    "SI", "ES", "SE", "NO", "IS", "LI", "CH",
}

# Which checkout payment methods each provider can take
PROVIDER_METHOD_SUPPORT = {
    "paystack": {"card", "mobile_money"},
    "flutterwave": {"card", "mobile_money"},
    "stripe": {"card"},
}


def is_african_country(country_code: str) -> bool:
    """Check if an ISO alpha-2 country code is in Africa."""
    return country_code.upper() in AFRICAN_COUNTRY_CODES


def currency_for_country(country_code: str) -> str:
    """
    Pick the checkout currency for a country.

    African countries get their local currency when one is priced, Europe
    gets EUR and everyone else pays in USD.
    """
    code = country_code.upper()

    if is_african_country(code):
        for currency, config in CURRENCY_CONFIGS.items():
            if code in config["countries"]:
                return currency
        return DEFAULT_CURRENCY

    if code in EUR_COUNTRY_CODES:
        return "EUR"

    return DEFAULT_CURRENCY


def is_supported_currency(currency: str) -> bool:
    """Check if a currency code is priced."""
    return currency.upper() in CURRENCY_CONFIGS


def preferred_provider(currency: str) -> str:
    """Get the recommended provider for a currency."""
    config = CURRENCY_CONFIGS.get(currency.upper(), CURRENCY_CONFIGS[DEFAULT_CURRENCY])
    return config["preferred_provider"]


def get_local_price(plan: str, currency: str) -> Decimal:
    """Monthly price for a paid plan in the given currency."""
    pricing = SUBSCRIPTION_PRICING[plan]
    return pricing["local_prices"].get(currency.upper(), pricing["usd_price"])


def resolve_trial_multiplier(raw) -> Decimal:
    """Parse PAID_TRIAL_MULTIPLIER, clamped to [0.05, 1]; default 0.3."""
    if raw is None or raw == "":
        return DEFAULT_TRIAL_MULTIPLIER
    try:
        value = Decimal(str(raw).strip())
    except ArithmeticError:
        return DEFAULT_TRIAL_MULTIPLIER
    if not value.is_finite():
        return DEFAULT_TRIAL_MULTIPLIER
    return min(MAX_TRIAL_MULTIPLIER, max(MIN_TRIAL_MULTIPLIER, value))


def quote_amount(plan: str, currency: str, interval: str, trial_multiplier=None) -> Decimal:
    """
    Amount charged at checkout in major units.

    Yearly is ten months' price; a paid trial is a fraction of one month.
    """
    price = get_local_price(plan, currency)

    if interval == "yearly":
        price = price * YEARLY_MULTIPLIER
    elif interval == "trial":
        price = price * resolve_trial_multiplier(trial_multiplier)

    return price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount to minor units (kobo, cents)."""
    minor = CURRENCY_CONFIGS.get(currency.upper(), CURRENCY_CONFIGS[DEFAULT_CURRENCY])["minor_unit"]
    return int((amount * minor).to_integral_value(rounding=ROUND_HALF_UP))


def supported_payment_methods(provider: str, country_code: str, currency: str) -> set[str]:
    """
    Payment methods a provider offers for a country/currency.

    Outside Africa, and for non-local currencies, checkout is card only.
    """
    methods = set(PROVIDER_METHOD_SUPPORT.get(provider, set()))

    if not is_african_country(country_code) or currency.upper() not in LOCAL_CURRENCIES:
        return methods & {"card"}

    return methods
