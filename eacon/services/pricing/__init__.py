"""
Pricing calculator: USD -> tokens / VND.
"""
from .calculator import (
    CURRENCY_TOLERANCE,
    MAX_AMOUNT_USD,
    MIN_AMOUNT_USD,
    TOKEN_RATE,
    VND_RATE,
    PriceQuote,
    account_upgrade_for_package,
    build_quote,
    tokens_for_usd,
    validate_amount_usd,
    vnd_for_usd,
    within_tolerance,
)

__all__ = [
    "CURRENCY_TOLERANCE",
    "MAX_AMOUNT_USD",
    "MIN_AMOUNT_USD",
    "TOKEN_RATE",
    "VND_RATE",
    "PriceQuote",
    "account_upgrade_for_package",
    "build_quote",
    "tokens_for_usd",
    "validate_amount_usd",
    "vnd_for_usd",
    "within_tolerance",
]
