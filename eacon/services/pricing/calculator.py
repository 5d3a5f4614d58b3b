"""
Server-side pricing: the only trusted input is a whole-dollar USD amount.
Tokens and VND are always derived here, never taken from the client.
"""
import math
from dataclasses import dataclass

from eacon.core.errors import InvalidAmount
from eacon.models.user import AccountType

TOKEN_RATE = 400  # tokens per 1 USD
VND_RATE = 26050  # 1 USD -> VND
MIN_AMOUNT_USD = 1
MAX_AMOUNT_USD = 100
CURRENCY_TOLERANCE = 100  # minor units allowed between expected and paid VND

# First match wins.
_UPGRADE_KEYWORDS = (
    ("creator", AccountType.CREATOR),
    ("pro", AccountType.PRO),
    ("premium", AccountType.PREMIUM),
)


@dataclass(frozen=True)
class PriceQuote:
    amount_usd: int
    tokens: int
    amount_vnd: int

    def as_dict(self) -> dict:
        return {"amountUSD": self.amount_usd, "amountVND": self.amount_vnd, "tokens": self.tokens}


def validate_amount_usd(value) -> int:
    """Return value as int or raise InvalidAmount. Never clamps."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(context={"amount_usd": repr(value)})
    if value < MIN_AMOUNT_USD or value > MAX_AMOUNT_USD:
        raise InvalidAmount(context={"amount_usd": value})
    return value


def tokens_for_usd(amount_usd) -> int:
    return validate_amount_usd(amount_usd) * TOKEN_RATE


def vnd_for_usd(amount_usd) -> int:
    return math.floor(validate_amount_usd(amount_usd) * VND_RATE)


def build_quote(amount_usd) -> PriceQuote:
    amount_usd = validate_amount_usd(amount_usd)
    return PriceQuote(
        amount_usd=amount_usd,
        tokens=tokens_for_usd(amount_usd),
        amount_vnd=vnd_for_usd(amount_usd),
    )


def within_tolerance(expected: int, actual: int, tolerance: int = CURRENCY_TOLERANCE) -> bool:
    return abs(int(expected) - int(actual)) <= tolerance


def account_upgrade_for_package(package_type: str) -> str | None:
    """Named plans upgrade the account tier; custom amounts do not."""
    name = (package_type or "").lower()
    for keyword, account_type in _UPGRADE_KEYWORDS:
        if keyword in name:
            return account_type
    return None
