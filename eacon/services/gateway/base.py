"""
Base classes and types for payment gateway adapters.
The settlement flow only depends on PaymentGateway; PayOS is the production adapter.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class GatewayStatus:
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    UNDERPAID = "UNDERPAID"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"

    # The gateway will never move these to PAID.
    TERMINAL_UNPAID = frozenset({CANCELLED, EXPIRED, FAILED})


@dataclass
class CheckoutRequest:
    order_code: int
    amount_vnd: int
    description: str
    item_name: str
    return_url: str
    cancel_url: str
    buyer_name: str | None = None
    buyer_email: str | None = None


@dataclass
class CheckoutSession:
    order_code: int
    checkout_url: str
    payment_link_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayPaymentInfo:
    order_code: int
    status: str
    amount: int
    amount_paid: int
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.status == GatewayStatus.PAID


class GatewayRejected(Exception):
    """Gateway answered but refused the request (business error, not an outage)."""

    def __init__(self, code: str, desc: str):
        super().__init__(f"{code}: {desc}")
        self.code = code
        self.desc = desc


class PaymentGateway(ABC):
    """Create checkout links, read payment status, verify webhooks."""

    @abstractmethod
    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        """Raises GatewayUnavailable on any failure."""
        pass

    @abstractmethod
    def get_status(self, order_code: int) -> GatewayPaymentInfo:
        """Raises GatewayUnavailable on any failure."""
        pass

    @abstractmethod
    def verify_webhook(self, body: dict[str, Any]) -> dict[str, Any]:
        """Return the verified `data` object or raise InvalidSignature."""
        pass
