"""
Payment gateway adapter (PayOS).
"""
from functools import lru_cache

from eacon.core.config import settings

from .base import (
    CheckoutRequest,
    CheckoutSession,
    GatewayPaymentInfo,
    GatewayRejected,
    GatewayStatus,
    PaymentGateway,
)
from .payos import PayOSClient


@lru_cache(maxsize=1)
def get_gateway() -> PaymentGateway:
    """Process-wide gateway client; also used as a FastAPI dependency."""
    return PayOSClient(
        client_id=settings.payos_client_id,
        api_key=settings.payos_api_key,
        checksum_key=settings.payos_checksum_key,
        api_url=settings.payos_api_url,
        timeout=settings.payos_timeout,
    )


__all__ = [
    "CheckoutRequest",
    "CheckoutSession",
    "GatewayPaymentInfo",
    "GatewayRejected",
    "GatewayStatus",
    "PaymentGateway",
    "PayOSClient",
    "get_gateway",
]
