"""
PayOS merchant API client using httpx sync client.
Every call is bounded by a timeout and runs through the "payos" circuit breaker.
"""
import logging
import time
from typing import Any

import httpx
import pybreaker

from eacon.core.errors import GatewayUnavailable, InvalidSignature
from eacon.services.circuit_breaker import get_circuit_breaker
from eacon.services.gateway.base import (
    CheckoutRequest,
    CheckoutSession,
    GatewayPaymentInfo,
    GatewayRejected,
    PaymentGateway,
)
from eacon.services.gateway.signature import is_valid_signature, sign_checkout
from eacon.utils.metrics import gateway_request_duration_seconds, gateway_requests_total

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00"
# PayOS rejects descriptions longer than 25 characters for non-linked bank accounts.
MAX_DESCRIPTION_LENGTH = 25


def payos_breaker():
    # GatewayRejected does not count towards fail_max.
    return get_circuit_breaker("payos", exclude=[GatewayRejected])


class PayOSClient(PaymentGateway):
    def __init__(
        self,
        client_id: str,
        api_key: str,
        checksum_key: str,
        api_url: str = "https://api-merchant.payos.vn",
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._client_id = client_id
        self._api_key = api_key
        self._checksum_key = checksum_key
        self._base_url = api_url.rstrip("/")
        self._timeout = timeout
        self._client = http_client
        self._breaker = payos_breaker()

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "x-client-id": self._client_id,
            "x-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, json: dict | None = None) -> dict[str, Any]:
        resp = self.client.request(method, f"{self._base_url}{path}", headers=self._headers(), json=json)
        resp.raise_for_status()
        body = resp.json()
        if not isinstance(body, dict):
            raise ValueError(f"unexpected response body: {type(body).__name__}")
        if str(body.get("code")) != SUCCESS_CODE:
            raise GatewayRejected(str(body.get("code")), body.get("desc") or "Unknown error")
        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError(f"unexpected data field: {type(data).__name__}")
        return data

    def _call(self, operation: str, order_code: int, method: str, path: str, json: dict | None = None) -> dict[str, Any]:
        start = time.time()
        try:
            data = self._breaker.call(self._request, method, path, json)
        except GatewayRejected as e:
            self._record(operation, "rejected", start)
            logger.warning(
                "gateway_rejected",
                extra={"action": operation, "order_code": order_code, "error_code": e.code, "error": e.desc},
            )
            raise GatewayUnavailable(context={"operation": operation, "code": e.code, "desc": e.desc}) from e
        except pybreaker.CircuitBreakerError as e:
            self._record(operation, "circuit_open", start)
            logger.warning("gateway_circuit_open", extra={"action": operation, "order_code": order_code})
            raise GatewayUnavailable(context={"operation": operation, "reason": "circuit_open"}) from e
        except (httpx.HTTPError, ValueError) as e:
            self._record(operation, "error", start)
            logger.error(
                "gateway_request_failed",
                extra={"action": operation, "order_code": order_code, "error": f"{type(e).__name__}: {e}"},
            )
            raise GatewayUnavailable(context={"operation": operation, "error": type(e).__name__}) from e
        self._record(operation, "success", start)
        return data

    def _record(self, operation: str, status: str, start: float) -> None:
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(time.time() - start)

    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        payload: dict[str, Any] = {
            "orderCode": request.order_code,
            "amount": request.amount_vnd,
            "description": request.description[:MAX_DESCRIPTION_LENGTH],
            "items": [{"name": request.item_name[:25], "quantity": 1, "price": request.amount_vnd}],
            "returnUrl": request.return_url,
            "cancelUrl": request.cancel_url,
        }
        if request.buyer_name:
            payload["buyerName"] = request.buyer_name[:25]
        if request.buyer_email:
            payload["buyerEmail"] = request.buyer_email
        payload["signature"] = sign_checkout(payload, self._checksum_key)

        data = self._call("create_checkout", request.order_code, "POST", "/v2/payment-requests", payload)
        checkout_url = data.get("checkoutUrl")
        if not checkout_url:
            logger.error("gateway_missing_checkout_url", extra={"order_code": request.order_code})
            raise GatewayUnavailable(context={"operation": "create_checkout", "reason": "missing_checkout_url"})
        return CheckoutSession(
            order_code=request.order_code,
            checkout_url=checkout_url,
            payment_link_id=data.get("paymentLinkId"),
            raw=data,
        )

    def get_status(self, order_code: int) -> GatewayPaymentInfo:
        data = self._call("get_status", order_code, "GET", f"/v2/payment-requests/{order_code}")
        try:
            return GatewayPaymentInfo(
                order_code=int(data.get("orderCode", order_code)),
                status=str(data.get("status", "")).upper(),
                amount=int(data.get("amount") or 0),
                amount_paid=int(data.get("amountPaid") or 0),
                raw=data,
            )
        except (TypeError, ValueError) as e:
            logger.error("gateway_bad_status_payload", extra={"order_code": order_code, "error": str(e)})
            raise GatewayUnavailable(context={"operation": "get_status", "reason": "bad_payload"}) from e

    def verify_webhook(self, body: dict[str, Any]) -> dict[str, Any]:
        data = body.get("data") if isinstance(body, dict) else None
        signature = body.get("signature") if isinstance(body, dict) else None
        if not is_valid_signature(data, signature, self._checksum_key):
            raise InvalidSignature()
        return data

    def close(self) -> None:
        """Close httpx client."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})
            finally:
                self._client = None
