"""
PayOS HMAC-SHA256 signatures.

Checkout requests sign a fixed set of fields; webhooks sign every key of the
`data` object sorted alphabetically, rendered as key=value joined by "&".
"""
import hashlib
import hmac
import json
from typing import Any

CHECKOUT_SIGNED_FIELDS = ("amount", "cancelUrl", "description", "orderCode", "returnUrl")


def _render_value(value: Any) -> str:
    if value is None or value in ("null", "undefined"):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        items = [dict(sorted(v.items())) if isinstance(v, dict) else v for v in value]
        return json.dumps(items, separators=(",", ":"), ensure_ascii=False)
    if isinstance(value, dict):
        return json.dumps(dict(sorted(value.items())), separators=(",", ":"), ensure_ascii=False)
    return str(value)


def _sign(message: str, checksum_key: str) -> str:
    return hmac.new(checksum_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_data(data: dict[str, Any], checksum_key: str) -> str:
    message = "&".join(f"{key}={_render_value(data[key])}" for key in sorted(data))
    return _sign(message, checksum_key)


def sign_checkout(payload: dict[str, Any], checksum_key: str) -> str:
    return sign_data({key: payload[key] for key in CHECKOUT_SIGNED_FIELDS}, checksum_key)


def is_valid_signature(data: dict[str, Any], signature: str | None, checksum_key: str) -> bool:
    if not signature or not isinstance(data, dict):
        return False
    return hmac.compare_digest(sign_data(data, checksum_key), signature)
