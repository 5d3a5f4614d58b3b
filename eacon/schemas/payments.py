"""
Payment API bodies. Amounts and order codes stay untyped here so the
service can reject bools, floats and strings with its own error codes.
"""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PaymentCreateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package_type: Any = Field(default=None, alias="packageType")
    amount_usd: Any = Field(default=None, alias="amountUSD")


class PaymentVerifyIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_code: Any = Field(default=None, alias="orderCode")


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_code: int
    package_type: str
    amount_usd: int
    amount: int
    tokens: int
    account_upgrade: str | None = None
    status: str
    checkout_url: str | None = None
    paid_at: datetime | None = None
    created_at: datetime
