from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TokenSpendIn(BaseModel):
    amount: int = Field(gt=0)
    description: str | None = Field(default=None, max_length=500)


class TokenTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: int
    type: str
    status: str
    description: str | None = None
    order_code: int | None = None
    created_at: datetime
