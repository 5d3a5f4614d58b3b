"""
Payment model: one row per checkout session created at the gateway.
order_code is the correlation id shared with the gateway and the reservation
TokenTransaction. Status moves PENDING -> PAID | CANCELLED | FAILED, never back.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String

from eacon.db.base import Base, JSONType


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    order_code = Column(BigInteger, unique=True, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    package_type = Column(String, nullable=False)
    amount_usd = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)          # VND charged at the gateway
    tokens = Column(Integer, nullable=False)          # tokens credited on settlement
    account_upgrade = Column(String, nullable=True)   # CREATOR / PRO / PREMIUM / None
    status = Column(String, nullable=False, default=PaymentStatus.PENDING, index=True)
    checkout_url = Column(String, nullable=True)
    payment_link_id = Column(String, nullable=True)
    gateway_data = Column(JSONType, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
