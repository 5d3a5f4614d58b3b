"""
TokenTransaction: append-only token ledger.

Purchases use a claim-then-fill row: created RESERVED with amount 0 when the
checkout is opened, switched to SETTLED with the real amount by exactly one
settlement (conditional UPDATE on status). Expected amounts live in `details`.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text

from eacon.db.base import Base, JSONType


class TransactionType:
    EARNED = "EARNED"
    PURCHASED = "PURCHASED"
    USED = "USED"
    ADJUSTMENT = "ADJUSTMENT"


class TransactionStatus:
    RESERVED = "RESERVED"   # purchase intent, amount 0
    SETTLED = "SETTLED"     # purchase credited
    VOIDED = "VOIDED"       # purchase cancelled at the gateway
    REVERSED = "REVERSED"   # duplicate credit compensated by an ADJUSTMENT
    POSTED = "POSTED"       # plain credit/debit


class TokenTransaction(Base):
    __tablename__ = "token_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    payment_id = Column(String, ForeignKey("payments.id"), nullable=True, index=True)
    order_code = Column(BigInteger, unique=True, nullable=True)
    amount = Column(Integer, nullable=False, default=0)
    type = Column(String, nullable=False)
    status = Column(String, nullable=True, default=TransactionStatus.POSTED)
    description = Column(Text, nullable=True)
    details = Column(JSONType, nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
