from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from eacon.db.base import Base


class AccountType:
    FREE = "FREE"
    CREATOR = "CREATOR"
    PRO = "PRO"
    PREMIUM = "PREMIUM"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (CheckConstraint("tokens >= 0", name="ck_users_tokens_non_negative"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    # Changed only together with a TokenTransaction row (see LedgerService).
    tokens = Column(Integer, nullable=False, default=0)
    account_type = Column(String, nullable=False, default=AccountType.FREE)
    plan_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def effective_account_type(self, now: datetime | None = None) -> str:
        """Paid tiers fall back to FREE once plan_expires_at has passed."""
        if self.account_type == AccountType.FREE or self.plan_expires_at is None:
            return self.account_type
        now = now or datetime.now(timezone.utc)
        expires = self.plan_expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return self.account_type if now < expires else AccountType.FREE
