"""
LedgerService: every change to User.tokens goes through here together with a
TokenTransaction row in the same database transaction.

Methods flush but never commit; the caller owns the transaction boundary.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from eacon.core.errors import InsufficientTokens, UserNotFound
from eacon.models.payment import Payment
from eacon.models.token_transaction import TokenTransaction, TransactionStatus, TransactionType
from eacon.models.user import User
from eacon.services.pricing import PriceQuote

logger = logging.getLogger(__name__)


def reservation_description(package_type: str, order_code: int, quote: PriceQuote) -> str:
    return (
        f"Purchase {package_type} package - orderCode:{order_code} "
        f"amountUSD:{quote.amount_usd} tokens:{quote.tokens} amountVND:{quote.amount_vnd}"
    )


class LedgerService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Purchase reservations (claim then fill)
    # ------------------------------------------------------------------

    def reserve_purchase(self, payment: Payment, quote: PriceQuote) -> TokenTransaction:
        """Zero-amount RESERVED row; the settlement lock for payment.order_code."""
        reservation = TokenTransaction(
            user_id=payment.user_id,
            payment_id=payment.id,
            order_code=payment.order_code,
            amount=0,
            type=TransactionType.PURCHASED,
            status=TransactionStatus.RESERVED,
            description=reservation_description(payment.package_type, payment.order_code, quote) + " (pending)",
            details={
                "order_code": payment.order_code,
                "amount_usd": quote.amount_usd,
                "tokens": quote.tokens,
                "amount_vnd": quote.amount_vnd,
            },
        )
        self.db.add(reservation)
        self.db.flush()
        return reservation

    def get_reservation(self, order_code: int) -> TokenTransaction | None:
        return (
            self.db.query(TokenTransaction)
            .filter(
                TokenTransaction.order_code == order_code,
                TokenTransaction.type == TransactionType.PURCHASED,
            )
            .one_or_none()
        )

    def claim_reservation(
        self,
        reservation: TokenTransaction,
        tokens: int,
        verification: dict[str, Any],
    ) -> bool:
        """
        RESERVED -> SETTLED with the credited amount. Conditional on the row
        still being RESERVED; returns False if another caller got there first.
        """
        now = datetime.now(timezone.utc)
        details = dict(reservation.details or {})
        details["verification"] = verification
        description = (reservation.description or "").replace(" (pending)", "")
        description += f" - verified via {verification.get('trigger', 'unknown')}"
        result = self.db.execute(
            update(TokenTransaction)
            .where(
                TokenTransaction.id == reservation.id,
                TokenTransaction.status == TransactionStatus.RESERVED,
            )
            .values(
                amount=tokens,
                status=TransactionStatus.SETTLED,
                description=description,
                details=details,
                settled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def void_reservation(self, reservation_id: str, reason: str) -> bool:
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(TokenTransaction)
            .where(
                TokenTransaction.id == reservation_id,
                TokenTransaction.status == TransactionStatus.RESERVED,
            )
            .values(status=TransactionStatus.VOIDED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("reservation_voided", extra={"payment_id": reservation_id, "error": reason})
        return result.rowcount == 1

    def increment_balance(self, user_id: str, amount: int, extra_values: dict[str, Any] | None = None) -> None:
        """Raw balance increment; only for callers that write the matching ledger row themselves."""
        values: dict[str, Any] = {"tokens": User.tokens + amount, "updated_at": datetime.now(timezone.utc)}
        if extra_values:
            values.update(extra_values)
        result = self.db.execute(
            update(User).where(User.id == user_id).values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise UserNotFound(context={"user_id": user_id})

    # ------------------------------------------------------------------
    # Plain credits / debits
    # ------------------------------------------------------------------

    def credit(
        self,
        user_id: str,
        amount: int,
        txn_type: str = TransactionType.EARNED,
        description: str | None = None,
    ) -> TokenTransaction:
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        self.increment_balance(user_id, amount)
        txn = TokenTransaction(
            user_id=user_id,
            amount=amount,
            type=txn_type,
            status=TransactionStatus.POSTED,
            description=description or f"Earned {amount} tokens",
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    def spend(self, user_id: str, amount: int, description: str | None = None) -> TokenTransaction:
        """Atomically deduct tokens. Raises InsufficientTokens instead of going negative."""
        if amount <= 0:
            raise ValueError("spend amount must be positive")
        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.tokens >= amount)
            .values(tokens=User.tokens - amount, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if self.db.query(User.id).filter(User.id == user_id).first() is None:
                raise UserNotFound(context={"user_id": user_id})
            raise InsufficientTokens(context={"user_id": user_id, "amount": amount})
        txn = TokenTransaction(
            user_id=user_id,
            amount=-amount,
            type=TransactionType.USED,
            status=TransactionStatus.POSTED,
            description=description or f"Spent {amount} tokens",
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance(self, user_id: str) -> int:
        tokens = self.db.query(User.tokens).filter(User.id == user_id).scalar()
        if tokens is None:
            raise UserNotFound(context={"user_id": user_id})
        return tokens

    def ledger_sum(self, user_id: str) -> int:
        """Sum of all ledger rows; equals User.tokens when the ledger is consistent."""
        return int(
            self.db.query(func.coalesce(func.sum(TokenTransaction.amount), 0))
            .filter(TokenTransaction.user_id == user_id)
            .scalar()
        )

    def history(self, user_id: str, limit: int = 50, offset: int = 0) -> list[TokenTransaction]:
        return (
            self.db.query(TokenTransaction)
            .filter(TokenTransaction.user_id == user_id)
            .order_by(TokenTransaction.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_recent_purchases(self, user_id: str, since: datetime) -> int:
        return (
            self.db.query(func.count(TokenTransaction.id))
            .filter(
                TokenTransaction.user_id == user_id,
                TokenTransaction.type == TransactionType.PURCHASED,
                TokenTransaction.created_at >= since,
            )
            .scalar()
        ) or 0
