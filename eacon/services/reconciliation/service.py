"""
Duplicate purchase credit repair.

Older deployments could credit one paid order more than once (verify and
webhook racing). This pairs every credited PURCHASED row with a PAID payment
and reverses the extras.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from eacon.core.errors import UserNotFound
from eacon.models.payment import Payment, PaymentStatus
from eacon.models.token_transaction import TokenTransaction, TransactionStatus, TransactionType
from eacon.models.user import User
from eacon.services.audit.service import AuditService
from eacon.utils.metrics import duplicate_tokens_removed_total

logger = logging.getLogger(__name__)

ORDER_CODE_RE = re.compile(r"orderCode:(\d+)")
PACKAGE_RE = re.compile(r"^Purchased? (.+?) package", re.IGNORECASE)


@dataclass
class ReconciliationResult:
    tokens_removed: int
    duplicate_transactions: int
    payments: int
    transactions: int

    def as_response(self) -> dict:
        if self.duplicate_transactions:
            return {
                "success": True,
                "message": f"Removed {self.tokens_removed} duplicate tokens from your account",
                "tokensRemoved": self.tokens_removed,
                "duplicateTransactions": self.duplicate_transactions,
            }
        return {
            "success": True,
            "message": "No duplicate tokens found",
            "tokensRemoved": 0,
            "duplicateTransactions": self.duplicate_transactions,
            "payments": self.payments,
            "transactions": self.transactions,
        }


def _package_from_description(description: str | None) -> str | None:
    if not description:
        return None
    match = PACKAGE_RE.match(description.strip())
    return match.group(1).strip().lower() if match else None


def _order_code_from_description(description: str | None) -> int | None:
    if not description:
        return None
    match = ORDER_CODE_RE.search(description)
    return int(match.group(1)) if match else None


def _candidates(txn: TokenTransaction, payments: list[Payment]) -> list[Payment]:
    """Payments this transaction may belong to, strongest evidence first."""
    if txn.payment_id:
        return [p for p in payments if p.id == txn.payment_id]
    order_code = txn.order_code or _order_code_from_description(txn.description)
    if order_code:
        return [p for p in payments if p.order_code == order_code]
    package = _package_from_description(txn.description)
    if package:
        by_package = [p for p in payments if (p.package_type or "").lower() == package]
        if by_package:
            return by_package
    return [p for p in payments if p.tokens == txn.amount]


def find_duplicates(transactions: list[TokenTransaction], payments: list[Payment]) -> list[TokenTransaction]:
    """
    Walk transactions oldest first. Each payment is claimed by the first
    transaction mapping to it; a transaction whose only candidates are
    already claimed is a duplicate. Unmatched transactions are left alone.
    """
    claimed: set[str] = set()
    duplicates = []
    for txn in transactions:
        candidates = _candidates(txn, payments)
        if not candidates:
            continue
        free = [p for p in candidates if p.id not in claimed]
        if free:
            claimed.add(free[0].id)
        else:
            duplicates.append(txn)
    return duplicates


class ReconciliationService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    def fix_duplicate_tokens(
        self,
        user_id: str,
        actor_type: str = "user",
        actor_id: str | None = None,
        client_ip: str | None = None,
    ) -> ReconciliationResult:
        try:
            user = self.db.query(User).filter(User.id == user_id).with_for_update().one_or_none()
            if user is None:
                raise UserNotFound(context={"user_id": user_id})

            payments = (
                self.db.query(Payment)
                .filter(Payment.user_id == user_id, Payment.status == PaymentStatus.PAID)
                .order_by(Payment.created_at.asc())
                .all()
            )
            transactions = (
                self.db.query(TokenTransaction)
                .filter(
                    TokenTransaction.user_id == user_id,
                    TokenTransaction.type == TransactionType.PURCHASED,
                    TokenTransaction.amount > 0,
                    or_(TokenTransaction.status.is_(None), TokenTransaction.status != TransactionStatus.REVERSED),
                )
                .order_by(TokenTransaction.created_at.asc(), TokenTransaction.id.asc())
                .all()
            )
            duplicates = find_duplicates(transactions, payments)
            duplicate_sum = sum(txn.amount for txn in duplicates)
            removed = min(duplicate_sum, user.tokens)

            if duplicates:
                now = datetime.now(timezone.utc)
                self.db.execute(
                    update(TokenTransaction)
                    .where(TokenTransaction.id.in_([txn.id for txn in duplicates]))
                    .values(status=TransactionStatus.REVERSED, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
            if removed > 0:
                self.db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(tokens=User.tokens - removed, updated_at=datetime.now(timezone.utc))
                    .execution_options(synchronize_session=False)
                )
                self.db.add(
                    TokenTransaction(
                        user_id=user_id,
                        amount=-removed,
                        type=TransactionType.ADJUSTMENT,
                        status=TransactionStatus.POSTED,
                        description="Corrected duplicate token additions",
                        details={"reversed": [txn.id for txn in duplicates], "duplicate_sum": duplicate_sum},
                    )
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        result = ReconciliationResult(
            tokens_removed=removed,
            duplicate_transactions=len(duplicates),
            payments=len(payments),
            transactions=len(transactions),
        )
        if duplicates:
            duplicate_tokens_removed_total.inc(removed)
            if removed < duplicate_sum:
                logger.warning(
                    "duplicate_removal_capped",
                    extra={"user_id": user_id, "tokens": removed, "payload": {"duplicate_sum": duplicate_sum}},
                )
            self.audit.log(
                actor_type, actor_id or user_id, "duplicate_tokens_fixed", "user", user_id,
                {
                    "tokensRemoved": removed,
                    "duplicateSum": duplicate_sum,
                    "reversedTransactions": [txn.id for txn in duplicates],
                    "payments": len(payments),
                    "transactions": len(transactions),
                },
                client_ip,
            )
        return result
