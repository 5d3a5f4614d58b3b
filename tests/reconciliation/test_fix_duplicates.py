"""Tests for duplicate purchase credit repair."""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from eacon.models.audit_log import AuditLog
from eacon.models.payment import Payment, PaymentStatus
from eacon.models.token_transaction import TokenTransaction, TransactionStatus, TransactionType
from eacon.services.ledger.service import LedgerService
from eacon.services.reconciliation.service import ReconciliationService, find_duplicates

BASE = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _paid_payment(db, user, tokens=3600, package="Custom", minutes=0):
    payment = Payment(
        order_code=int(uuid4().int % 10**12),
        user_id=user.id,
        package_type=package,
        amount_usd=tokens // 400,
        amount=(tokens // 400) * 26050,
        tokens=tokens,
        status=PaymentStatus.PAID,
        created_at=BASE + timedelta(minutes=minutes),
    )
    db.add(payment)
    db.flush()
    return payment


def _credit(db, user, amount, minutes, description, payment_id=None, status=TransactionStatus.SETTLED):
    db.add(TokenTransaction(
        user_id=user.id,
        payment_id=payment_id,
        amount=amount,
        type=TransactionType.PURCHASED,
        status=status,
        description=description,
        created_at=BASE + timedelta(minutes=minutes),
    ))


def test_removes_exactly_the_injected_duplicate(db, make_user):
    user = make_user(tokens=7200)
    payment = _paid_payment(db, user)
    _credit(db, user, 3600, 1, "Purchase Custom package", payment_id=payment.id)
    _credit(db, user, 3600, 2, "Purchased Custom package via webhook")
    db.commit()

    result = ReconciliationService(db).fix_duplicate_tokens(user.id)

    assert result.tokens_removed == 3600
    assert result.duplicate_transactions == 1
    db.expire_all()
    ledger = LedgerService(db)
    assert ledger.balance(user.id) == 3600
    assert ledger.ledger_sum(user.id) == 3600
    reversed_rows = db.query(TokenTransaction).filter(TokenTransaction.status == TransactionStatus.REVERSED).all()
    assert len(reversed_rows) == 1
    assert reversed_rows[0].description == "Purchased Custom package via webhook"
    adjustment = db.query(TokenTransaction).filter(TokenTransaction.type == TransactionType.ADJUSTMENT).one()
    assert adjustment.amount == -3600
    assert db.query(AuditLog).filter(AuditLog.action == "duplicate_tokens_fixed").count() == 1


def test_second_run_finds_nothing(db, make_user):
    user = make_user(tokens=7200)
    payment = _paid_payment(db, user)
    _credit(db, user, 3600, 1, "Purchase Custom package", payment_id=payment.id)
    _credit(db, user, 3600, 2, "Purchased Custom package")
    db.commit()
    svc = ReconciliationService(db)
    svc.fix_duplicate_tokens(user.id)

    again = svc.fix_duplicate_tokens(user.id)

    assert again.tokens_removed == 0
    assert again.duplicate_transactions == 0
    assert again.as_response()["message"] == "No duplicate tokens found"
    db.expire_all()
    assert LedgerService(db).balance(user.id) == 3600


def test_two_real_purchases_of_same_package_are_kept(db, make_user):
    user = make_user(tokens=7200)
    first = _paid_payment(db, user, minutes=0)
    second = _paid_payment(db, user, minutes=10)
    _credit(db, user, 3600, 1, "Purchased Custom package", payment_id=first.id)
    _credit(db, user, 3600, 11, "Purchased Custom package", payment_id=second.id)
    db.commit()

    result = ReconciliationService(db).fix_duplicate_tokens(user.id)

    assert result.tokens_removed == 0
    db.expire_all()
    assert LedgerService(db).balance(user.id) == 7200


def test_removal_is_capped_at_current_balance(db, make_user):
    user = make_user(tokens=1000)
    payment = _paid_payment(db, user)
    _credit(db, user, 3600, 1, "Purchased Custom package", payment_id=payment.id)
    _credit(db, user, 3600, 2, "Purchased Custom package")
    db.commit()

    result = ReconciliationService(db).fix_duplicate_tokens(user.id)

    assert result.tokens_removed == 1000
    assert result.duplicate_transactions == 1
    db.expire_all()
    assert LedgerService(db).balance(user.id) == 0


def test_reserved_rows_are_ignored(db, make_user):
    user = make_user(tokens=3600)
    payment = _paid_payment(db, user)
    _credit(db, user, 3600, 1, "Purchase Custom package", payment_id=payment.id)
    _credit(db, user, 0, 2, "Purchase Custom package (pending)", status=TransactionStatus.RESERVED)
    db.commit()

    assert ReconciliationService(db).fix_duplicate_tokens(user.id).tokens_removed == 0


class TestMatching:
    def _txn(self, amount, description=None, payment_id=None, order_code=None):
        return TokenTransaction(
            id=str(uuid4()), amount=amount, description=description, payment_id=payment_id, order_code=order_code,
        )

    def _payment(self, tokens, package="Custom", order_code=1):
        return Payment(id=str(uuid4()), tokens=tokens, package_type=package, order_code=order_code)

    def test_order_code_in_description_wins_over_amount(self):
        a = self._payment(400, order_code=111)
        b = self._payment(400, order_code=222)
        txns = [
            self._txn(400, "Purchase Custom package - orderCode:111 amountUSD:1"),
            self._txn(400, "Purchase Custom package - orderCode:222 amountUSD:1"),
        ]
        assert find_duplicates(txns, [a, b]) == []

    def test_amount_fallback_flags_extra_credit(self):
        p = self._payment(800, package="Bundle")
        txns = [self._txn(800, "Tokens"), self._txn(800, "Tokens again")]
        assert find_duplicates(txns, [p]) == [txns[1]]

    def test_unmatched_transactions_are_left_alone(self):
        p = self._payment(800)
        assert find_duplicates([self._txn(123, "odd")], [p]) == []
