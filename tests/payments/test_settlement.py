"""
Tests for PaymentService.settle: exactly-once crediting shared by verify,
webhook and sweep.
"""
from datetime import datetime, timezone

import pytest

from eacon.core.errors import AmountMismatchError, GatewayUnavailable, InvalidOrderCode, ParseError, PaymentRecordNotFound
from eacon.models.audit_log import AuditLog
from eacon.models.payment import Payment, PaymentStatus
from eacon.models.token_transaction import TokenTransaction, TransactionStatus
from eacon.models.user import User
from eacon.services.ledger.service import LedgerService
from eacon.services.payments.service import PaymentService, parse_order_code


def _open_order(db, gateway, user, amount_usd=9, package="Custom"):
    return PaymentService(db, gateway).create_payment(user, package, amount_usd).order_code


def _balance(db, user_id):
    db.expire_all()
    return LedgerService(db).balance(user_id)


def test_paid_order_credits_once(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")

    result = PaymentService(db, gateway).verify_payment(user, order_code)

    assert result.success is True
    assert result.status == PaymentStatus.PAID
    assert result.tokens_added == 3600
    assert result.paid_vnd == 234450
    assert result.already_processed is False
    assert _balance(db, user.id) == 3600
    assert LedgerService(db).ledger_sum(user.id) == 3600

    payment = db.query(Payment).filter(Payment.order_code == order_code).one()
    assert payment.status == PaymentStatus.PAID
    assert payment.paid_at is not None
    reservation = db.query(TokenTransaction).filter(TokenTransaction.order_code == order_code).one()
    assert reservation.status == TransactionStatus.SETTLED
    assert reservation.amount == 3600
    assert reservation.details["verification"]["trigger"] == "verify"
    assert "verified via verify" in reservation.description


def test_repeated_calls_are_idempotent(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    svc = PaymentService(db, gateway)

    first = svc.settle(order_code, trigger="webhook")
    results = [svc.verify_payment(user, order_code) for _ in range(3)]
    results.append(svc.settle(order_code, trigger="webhook"))

    assert first.tokens_added == 3600
    for r in results:
        assert r.success is True
        assert r.status == PaymentStatus.PAID
        assert r.already_processed is True
        assert r.tokens_added == 0
    assert _balance(db, user.id) == 3600
    assert db.query(AuditLog).filter(AuditLog.action == "payment_settled").count() == 1


def test_already_settled_does_not_call_gateway(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    svc = PaymentService(db, gateway)
    svc.settle(order_code, trigger="verify", actor_user_id=user.id)
    calls = len(gateway.status_calls)

    svc.settle(order_code, trigger="webhook")
    assert len(gateway.status_calls) == calls


def test_underpaid_is_rejected_and_audited(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID", amount_paid=200000)

    with pytest.raises(AmountMismatchError):
        PaymentService(db, gateway).verify_payment(user, order_code)

    assert _balance(db, user.id) == 0
    payment = db.query(Payment).filter(Payment.order_code == order_code).one()
    assert payment.status == PaymentStatus.PENDING
    audit = db.query(AuditLog).filter(AuditLog.action == "payment_amount_mismatch").one()
    assert audit.payload["suspiciousActivity"] is True
    assert audit.payload["mismatches"]["gateway_paid"] == 200000


def test_paid_status_without_paid_amount_is_rejected(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID", amount_paid=0)

    with pytest.raises(AmountMismatchError):
        PaymentService(db, gateway).verify_payment(user, order_code)

    assert _balance(db, user.id) == 0
    reservation = db.query(TokenTransaction).filter(TokenTransaction.order_code == order_code).one()
    assert reservation.status == TransactionStatus.RESERVED
    audit = db.query(AuditLog).filter(AuditLog.action == "payment_amount_mismatch").one()
    assert audit.payload["suspiciousActivity"] is True
    assert audit.payload["mismatches"]["gateway_paid"] == 0


def test_paid_within_tolerance_is_accepted(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID", amount_paid=234450 - 100)

    result = PaymentService(db, gateway).verify_payment(user, order_code)
    assert result.success is True
    assert result.paid_vnd == 234350
    assert _balance(db, user.id) == 3600


def test_tampered_reservation_is_rejected(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    reservation = db.query(TokenTransaction).filter(TokenTransaction.order_code == order_code).one()
    reservation.details = {**reservation.details, "tokens": 40000}
    db.commit()

    with pytest.raises(AmountMismatchError):
        PaymentService(db, gateway).settle(order_code, trigger="verify")
    assert _balance(db, user.id) == 0


def test_unparseable_reservation(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    reservation = db.query(TokenTransaction).filter(TokenTransaction.order_code == order_code).one()
    reservation.details = {"order_code": order_code, "tokens": "lots"}
    db.commit()

    with pytest.raises(ParseError):
        PaymentService(db, gateway).settle(order_code, trigger="verify")
    assert _balance(db, user.id) == 0


def test_unpaid_is_a_no_op_then_settles_later(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    svc = PaymentService(db, gateway)

    pending = svc.verify_payment(user, order_code)
    assert pending.success is False
    assert pending.status == "PENDING"
    assert _balance(db, user.id) == 0
    reservation = db.query(TokenTransaction).filter(TokenTransaction.order_code == order_code).one()
    assert reservation.status == TransactionStatus.RESERVED

    gateway.set_status(order_code, "PAID")
    assert svc.verify_payment(user, order_code).tokens_added == 3600
    assert svc.verify_payment(user, order_code).already_processed is True
    assert _balance(db, user.id) == 3600


def test_gateway_outage_leaves_order_retryable(db, user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    gateway.fail_status = True
    svc = PaymentService(db, gateway)

    with pytest.raises(GatewayUnavailable):
        svc.verify_payment(user, order_code)
    assert _balance(db, user.id) == 0

    gateway.fail_status = False
    assert svc.verify_payment(user, order_code).tokens_added == 3600


def test_unknown_order_code(db, user, gateway):
    with pytest.raises(PaymentRecordNotFound):
        PaymentService(db, gateway).verify_payment(user, 1234567890)


def test_cannot_settle_someone_elses_order(db, user, make_user, gateway):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    other = make_user()

    with pytest.raises(PaymentRecordNotFound):
        PaymentService(db, gateway).verify_payment(other, order_code)
    assert _balance(db, user.id) == 0


def test_tier_upgrade_applied_with_expiry(db, user, gateway):
    order_code = _open_order(db, gateway, user, amount_usd=20, package="Pro")
    gateway.set_status(order_code, "PAID")

    PaymentService(db, gateway).verify_payment(user, order_code)

    db.expire_all()
    refreshed = db.query(User).filter(User.id == user.id).one()
    assert refreshed.account_type == "PRO"
    expires = refreshed.plan_expires_at
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    remaining = expires - datetime.now(timezone.utc)
    assert 29 <= remaining.days <= 30
    assert refreshed.tokens == 8000


def test_concurrent_settlements_credit_once(db, session_factory, user, gateway):
    """A second settler finishes while the first is waiting on the gateway."""
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    inner_results = []

    def settle_from_other_session(code):
        other = session_factory()
        try:
            inner_results.append(PaymentService(other, gateway).settle(code, trigger="webhook"))
        finally:
            other.close()

    gateway.on_get_status = settle_from_other_session
    outer = PaymentService(db, gateway).settle(order_code, trigger="verify", actor_user_id=user.id)

    assert inner_results[0].tokens_added == 3600
    assert outer.success is True
    assert outer.already_processed is True
    assert outer.tokens_added == 0
    assert _balance(db, user.id) == 3600
    assert LedgerService(db).ledger_sum(user.id) == 3600


class TestParseOrderCode:
    def test_accepts_ints_and_digit_strings(self):
        assert parse_order_code(123) == 123
        assert parse_order_code("123") == 123

    @pytest.mark.parametrize("value", [None, 0, -1, "abc", "12a", 1.5, True, 2**53, [123]])
    def test_rejects_everything_else(self, value):
        with pytest.raises(InvalidOrderCode):
            parse_order_code(value)
