"""Tests for PaymentService.handle_webhook."""
import pytest

from eacon.core.errors import GatewayUnavailable, InvalidOrderCode, InvalidSignature, RequestValidationFailed
from eacon.models.audit_log import AuditLog
from eacon.models.payment import Payment, PaymentStatus
from eacon.models.user import User
from eacon.services.ledger.service import LedgerService
from eacon.services.payments.service import PaymentService


def _open_order(db, gateway, user):
    return PaymentService(db, gateway).create_payment(user, "Custom", 9).order_code


def _paid_data(order_code, **extra):
    data = {
        "orderCode": order_code,
        "amount": 234450,
        "description": "Token purchase",
        "code": "00",
        "desc": "success",
        "reference": "FT123",
    }
    data.update(extra)
    return data


def test_signed_paid_webhook_settles(db, user, gateway, webhook_body):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")

    ack = PaymentService(db, gateway).handle_webhook(webhook_body(_paid_data(order_code)), client_ip="1.2.3.4")

    assert ack == {"success": True}
    db.expire_all()
    assert LedgerService(db).balance(user.id) == 3600
    assert db.query(Payment).filter(Payment.order_code == order_code).one().status == PaymentStatus.PAID


def test_webhook_after_verify_is_acknowledged_without_credit(db, user, gateway, webhook_body):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    svc = PaymentService(db, gateway)
    svc.verify_payment(user, order_code)

    ack = svc.handle_webhook(webhook_body(_paid_data(order_code)))

    assert ack["success"] is True
    assert ack["message"] == "Payment already processed"
    db.expire_all()
    assert LedgerService(db).balance(user.id) == 3600


def test_bad_signature_touches_nothing(db, user, gateway, webhook_body):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    body = webhook_body(_paid_data(order_code))
    body["data"]["amount"] = 1

    with pytest.raises(InvalidSignature):
        PaymentService(db, gateway).handle_webhook(body)

    assert gateway.status_calls == []
    db.expire_all()
    assert LedgerService(db).balance(user.id) == 0
    assert db.query(AuditLog).filter(AuditLog.action == "webhook_invalid_signature").count() == 1


def test_non_dict_payload(db, gateway):
    with pytest.raises(RequestValidationFailed):
        PaymentService(db, gateway).handle_webhook(["not", "a", "dict"])


def test_malformed_order_code(db, gateway, webhook_body):
    with pytest.raises(InvalidOrderCode):
        PaymentService(db, gateway).handle_webhook(webhook_body(_paid_data("abc")))


def test_failed_code_is_acknowledged_without_settling(db, user, gateway, webhook_body):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")

    ack = PaymentService(db, gateway).handle_webhook(webhook_body(_paid_data(order_code, code="01")))

    assert ack["success"] is True
    assert gateway.status_calls == []
    db.expire_all()
    assert LedgerService(db).balance(user.id) == 0


def test_unknown_order_is_acknowledged(db, gateway, webhook_body):
    ack = PaymentService(db, gateway).handle_webhook(webhook_body(_paid_data(123)))
    assert ack == {"success": True, "message": "Unknown order code"}


def test_amount_mismatch_is_acknowledged_and_audited(db, user, gateway, webhook_body):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID", amount_paid=200000)

    ack = PaymentService(db, gateway).handle_webhook(webhook_body(_paid_data(order_code)))

    assert ack["success"] is False
    assert ack["acknowledged"] is True
    db.expire_all()
    assert LedgerService(db).balance(user.id) == 0
    assert db.query(AuditLog).filter(AuditLog.action == "payment_amount_mismatch").count() == 1


def test_gateway_outage_propagates_for_retry(db, user, gateway, webhook_body):
    order_code = _open_order(db, gateway, user)
    gateway.fail_status = True

    with pytest.raises(GatewayUnavailable):
        PaymentService(db, gateway).handle_webhook(webhook_body(_paid_data(order_code)))


def test_missing_user_is_acknowledged_without_settling(db, user, gateway, webhook_body):
    order_code = _open_order(db, gateway, user)
    gateway.set_status(order_code, "PAID")
    db.query(User).filter(User.id == user.id).delete(synchronize_session=False)
    db.commit()

    ack = PaymentService(db, gateway).handle_webhook(webhook_body(_paid_data(order_code)))

    assert ack == {"success": False, "acknowledged": True, "message": "User not found"}
    db.expire_all()
    payment = db.query(Payment).filter(Payment.order_code == order_code).one()
    assert payment.status == PaymentStatus.PENDING
