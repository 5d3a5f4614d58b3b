"""
PaymentService: token purchases through the PayOS gateway.

Responsibilities:
- Server-side pricing and fraud guard when a checkout is created
- One settlement path shared by the verify endpoint, the webhook and the sweep
- Exactly-once crediting: the reservation row is claimed with a conditional
  UPDATE inside the same transaction that credits the user
- Audit trail for every attempt, block, gateway error and suspicious payment
"""
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from eacon.core.config import settings
from eacon.core.errors import (
    AmountMismatchError,
    BillingError,
    GatewayUnavailable,
    InvalidAmount,
    InvalidOrderCode,
    InvalidSignature,
    ParseError,
    PaymentRecordNotFound,
    RequestValidationFailed,
    TooManyAttempts,
    UserNotFound,
)
from eacon.models.payment import Payment, PaymentStatus
from eacon.models.token_transaction import TokenTransaction, TransactionStatus
from eacon.models.user import User
from eacon.services.audit.service import AuditService
from eacon.services.gateway import CheckoutRequest, GatewayPaymentInfo, GatewayStatus, PaymentGateway
from eacon.services.ledger.service import LedgerService
from eacon.services.pricing import (
    PriceQuote,
    account_upgrade_for_package,
    build_quote,
    within_tolerance,
)
from eacon.utils.metrics import (
    payment_create_rejected_total,
    payment_settlements_total,
    payments_created_total,
    suspicious_payments_total,
    tokens_credited_total,
)

logger = logging.getLogger(__name__)

MAX_ORDER_CODE = 9_007_199_254_740_991  # gateway limit (2**53 - 1)
MAX_PACKAGE_TYPE_LENGTH = 100
CHECKOUT_DESCRIPTION = "Token purchase"


@dataclass
class PaymentIntent:
    payment_id: str
    order_code: int
    checkout_url: str
    quote: PriceQuote

    def as_response(self) -> dict:
        return {
            "success": True,
            "data": {"checkoutUrl": self.checkout_url},
            "orderCode": self.order_code,
            "calculation": self.quote.as_dict(),
        }


@dataclass
class SettlementResult:
    success: bool
    status: str
    order_code: int
    tokens_added: int = 0
    paid_vnd: int | None = None
    already_processed: bool = False
    message: str | None = None

    def as_response(self) -> dict:
        body: dict[str, Any] = {"success": self.success, "status": self.status}
        if self.tokens_added:
            body["tokensAdded"] = self.tokens_added
        if self.paid_vnd is not None:
            body["paidVND"] = self.paid_vnd
        if self.message:
            body["message"] = self.message
        return body


@dataclass(frozen=True)
class ExpectedAmounts:
    order_code: int
    amount_usd: int
    tokens: int
    amount_vnd: int


@dataclass
class SweepReport:
    checked: int = 0
    settled: int = 0
    cancelled: int = 0
    errors: int = 0
    order_codes: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"checked": self.checked, "settled": self.settled, "cancelled": self.cancelled, "errors": self.errors}


def parse_order_code(value: Any) -> int:
    """Order codes are positive integers; digit strings are accepted."""
    if isinstance(value, bool):
        raise InvalidOrderCode(context={"order_code": repr(value)})
    if isinstance(value, str) and value.strip().isdecimal():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0 or value > MAX_ORDER_CODE:
        raise InvalidOrderCode(context={"order_code": repr(value)})
    return value


def parse_expected_amounts(reservation: TokenTransaction) -> ExpectedAmounts:
    """Read the amounts recorded when the checkout was created."""
    details = reservation.details
    if not isinstance(details, dict):
        raise ParseError(context={"transaction_id": reservation.id, "reason": "missing_details"})
    try:
        values = {key: details[key] for key in ("order_code", "amount_usd", "tokens", "amount_vnd")}
    except KeyError as e:
        raise ParseError(context={"transaction_id": reservation.id, "missing": str(e)}) from e
    for key, value in values.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ParseError(context={"transaction_id": reservation.id, "field": key, "value": repr(value)})
    return ExpectedAmounts(**values)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class PaymentService:
    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.ledger = LedgerService(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Payment creation
    # ------------------------------------------------------------------

    def create_payment(
        self,
        user: User,
        package_type: Any,
        amount_usd: Any,
        client_ip: str | None = None,
    ) -> PaymentIntent:
        """
        Price the purchase server-side, open a checkout at the gateway and
        record the PENDING payment with its zero-amount reservation row.
        Nothing is written if the gateway call fails.
        """
        self.audit.log(
            "user", user.id, "payment_create_attempt", "payment", None,
            {"packageType": package_type, "amountUSD": amount_usd}, client_ip,
        )

        if not isinstance(package_type, str) or not package_type.strip() or len(package_type) > MAX_PACKAGE_TYPE_LENGTH:
            payment_create_rejected_total.labels(reason="invalid_package").inc()
            raise RequestValidationFailed("packageType must be a non-empty string up to 100 characters")
        package_type = package_type.strip()

        try:
            quote = build_quote(amount_usd)
        except InvalidAmount:
            payment_create_rejected_total.labels(reason="invalid_amount").inc()
            self.audit.log(
                "user", user.id, "payment_create_invalid_amount", "payment", None,
                {"packageType": package_type, "amountUSD": repr(amount_usd)}, client_ip,
            )
            raise

        since = datetime.now(timezone.utc) - timedelta(hours=settings.purchase_fraud_window_hours)
        recent = self.ledger.count_recent_purchases(user.id, since)
        if recent >= settings.purchase_fraud_limit:
            payment_create_rejected_total.labels(reason="too_many_attempts").inc()
            self.audit.log(
                "user", user.id, "payment_create_blocked", "payment", None,
                {"recentPurchases": recent, "windowHours": settings.purchase_fraud_window_hours},
                client_ip, suspicious=True,
            )
            raise TooManyAttempts(context={"user_id": user.id, "recent": recent})

        order_code = self._new_order_code()
        account_upgrade = account_upgrade_for_package(package_type)
        try:
            checkout = self.gateway.create_checkout(
                CheckoutRequest(
                    order_code=order_code,
                    amount_vnd=quote.amount_vnd,
                    description=CHECKOUT_DESCRIPTION,
                    item_name=package_type,
                    return_url=settings.return_url,
                    cancel_url=settings.cancel_url,
                    buyer_name=user.name or "Customer",
                    buyer_email=user.email,
                )
            )
        except GatewayUnavailable as e:
            payment_create_rejected_total.labels(reason="gateway_unavailable").inc()
            self.audit.log(
                "user", user.id, "payment_gateway_error", "payment", str(order_code),
                {"orderCode": order_code, "calculation": quote.as_dict(), "error": e.context}, client_ip,
            )
            raise

        payment = Payment(
            order_code=order_code,
            user_id=user.id,
            package_type=package_type,
            amount_usd=quote.amount_usd,
            amount=quote.amount_vnd,
            tokens=quote.tokens,
            account_upgrade=account_upgrade,
            status=PaymentStatus.PENDING,
            checkout_url=checkout.checkout_url,
            payment_link_id=checkout.payment_link_id,
            gateway_data=checkout.raw,
        )
        try:
            self.db.add(payment)
            self.db.flush()
            self.ledger.reserve_purchase(payment, quote)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "payment_record_failed",
                extra={"user_id": user.id, "order_code": order_code, "payment_id": checkout.payment_link_id},
            )
            raise

        payments_created_total.labels(package_type=package_type[:32]).inc()
        self.audit.log(
            "user", user.id, "payment_created", "payment", payment.id,
            {
                "orderCode": order_code,
                "packageType": package_type,
                "calculation": quote.as_dict(),
                "accountUpgrade": account_upgrade,
            },
            client_ip,
        )
        return PaymentIntent(
            payment_id=payment.id,
            order_code=order_code,
            checkout_url=checkout.checkout_url,
            quote=quote,
        )

    def _new_order_code(self) -> int:
        """Millisecond timestamp with three random digits; unique against existing payments."""
        for _ in range(5):
            code = int(time.time() * 1000) * 1000 + secrets.randbelow(1000)
            exists = self.db.query(Payment.id).filter(Payment.order_code == code).first()
            if exists is None:
                return code
        raise RuntimeError("could not allocate a unique order code")

    # ------------------------------------------------------------------
    # Settlement (shared by verify, webhook and sweep)
    # ------------------------------------------------------------------

    def verify_payment(self, user: User, order_code: Any, client_ip: str | None = None) -> SettlementResult:
        code = parse_order_code(order_code)
        return self.settle(code, trigger="verify", actor_user_id=user.id, client_ip=client_ip)

    def settle(
        self,
        order_code: int,
        trigger: str,
        actor_user_id: str | None = None,
        client_ip: str | None = None,
    ) -> SettlementResult:
        """
        Settle order_code at most once.

        NO_RECORD -> PaymentRecordNotFound; SETTLED -> idempotent success;
        RESERVED -> ask the gateway, check amounts, then claim and credit in
        one transaction.
        """
        actor_type = "user" if actor_user_id else ("gateway" if trigger == "webhook" else "system")

        reservation = self.ledger.get_reservation(order_code)
        if reservation is None or (actor_user_id and reservation.user_id != actor_user_id):
            payment_settlements_total.labels(trigger=trigger, outcome="not_found").inc()
            self.audit.log(
                actor_type, actor_user_id, "payment_settle_not_found", "payment", str(order_code),
                {"orderCode": order_code, "trigger": trigger}, client_ip,
            )
            raise PaymentRecordNotFound(context={"order_code": order_code})

        if reservation.status == TransactionStatus.SETTLED:
            return self._already_processed(order_code, trigger, reservation.user_id)
        if reservation.status == TransactionStatus.VOIDED:
            payment_settlements_total.labels(trigger=trigger, outcome="voided").inc()
            return SettlementResult(
                success=False,
                status=PaymentStatus.CANCELLED,
                order_code=order_code,
                message="Payment was cancelled",
            )

        payment = self.db.query(Payment).filter(Payment.id == reservation.payment_id).one_or_none()
        if payment is None:
            payment_settlements_total.labels(trigger=trigger, outcome="not_found").inc()
            logger.error("reservation_without_payment", extra={"order_code": order_code, "payment_id": reservation.payment_id})
            raise PaymentRecordNotFound(context={"order_code": order_code, "reason": "payment_row_missing"})

        try:
            info = self.gateway.get_status(order_code)
        except GatewayUnavailable as e:
            payment_settlements_total.labels(trigger=trigger, outcome="gateway_error").inc()
            self.audit.log(
                actor_type, actor_user_id, "payment_gateway_error", "payment", payment.id,
                {"orderCode": order_code, "trigger": trigger, "error": e.context}, client_ip,
            )
            raise

        if not info.is_paid:
            payment_settlements_total.labels(trigger=trigger, outcome="unpaid").inc()
            logger.info(
                "payment_not_paid_yet",
                extra={"order_code": order_code, "status": info.status, "trigger": trigger},
            )
            return SettlementResult(success=False, status=info.status, order_code=order_code)

        expected = parse_expected_amounts(reservation)
        self._check_integrity(order_code, expected, payment, info, trigger, actor_type, actor_user_id, client_ip)
        return self._apply_settlement(reservation, payment, expected, info, trigger, actor_type, actor_user_id, client_ip)

    def _check_integrity(
        self,
        order_code: int,
        expected: ExpectedAmounts,
        payment: Payment,
        info: GatewayPaymentInfo,
        trigger: str,
        actor_type: str,
        actor_user_id: str | None,
        client_ip: str | None,
    ) -> None:
        problems: dict[str, Any] = {}
        try:
            recomputed = build_quote(expected.amount_usd)
        except InvalidAmount:
            recomputed = None
            problems["amount_usd"] = expected.amount_usd
        if recomputed is not None:
            if recomputed.tokens != expected.tokens:
                problems["recomputed_tokens"] = recomputed.tokens
            if not within_tolerance(recomputed.amount_vnd, expected.amount_vnd):
                problems["recomputed_vnd"] = recomputed.amount_vnd
        if expected.order_code != order_code:
            problems["recorded_order_code"] = expected.order_code
        if payment.tokens != expected.tokens:
            problems["payment_tokens"] = payment.tokens
        if not within_tolerance(payment.amount, expected.amount_vnd):
            problems["payment_amount"] = payment.amount
        paid = info.amount_paid
        if not within_tolerance(paid, expected.amount_vnd):
            problems["gateway_paid"] = paid

        if not problems:
            return

        suspicious_payments_total.inc()
        payment_settlements_total.labels(trigger=trigger, outcome="mismatch").inc()
        self.audit.log(
            actor_type, actor_user_id, "payment_amount_mismatch", "payment", payment.id,
            {
                "orderCode": order_code,
                "trigger": trigger,
                "expected": {
                    "amountUSD": expected.amount_usd,
                    "tokens": expected.tokens,
                    "amountVND": expected.amount_vnd,
                },
                "mismatches": problems,
            },
            client_ip,
            suspicious=True,
        )
        raise AmountMismatchError(context={"order_code": order_code, "mismatches": problems})

    def _apply_settlement(
        self,
        reservation: TokenTransaction,
        payment: Payment,
        expected: ExpectedAmounts,
        info: GatewayPaymentInfo,
        trigger: str,
        actor_type: str,
        actor_user_id: str | None,
        client_ip: str | None,
    ) -> SettlementResult:
        now = datetime.now(timezone.utc)
        order_code = expected.order_code
        user_id = payment.user_id
        payment_id = payment.id
        paid_vnd = info.amount_paid
        account_upgrade = payment.account_upgrade

        user_values: dict[str, Any] = {}
        if account_upgrade:
            user_values = {
                "account_type": account_upgrade,
                "plan_expires_at": now + timedelta(days=settings.tier_upgrade_days),
            }

        try:
            # The claim is the first write: a concurrent settler blocks on this
            # row and then matches zero rows.
            claimed = self.ledger.claim_reservation(
                reservation,
                expected.tokens,
                {
                    "trigger": trigger,
                    "verified_at": now.isoformat(),
                    "gateway_status": info.status,
                    "paid_vnd": paid_vnd,
                },
            )
            if not claimed:
                self.db.rollback()
                return self._already_processed(order_code, trigger, user_id)

            moved = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
                .values(status=PaymentStatus.PAID, gateway_data=info.raw, paid_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
            if moved == 0:
                self.db.rollback()
                current = self.db.query(Payment.status).filter(Payment.id == payment_id).scalar()
                logger.warning(
                    "payment_status_conflict",
                    extra={"order_code": order_code, "status": current, "trigger": trigger},
                )
                payment_settlements_total.labels(trigger=trigger, outcome="conflict").inc()
                return SettlementResult(
                    success=current == PaymentStatus.PAID,
                    status=current,
                    order_code=order_code,
                    already_processed=True,
                    message="Payment already processed",
                )

            self.ledger.increment_balance(user_id, expected.tokens, user_values)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("payment_settlement_failed", extra={"order_code": order_code, "trigger": trigger})
            raise

        payment_settlements_total.labels(trigger=trigger, outcome="settled").inc()
        tokens_credited_total.inc(expected.tokens)
        self.audit.log(
            actor_type, actor_user_id, "payment_settled", "payment", payment_id,
            {
                "orderCode": order_code,
                "trigger": trigger,
                "userId": user_id,
                "tokens": expected.tokens,
                "paidVND": paid_vnd,
                "accountUpgrade": account_upgrade,
            },
            client_ip,
        )
        return SettlementResult(
            success=True,
            status=PaymentStatus.PAID,
            order_code=order_code,
            tokens_added=expected.tokens,
            paid_vnd=paid_vnd,
        )

    def _already_processed(self, order_code: int, trigger: str, user_id: str) -> SettlementResult:
        payment_settlements_total.labels(trigger=trigger, outcome="already_processed").inc()
        logger.info(
            "payment_already_processed",
            extra={"order_code": order_code, "trigger": trigger, "user_id": user_id},
        )
        return SettlementResult(
            success=True,
            status=PaymentStatus.PAID,
            order_code=order_code,
            already_processed=True,
            message="Payment already processed",
        )

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def handle_webhook(self, body: Any, client_ip: str | None = None) -> dict:
        """
        Verify the gateway signature, then settle through the shared path.
        Returns the acknowledgement body. Raises InvalidSignature /
        InvalidOrderCode (400) and GatewayUnavailable (503, gateway retries).
        """
        if not isinstance(body, dict):
            raise RequestValidationFailed("Malformed webhook payload")
        try:
            data = self.gateway.verify_webhook(body)
        except InvalidSignature:
            claimed = body.get("data")
            self.audit.log(
                "gateway", None, "webhook_invalid_signature", "payment", None,
                {"orderCode": claimed.get("orderCode") if isinstance(claimed, dict) else None},
                client_ip, suspicious=True,
            )
            raise

        order_code = parse_order_code(data.get("orderCode"))
        status = str(data.get("status") or "").upper()
        code = data.get("code")
        not_paid = (status and status != GatewayStatus.PAID) or (not status and code is not None and str(code) != "00")
        if not_paid:
            logger.info(
                "webhook_not_paid",
                extra={"order_code": order_code, "status": status or None, "error_code": code},
            )
            return {"success": True, "message": "Notification received"}

        try:
            result = self.settle(order_code, trigger="webhook", client_ip=client_ip)
        except PaymentRecordNotFound:
            return {"success": True, "message": "Unknown order code"}
        except UserNotFound:
            logger.error("webhook_user_missing", extra={"order_code": order_code})
            return {"success": False, "acknowledged": True, "message": "User not found"}
        except (AmountMismatchError, ParseError) as e:
            # Acknowledge so the gateway stops retrying; already audited.
            return {"success": False, "acknowledged": True, "message": e.message}

        body_out = {"success": True}
        if result.message:
            body_out["message"] = result.message
        return body_out

    # ------------------------------------------------------------------
    # Pending sweep & cancellation
    # ------------------------------------------------------------------

    def cancel_pending(self, payment: Payment, gateway_status: str) -> bool:
        """PENDING -> CANCELLED/FAILED and void the reservation, atomically."""
        new_status = PaymentStatus.FAILED if gateway_status == GatewayStatus.FAILED else PaymentStatus.CANCELLED
        now = datetime.now(timezone.utc)
        payment_id = payment.id
        order_code = payment.order_code
        try:
            moved = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
                .values(status=new_status, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
            if moved == 0:
                self.db.rollback()
                return False
            reservation = self.ledger.get_reservation(order_code)
            if reservation is not None:
                self.ledger.void_reservation(reservation.id, reason=gateway_status)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.audit.log(
            "system", None, "payment_cancelled", "payment", payment_id,
            {"orderCode": order_code, "gatewayStatus": gateway_status, "status": new_status},
        )
        return True

    def sweep_pending(
        self,
        min_age_minutes: int | None = None,
        expiry_hours: int | None = None,
        limit: int | None = None,
    ) -> SweepReport:
        """Re-check stale PENDING payments; settle paid ones, cancel dead ones."""
        now = datetime.now(timezone.utc)
        min_age = timedelta(minutes=min_age_minutes if min_age_minutes is not None else settings.pending_sweep_min_age_minutes)
        expiry = timedelta(hours=expiry_hours if expiry_hours is not None else settings.pending_expiry_hours)
        rows = (
            self.db.query(Payment.id, Payment.order_code, Payment.created_at)
            .filter(Payment.status == PaymentStatus.PENDING, Payment.created_at <= now - min_age)
            .order_by(Payment.created_at)
            .limit(limit or settings.pending_sweep_batch_size)
            .all()
        )
        report = SweepReport()
        for payment_id, order_code, created_at in rows:
            report.checked += 1
            try:
                result = self.settle(order_code, trigger="sweep")
                if result.success and not result.already_processed:
                    report.settled += 1
                    report.order_codes.append(order_code)
                elif not result.success and result.status in GatewayStatus.TERMINAL_UNPAID:
                    if _as_utc(created_at) <= now - expiry:
                        payment = self.db.query(Payment).filter(Payment.id == payment_id).one()
                        if self.cancel_pending(payment, result.status):
                            report.cancelled += 1
            except BillingError as e:
                report.errors += 1
                logger.warning(
                    "sweep_settle_failed",
                    extra={"order_code": order_code, "error_code": e.code, "error": str(e)},
                )
            except Exception:
                self.db.rollback()
                report.errors += 1
                logger.exception("sweep_settle_failed", extra={"order_code": order_code})
        logger.info("pending_sweep_done", extra={"payload": report.as_dict()})
        return report

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user_payments(self, user_id: str, limit: int = 50) -> list[Payment]:
        """Most recent payments of one user."""
        return (
            self.db.query(Payment)
            .filter(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_by_order_code(self, order_code: int) -> Payment | None:
        return self.db.query(Payment).filter(Payment.order_code == order_code).one_or_none()
