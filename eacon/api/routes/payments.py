"""
User payment API: create a checkout, verify it, receive the gateway webhook,
repair duplicate credits, list payments.
"""
from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from eacon.core.config import settings
from eacon.core.errors import RateLimited
from eacon.db.session import get_db
from eacon.models.user import User
from eacon.schemas.payments import PaymentCreateIn, PaymentOut, PaymentVerifyIn
from eacon.services.auth.jwt import get_current_user
from eacon.services.gateway import PaymentGateway, get_gateway
from eacon.services.payments.service import PaymentService
from eacon.services.rate_limit import get_client_ip, get_rate_limiter
from eacon.services.reconciliation.service import ReconciliationService
from eacon.utils.metrics import payment_create_rejected_total

router = APIRouter(prefix="/api/payment", tags=["payments"])


def payment_rate_limit(request: Request) -> None:
    """Per-IP throttle on checkout creation."""
    client_ip = get_client_ip(request)
    decision = get_rate_limiter().hit(
        f"payment_create:{client_ip}",
        settings.payment_rate_limit_requests,
        settings.payment_rate_limit_window_seconds,
    )
    if not decision.allowed:
        payment_create_rejected_total.labels(reason="rate_limited").inc()
        raise RateLimited(context={"client_ip": client_ip, "count": decision.count})


@router.post("/create", dependencies=[Depends(payment_rate_limit)])
def create_payment(
    request: Request,
    body: PaymentCreateIn = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    svc = PaymentService(db, gateway)
    intent = svc.create_payment(user, body.package_type, body.amount_usd, client_ip=get_client_ip(request))
    return intent.as_response()


@router.post("/verify")
def verify_payment(
    request: Request,
    body: PaymentVerifyIn = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    svc = PaymentService(db, gateway)
    result = svc.verify_payment(user, body.order_code, client_ip=get_client_ip(request))
    return result.as_response()


@router.post("/webhook")
def payment_webhook(
    request: Request,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Gateway callback. Unauthenticated; the signature is the authentication."""
    svc = PaymentService(db, gateway)
    return svc.handle_webhook(payload, client_ip=get_client_ip(request))


@router.post("/fix-duplicate")
def fix_duplicate(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = ReconciliationService(db).fix_duplicate_tokens(
        user.id, actor_type="user", actor_id=user.id, client_ip=get_client_ip(request)
    )
    return result.as_response()


@router.get("/history")
def payment_history(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    payments = PaymentService(db, gateway).get_user_payments(user.id, limit=50)
    return {"success": True, "payments": [PaymentOut.model_validate(p).model_dump(mode="json") for p in payments]}
