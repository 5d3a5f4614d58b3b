"""
Admin API: users, payments, duplicate repair, audit.
"""
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eacon.core.errors import RequestValidationFailed
from eacon.db.session import get_db
from eacon.models.audit_log import AuditLog
from eacon.models.payment import Payment, PaymentStatus
from eacon.models.token_transaction import TransactionType
from eacon.models.user import User
from eacon.schemas.admin import UserCreateIn, UserCreatedOut
from eacon.services.audit.service import AuditService
from eacon.services.auth.jwt import create_user_token, get_current_admin
from eacon.services.ledger.service import LedgerService
from eacon.services.rate_limit import get_client_ip
from eacon.services.reconciliation.service import ReconciliationService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(get_current_admin)])


# ---------- Users ----------
@router.post("/users", response_model=UserCreatedOut)
def users_create(
    request: Request,
    body: UserCreateIn = Body(...),
    db: Session = Depends(get_db),
    admin: dict = Depends(get_current_admin),
):
    user = User(email=body.email.strip().lower(), name=body.name)
    try:
        db.add(user)
        db.flush()
        if body.welcome_tokens:
            LedgerService(db).credit(
                user.id, body.welcome_tokens, TransactionType.EARNED, description="Welcome bonus"
            )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise RequestValidationFailed("User with this email already exists", context={"email": body.email}) from e
    AuditService(db).log(
        "admin", admin["username"], "user_created", "user", user.id,
        {"email": user.email, "welcomeTokens": body.welcome_tokens}, get_client_ip(request),
    )
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "tokens": LedgerService(db).balance(user.id),
        "access_token": create_user_token(user.id),
    }


@router.post("/users/{user_id}/fix-duplicates")
def users_fix_duplicates(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    admin: dict = Depends(get_current_admin),
):
    result = ReconciliationService(db).fix_duplicate_tokens(
        user_id, actor_type="admin", actor_id=admin["username"], client_ip=get_client_ip(request)
    )
    return result.as_response()


# ---------- Payments ----------
@router.get("/payments")
def payments_list(
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    status: str | None = None,
    search: str | None = None,
):
    q = db.query(Payment)
    if status:
        q = q.filter(Payment.status == status.upper())
    if search and search.strip():
        term = search.strip()
        conditions = [Payment.user_id == term, Payment.package_type.ilike(f"%{term}%")]
        if term.isdigit():
            conditions.append(Payment.order_code == int(term))
        q = q.filter(or_(*conditions))
    total = q.count()
    q = q.order_by(Payment.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    payments = q.all()
    user_ids = [p.user_id for p in payments]
    users = {u.id: u for u in db.query(User).filter(User.id.in_(user_ids)).all()} if user_ids else {}
    items = []
    for p in payments:
        u = users.get(p.user_id)
        items.append({
            "id": p.id,
            "order_code": p.order_code,
            "user_id": p.user_id,
            "email": u.email if u else None,
            "package_type": p.package_type,
            "amount_usd": p.amount_usd,
            "amount_vnd": p.amount,
            "tokens": p.tokens,
            "status": p.status,
            "paid_at": p.paid_at.isoformat() if p.paid_at else None,
            "created_at": p.created_at.isoformat() if p.created_at else None,
        })
    return {"items": items, "total": total, "page": page, "pages": (total + page_size - 1) // page_size}


@router.get("/payments/stats")
def payments_stats(db: Session = Depends(get_db), days: int = Query(30, ge=1)):
    since = datetime.now(timezone.utc) - timedelta(days=days)
    paid = and_(Payment.status == PaymentStatus.PAID, Payment.created_at >= since)
    total_payments = db.query(func.count(Payment.id)).filter(paid).scalar() or 0
    revenue_vnd = db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(paid).scalar() or 0
    revenue_usd = db.query(func.coalesce(func.sum(Payment.amount_usd), 0)).filter(paid).scalar() or 0
    tokens_sold = db.query(func.coalesce(func.sum(Payment.tokens), 0)).filter(paid).scalar() or 0
    unique_buyers = db.query(func.count(func.distinct(Payment.user_id))).filter(paid).scalar() or 0
    by_status = dict(
        db.query(Payment.status, func.count(Payment.id))
        .filter(Payment.created_at >= since)
        .group_by(Payment.status)
        .all()
    )
    by_package_rows = (
        db.query(Payment.package_type, func.count(Payment.id).label("cnt"), func.coalesce(func.sum(Payment.amount), 0).label("vnd"))
        .filter(paid)
        .group_by(Payment.package_type)
    )
    by_package = [{"package_type": r.package_type, "count": r.cnt, "amount_vnd": int(r.vnd)} for r in by_package_rows]
    return {
        "days": days,
        "total_payments": total_payments,
        "revenue_vnd": int(revenue_vnd),
        "revenue_usd": int(revenue_usd),
        "tokens_sold": int(tokens_sold),
        "unique_buyers": unique_buyers,
        "by_status": by_status,
        "by_package": by_package,
    }


# ---------- Audit ----------
@router.get("/audit")
def audit_list(
    db: Session = Depends(get_db),
    action: str | None = None,
    actor_type: str | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    q = db.query(AuditLog)
    if action:
        q = q.filter(AuditLog.action == action)
    if actor_type:
        q = q.filter(AuditLog.actor_type == actor_type)
    if search and search.strip():
        term = f"%{search.strip()}%"
        q = q.filter(
            or_(
                and_(AuditLog.actor_id.isnot(None), AuditLog.actor_id.ilike(term)),
                and_(AuditLog.entity_id.isnot(None), AuditLog.entity_id.ilike(term)),
            )
        )
    total = q.count()
    q = q.order_by(AuditLog.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    rows = q.all()
    items = [
        {
            "id": r.id,
            "actor_type": r.actor_type,
            "actor_id": r.actor_id,
            "action": r.action,
            "entity_type": r.entity_type,
            "entity_id": r.entity_id,
            "payload": r.payload or {},
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]
    return {"items": items, "total": total, "page": page, "pages": (total + page_size - 1) // page_size}
