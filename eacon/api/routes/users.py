from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from eacon.db.session import get_db
from eacon.models.user import User
from eacon.schemas.users import TokenSpendIn, TokenTransactionOut
from eacon.services.auth.jwt import get_current_user
from eacon.services.ledger.service import LedgerService

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/tokens")
def get_tokens(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ledger = LedgerService(db)
    return {
        "success": True,
        "tokens": ledger.balance(user.id),
        "accountType": user.effective_account_type(),
    }


@router.put("/tokens")
def spend_tokens(
    body: TokenSpendIn = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Spend tokens (generation, template unlock). Credits only come from settlement."""
    ledger = LedgerService(db)
    try:
        txn = ledger.spend(user.id, body.amount, body.description)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"success": True, "tokens": ledger.balance(user.id), "transactionId": txn.id}


@router.get("/tokens/history")
def token_history(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    rows = LedgerService(db).history(user.id, limit=limit, offset=offset)
    return {
        "success": True,
        "transactions": [TokenTransactionOut.model_validate(r).model_dump(mode="json") for r in rows],
    }
