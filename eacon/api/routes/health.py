import redis
from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.orm import Session

from eacon.core.config import settings
from eacon.db.session import get_db
from eacon.services.gateway.payos import payos_breaker

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """
    Readiness probe: 503 if the database or Redis is unreachable.
    An open PayOS breaker is reported but does not fail readiness; the
    webhook still has to be acknowledged while checkouts are degraded.
    """
    checks: dict[str, str] = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = type(e).__name__
    try:
        redis.Redis.from_url(settings.redis_url, socket_connect_timeout=2).ping()
        checks["redis"] = "ok"
    except redis.RedisError as e:
        checks["redis"] = type(e).__name__
    try:
        checks["payos_circuit"] = payos_breaker().current_state
    except redis.RedisError:
        checks["payos_circuit"] = "unknown"

    ready = checks["database"] == "ok" and checks["redis"] == "ok"
    if not ready:
        response.status_code = 503
    return {"status": "ready" if ready else "not_ready", "checks": checks}
