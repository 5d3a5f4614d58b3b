"""
JWT authentication (PyJWT, HS256).

User tokens: sub = user id, role = "user".
Admin tokens: sub = admin username, role = "admin" (issued by /admin/auth/login).
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from eacon.core.config import settings
from eacon.core.errors import NotAuthenticated
from eacon.db.session import get_db
from eacon.models.user import User

logger = logging.getLogger("auth")

ROLE_USER = "user"
ROLE_ADMIN = "admin"

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    to_encode = dict(data)
    now = datetime.now(timezone.utc)
    to_encode["iat"] = now
    to_encode["exp"] = now + (expires_delta or timedelta(minutes=settings.jwt_access_token_ttl_minutes))
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_user_token(user_id: str) -> str:
    return create_access_token({"sub": user_id, "role": ROLE_USER})


def verify_token(token: str) -> dict[str, Any] | None:
    """Decoded payload, or None if the token is invalid or expired."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.info("token_rejected", extra={"error": type(e).__name__})
        return None


def verify_admin_credentials(username: str, password: str) -> bool:
    user_ok = hmac.compare_digest(username.encode(), settings.admin_username.encode())
    password_ok = hmac.compare_digest(password.encode(), settings.admin_password.encode())
    return user_ok and password_ok


def _payload_for_role(credentials: HTTPAuthorizationCredentials | None, role: str) -> dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise NotAuthenticated()
    payload = verify_token(credentials.credentials)
    if not payload or not payload.get("sub") or payload.get("role") != role:
        raise NotAuthenticated()
    return payload


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    payload = _payload_for_role(credentials, ROLE_USER)
    user = db.query(User).filter(User.id == payload["sub"]).one_or_none()
    if user is None:
        raise NotAuthenticated()
    return user


def get_current_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    payload = _payload_for_role(credentials, ROLE_ADMIN)
    return {"username": payload["sub"]}
