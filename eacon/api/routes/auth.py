"""
Admin authentication routes (JWT-based).
Accepts JSON body { username, password } for SPA; rate limited.
"""
from fastapi import APIRouter, Body, Depends, Request

from eacon.core.errors import NotAuthenticated, TooManyAttempts
from eacon.schemas.admin import LoginRequest, Token, UserInfo
from eacon.services.auth.jwt import (
    ROLE_ADMIN,
    create_access_token,
    get_current_admin,
    verify_admin_credentials,
)
from eacon.services.auth.login_rate_limit import check_login_rate_limit, reset_login_attempts
from eacon.services.rate_limit import get_client_ip

router = APIRouter(prefix="/admin/auth", tags=["admin-auth"])


@router.post("/login", response_model=Token)
def login(request: Request, body: LoginRequest = Body(...)):
    """
    Admin login with JWT token. Expects JSON: { "username": "...", "password": "..." }.
    Rate limited to prevent brute-force.
    """
    client_ip = get_client_ip(request)
    if not check_login_rate_limit(client_ip):
        raise TooManyAttempts("Too many login attempts. Try again later.", context={"client_ip": client_ip})

    if not verify_admin_credentials(body.username, body.password):
        raise NotAuthenticated("Incorrect username or password", context={"client_ip": client_ip})

    reset_login_attempts(client_ip)
    access_token = create_access_token(data={"sub": body.username, "role": ROLE_ADMIN})

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": {"username": body.username},
    }


@router.get("/me", response_model=UserInfo)
def get_me(current_admin: dict = Depends(get_current_admin)):
    """Get current admin info."""
    return current_admin
