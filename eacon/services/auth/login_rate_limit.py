"""
Rate limiter for admin login to prevent brute-force attacks.
"""
import logging

from eacon.core.config import settings
from eacon.services.rate_limit import get_rate_limiter

logger = logging.getLogger("auth")


def check_login_rate_limit(client_ip: str) -> bool:
    """
    Check if login attempt is allowed. Returns True if allowed, False if rate limited.
    Increments counter on each call.
    """
    decision = get_rate_limiter().hit(
        f"login_attempts:{client_ip}",
        settings.login_rate_limit_attempts,
        settings.login_rate_limit_window_seconds,
    )
    if not decision.allowed:
        logger.warning("login_rate_limited", extra={"client_ip": client_ip, "payload": {"attempts": decision.count}})
    return decision.allowed


def reset_login_attempts(client_ip: str) -> None:
    """Reset counter on successful login."""
    get_rate_limiter().reset(f"login_attempts:{client_ip}")
