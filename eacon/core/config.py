"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated list of allowed origins. Empty = default list in main.py.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""
    public_base_url: str = "http://localhost:3000"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # PAYOS GATEWAY
    # ===========================================
    payos_client_id: str  # Required, no default
    payos_api_key: str  # Required, no default
    payos_checksum_key: str  # Required, no default
    payos_api_url: str = "https://api-merchant.payos.vn"
    payos_timeout: float = 10.0
    # Empty = {public_base_url}/payment/success and /payment/cancel
    payment_return_url: str = ""
    payment_cancel_url: str = ""

    # ===========================================
    # PRICING & FRAUD GUARD
    # ===========================================
    purchase_fraud_limit: int = 10  # PURCHASED transactions per window
    purchase_fraud_window_hours: int = 24
    tier_upgrade_days: int = 30

    # ===========================================
    # RATE LIMITING
    # ===========================================
    # redis = shared across instances, memory = single instance / dev only
    rate_limit_backend: str = "redis"
    payment_rate_limit_requests: int = 3
    payment_rate_limit_window_seconds: int = 60
    login_rate_limit_attempts: int = 5
    login_rate_limit_window_seconds: int = 900  # 15 min

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30
    cb_storage: str = "redis"  # redis, memory

    # ===========================================
    # PENDING PAYMENT SWEEP (Celery beat)
    # ===========================================
    pending_sweep_min_age_minutes: int = 15
    pending_expiry_hours: int = 24
    pending_sweep_batch_size: int = 100

    # ===========================================
    # AUTH (JWT)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"
    jwt_access_token_ttl_minutes: int = 60 * 24

    # ===========================================
    # ADMIN API
    # ===========================================
    admin_username: str  # Required, no default
    admin_password: str  # Required, no default

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("rate_limit_backend", "cb_storage")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("redis", "memory"):
            raise ValueError("backend must be 'redis' or 'memory'")
        return v

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("jwt_secret_key must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("jwt_secret_key is too weak, please change it")
        return v

    @field_validator("admin_password")
    @classmethod
    def validate_admin_password(cls, v: str) -> str:
        """Reject well-known weak passwords."""
        if v in ("admin", "password", "123456", "changeme"):
            raise ValueError("admin_password is too weak, please change it")
        return v

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def return_url(self) -> str:
        return self.payment_return_url or f"{self.public_base_url.rstrip('/')}/payment/success"

    @property
    def cancel_url(self) -> str:
        return self.payment_cancel_url or f"{self.public_base_url.rstrip('/')}/payment/cancel"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
