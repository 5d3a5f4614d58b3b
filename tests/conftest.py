"""Shared fixtures: env for Settings, SQLite-backed sessions, fake gateway."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("PAYOS_CLIENT_ID", "test-client-id")
os.environ.setdefault("PAYOS_API_KEY", "test-api-key")
os.environ.setdefault("PAYOS_CHECKSUM_KEY", "test-checksum-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-0123456789")
os.environ.setdefault("ADMIN_USERNAME", "root")
os.environ.setdefault("ADMIN_PASSWORD", "s3cret-admin-pass")
os.environ.setdefault("CB_STORAGE", "memory")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

CHECKSUM_KEY = "test-checksum-key"


class FakeGateway:
    """In-memory PaymentGateway: records checkouts, serves scripted statuses."""

    def __init__(self):
        from eacon.services.gateway import GatewayPaymentInfo

        self._info_cls = GatewayPaymentInfo
        self.created = []
        self.statuses = {}
        self.status_calls = []
        self.fail_create = False
        self.fail_status = False
        self.on_get_status = None

    def create_checkout(self, request):
        from eacon.core.errors import GatewayUnavailable
        from eacon.services.gateway import CheckoutSession

        if self.fail_create:
            raise GatewayUnavailable(context={"operation": "create_checkout", "reason": "test"})
        self.created.append(request)
        self.statuses[request.order_code] = self._info_cls(
            order_code=request.order_code, status="PENDING", amount=request.amount_vnd, amount_paid=0, raw={}
        )
        url = f"https://pay.payos.vn/web/{request.order_code}"
        return CheckoutSession(
            order_code=request.order_code,
            checkout_url=url,
            payment_link_id=f"plink-{request.order_code}",
            raw={"checkoutUrl": url},
        )

    def set_status(self, order_code, status, amount_paid=None):
        current = self.statuses[order_code]
        paid = current.amount if amount_paid is None and status == "PAID" else (amount_paid or 0)
        self.statuses[order_code] = self._info_cls(
            order_code=order_code,
            status=status,
            amount=current.amount,
            amount_paid=paid,
            raw={"orderCode": order_code, "status": status, "amountPaid": paid},
        )

    def get_status(self, order_code):
        from eacon.core.errors import GatewayUnavailable

        self.status_calls.append(order_code)
        if self.on_get_status is not None:
            hook, self.on_get_status = self.on_get_status, None
            hook(order_code)
        if self.fail_status:
            raise GatewayUnavailable(context={"operation": "get_status", "reason": "test"})
        info = self.statuses.get(order_code)
        if info is None:
            return self._info_cls(order_code=order_code, status="PENDING", amount=0, amount_paid=0, raw={})
        return info

    def verify_webhook(self, body):
        from eacon.core.errors import InvalidSignature
        from eacon.services.gateway.signature import is_valid_signature

        data = body.get("data")
        if not is_valid_signature(data, body.get("signature"), CHECKSUM_KEY):
            raise InvalidSignature()
        return data


def signed_webhook(data: dict) -> dict:
    from eacon.services.gateway.signature import sign_data

    return {"code": "00", "desc": "success", "success": True, "data": data, "signature": sign_data(data, CHECKSUM_KEY)}


@pytest.fixture
def engine(tmp_path):
    import eacon.models  # noqa: F401
    from eacon.db.base import Base

    eng = create_engine(f"sqlite:///{tmp_path / 'billing.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    from eacon.models.user import User

    def _make(tokens: int = 0, **kwargs):
        user = User(
            id=kwargs.pop("id", str(uuid4())),
            email=kwargs.pop("email", f"{uuid4().hex[:8]}@example.com"),
            name=kwargs.pop("name", "Test User"),
            tokens=tokens,
            **kwargs,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def _reset_process_state():
    """Circuit breakers and the in-memory rate limiter are process-wide."""
    from eacon.services import circuit_breaker
    from eacon.services.rate_limit import get_rate_limiter

    circuit_breaker._breakers.clear()
    get_rate_limiter.cache_clear()
    yield
    circuit_breaker._breakers.clear()
    get_rate_limiter.cache_clear()


@pytest.fixture
def fake_gateway_cls():
    return FakeGateway


@pytest.fixture
def webhook_body():
    return signed_webhook
