import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client(session_factory, gateway):
    from eacon.db.session import get_db
    from eacon.main import app
    from eacon.services.gateway import get_gateway

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user):
    from eacon.services.auth.jwt import create_user_token

    return {"Authorization": f"Bearer {create_user_token(user.id)}"}


@pytest.fixture
def admin_headers(client):
    resp = client.post("/admin/auth/login", json={"username": "root", "password": "s3cret-admin-pass"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
