import pytest
from fastapi.testclient import TestClient

from database import Database

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-secret"

PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"
    b"\x00\x00\x00\rIDATx\x9cc\xf8\xff\xff?\x00\x05\xfe\x02\xfe\xa7V\xbd\xfa\x00\x00\x00\x00IEND\xaeB`\x82"
)


@pytest.fixture()
def app_env(tmp_path, monkeypatch):
    """Point the application at a throw-away database and uploads directory."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    monkeypatch.setenv("UPLOADS_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.delenv("SEED_DEMO_DATA", raising=False)
    monkeypatch.delenv("TOKEN_TTL_DAYS", raising=False)
    return tmp_path


@pytest.fixture()
def client(app_env):
    from main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def uploads_dir(app_env):
    return app_env / "uploads"


@pytest.fixture()
def png_image():
    return ("leaf.png", PNG_BYTES, "image/png")


@pytest.fixture()
def admin_headers(client):
    response = client.post("/auth/login", json={"identifier": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture()
def register_user(client):
    def _register(email="ana@example.com", password="secret123", username=None):
        body = {"email": email, "password": password}
        if username is not None:
            body["username"] = username
        response = client.post("/auth/register", json=body)
        assert response.status_code == 201, response.text
        data = response.json()
        return data["user"], {"Authorization": f"Bearer {data['token']}"}

    return _register


@pytest.fixture()
def user_headers(register_user):
    _, headers = register_user()
    return headers


@pytest.fixture()
def make_category(client, admin_headers):
    def _make(name, slug=None):
        body = {"name": name}
        if slug is not None:
            body["slug"] = slug
        response = client.post("/admin/categories", json=body, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["id"]

    return _make


@pytest.fixture()
def make_product(client, admin_headers):
    def _make(name, price=1000, stock=10, category_id=None, description=None, image=None):
        data = {"name": name, "price": str(price), "stock": str(stock)}
        if category_id is not None:
            data["category_id"] = str(category_id)
        if description is not None:
            data["description"] = description
        files = {"image": image} if image is not None else None
        response = client.post("/admin/products", data=data, files=files, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["id"]

    return _make


@pytest.fixture()
def stock_of(client):
    def _stock(product_id):
        response = client.get(f"/products/{product_id}")
        assert response.status_code == 200, response.text
        return response.json()["product"]["stock"]

    return _stock


# ---------------
# Service-level (async) tests
# ---------------

@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'service.db'}")
    await database.connect()
    yield database
    await database.dispose()
