"""Integration tests for registration, login and the auth gates."""

from conftest import ADMIN_EMAIL


class TestRegister:
    def test_register_returns_user_and_token(self, client):
        response = client.post("/auth/register", json={"email": "  Ana@Example.com ", "password": "secret123"})
        assert response.status_code == 201
        data = response.json()
        assert data["ok"] is True
        assert data["user"]["email"] == "ana@example.com"
        assert data["user"]["username"] == "ana"
        assert data["user"]["is_admin"] is False
        assert data["user"]["role"] == "USER"
        assert data["token"]

    def test_explicit_username_is_kept(self, client):
        response = client.post(
            "/auth/register", json={"email": "ana@example.com", "username": "AnaPlants", "password": "secret123"}
        )
        assert response.json()["user"]["username"] == "AnaPlants"

    def test_duplicate_email_is_case_insensitive(self, client, register_user):
        register_user(email="ana@example.com")
        response = client.post("/auth/register", json={"email": "ANA@example.com", "password": "secret123"})
        assert response.status_code == 409
        assert "error" in response.json()

    def test_duplicate_username_is_case_insensitive(self, client, register_user):
        register_user(email="ana@example.com", username="Ana")
        response = client.post(
            "/auth/register", json={"email": "other@example.com", "username": "aNA", "password": "secret123"}
        )
        assert response.status_code == 409

    def test_weak_password_is_rejected(self, client):
        response = client.post("/auth/register", json={"email": "ana@example.com", "password": "12345"})
        assert response.status_code == 400

    def test_invalid_email_is_rejected(self, client):
        response = client.post("/auth/register", json={"email": "not-an-email", "password": "secret123"})
        assert response.status_code == 400


class TestLogin:
    def test_login_by_email_or_username(self, client, register_user):
        register_user(email="ana@example.com", username="anita")
        by_email = client.post("/auth/login", json={"identifier": "ANA@example.com", "password": "secret123"})
        by_username = client.post("/auth/login", json={"username": "Anita", "password": "secret123"})
        assert by_email.status_code == 200
        assert by_username.status_code == 200
        assert by_email.json()["user"]["id"] == by_username.json()["user"]["id"]

    def test_failures_are_indistinguishable(self, client, register_user):
        register_user(email="ana@example.com")
        wrong_password = client.post("/auth/login", json={"identifier": "ana@example.com", "password": "nope-nope"})
        unknown_user = client.post("/auth/login", json={"identifier": "ghost@example.com", "password": "secret123"})
        assert wrong_password.status_code == unknown_user.status_code == 400
        assert wrong_password.json() == unknown_user.json() == {"error": "Invalid credentials"}

    def test_admin_is_bootstrapped_from_environment(self, client, admin_headers):
        response = client.get("/me", headers=admin_headers)
        assert response.json()["email"] == ADMIN_EMAIL


class TestAuthGates:
    def test_missing_token(self, client):
        response = client.get("/me")
        assert response.status_code == 401
        assert "error" in response.json()

    def test_bad_token(self, client):
        response = client.get("/wishlist", headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 401

    def test_user_cannot_reach_admin_routes(self, client, user_headers):
        for path in ("/admin/categories", "/admin/products", "/admin/orders", "/admin/reports/sales"):
            assert client.get(path, headers=user_headers).status_code == 403

    def test_admin_routes_require_a_token(self, client):
        assert client.get("/admin/summary").status_code == 401
