"""
Identity layer and thin record store tests.

Verifies:
- Login issues a bearer token; logout revokes it
- Unauthenticated requests return 401, wrong roles 403
- Products and customers are readable by every role, writable per role
- /health answers for the till's connectivity probe
"""

import pytest

from kassa.services.auth_service import PasswordValidationError, create_user


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:

    def test_login_returns_token_and_user(self, client, cashier_user):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "Password123"})
        assert resp.status_code == 200
        assert resp.json["token"]
        assert resp.json["user"]["role"] == "cashier"

    def test_wrong_password(self, client, cashier_user):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "nope12345"})
        assert resp.status_code == 401

    def test_missing_credentials(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "cashier"})
        assert resp.status_code == 400

    def test_me(self, client, helper_headers):
        resp = client.get("/api/auth/me", headers=helper_headers)
        assert resp.status_code == 200
        assert resp.json["user"]["username"] == "helper"

    def test_logout_revokes_token(self, client, cashier_headers):
        assert client.post("/api/auth/logout", headers=cashier_headers).status_code == 200
        assert client.get("/api/auth/me", headers=cashier_headers).status_code == 401

    def test_inactive_user_loses_access(self, client, cashier_user, cashier_headers, db_session):
        cashier_user.is_active = False
        db_session.commit()
        assert client.get("/api/auth/me", headers=cashier_headers).status_code == 401

    def test_weak_password_rejected(self, db_session):
        with pytest.raises(PasswordValidationError):
            create_user(username="weak", password="short", role="cashier")

    def test_unknown_role_rejected(self, db_session):
        with pytest.raises(ValueError):
            create_user(username="boss", password="Password123", role="owner")


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/customers"),
            ("POST", "/api/receipts"),
            ("POST", "/api/receipts/bulk"),
            ("GET", "/api/receipts"),
            ("GET", "/api/receipts/staff"),
            ("PUT", "/api/receipts/1/approve"),
            ("PUT", "/api/receipts/1/reject"),
            ("PUT", "/api/receipts/1/lines"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"


class TestHelperDenied:

    @pytest.mark.parametrize("path", ["/api/receipts", "/api/receipts/staff", "/api/receipts/1"])
    def test_cannot_list_receipts(self, client, helper_headers, path):
        assert client.get(path, headers=helper_headers).status_code == 403

    def test_cannot_create_customer(self, client, helper_headers):
        resp = client.post("/api/customers", json={"name": "X"}, headers=helper_headers)
        assert resp.status_code == 403


# =============================================================================
# PRODUCTS / CUSTOMERS
# =============================================================================


class TestProducts:

    def test_admin_creates_product(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={"code": "TEA-1", "name": "Green Tea", "price_cents": 250, "quantity": 12},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["product"]["quantity"] == 12

    def test_cashier_cannot_create_product(self, client, cashier_headers):
        resp = client.post(
            "/api/products",
            json={"code": "TEA-1", "name": "Green Tea", "price_cents": 250},
            headers=cashier_headers,
        )
        assert resp.status_code == 403

    def test_duplicate_code_conflicts(self, client, admin_headers, product):
        resp = client.post(
            "/api/products",
            json={"code": product.code, "name": "Other", "price_cents": 100},
            headers=admin_headers,
        )
        assert resp.status_code == 409

    def test_missing_fields(self, client, admin_headers):
        resp = client.post("/api/products", json={"name": "No code"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "validation_error"

    def test_stock_is_not_patchable(self, client, admin_headers, product):
        resp = client.patch(f"/api/products/{product.id}", json={"quantity": 99}, headers=admin_headers)
        assert resp.status_code == 400

    def test_patch_name(self, client, admin_headers, product):
        resp = client.patch(f"/api/products/{product.id}", json={"name": "Black Tea"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["product"]["name"] == "Black Tea"

    def test_helper_reads_catalogue(self, client, helper_headers, make_product):
        make_product(name="Bun")
        make_product(name="Apple")
        resp = client.get("/api/products", headers=helper_headers)
        assert [p["name"] for p in resp.json["products"]] == ["Apple", "Bun"]

    def test_search(self, client, helper_headers, make_product):
        make_product(name="Bun")
        make_product(name="Apple")
        resp = client.get("/api/products?search=app", headers=helper_headers)
        assert [p["name"] for p in resp.json["products"]] == ["Apple"]

    def test_get_missing_product(self, client, helper_headers):
        assert client.get("/api/products/9999", headers=helper_headers).status_code == 404


class TestCustomers:

    def test_cashier_creates_customer(self, client, cashier_headers):
        resp = client.post("/api/customers", json={"name": "Anna Berg"}, headers=cashier_headers)
        assert resp.status_code == 201
        listed = client.get("/api/customers", headers=cashier_headers)
        assert [c["name"] for c in listed.json["customers"]] == ["Anna Berg"]


# =============================================================================
# HEALTH
# =============================================================================


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json["status"] == "ok"
    assert resp.json["time"].endswith("Z")
