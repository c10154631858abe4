"""
Authentication and authorization tests for Elman.

Verifies:
- Unauthenticated requests return 401
- Cashier role is denied owner operations (403)
- Bootstrap, login, logout and password reset behave as documented
- Deactivation and password changes revoke open sessions
"""

from datetime import timedelta

import pytest

from conftest import BOOTSTRAP_SECRET, TEST_PASSWORD, auth_headers
from elman.errors import ValidationError
from elman.models import AuditLog, SessionToken
from elman.services import session_service
from elman.services.auth_service import validate_password_strength, verify_password
from elman.time_utils import utcnow


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("GET", "/api/audit"),
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/customers"),
            ("GET", "/api/expenses"),
            ("POST", "/api/sales"),
            ("GET", "/api/sales/history"),
            ("GET", "/api/reports/sales"),
            ("GET", "/api/reports/inventory/pdf"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, db_session):
        resp = client.get("/api/auth/me", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401

    def test_query_token_only_on_pdf_routes(self, client, cashier_headers):
        token = cashier_headers["Authorization"].split(" ", 1)[1]
        resp = client.get(f"/api/products?token={token}")
        assert resp.status_code == 401


# =============================================================================
# CASHIER DENIED OWNER OPERATIONS: 403
# =============================================================================


class TestCashierDenied:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("GET", "/api/audit"),
            ("GET", "/api/expenses"),
            ("POST", "/api/customers"),
            ("GET", "/api/reports/profit"),
            ("GET", "/api/reports/low-stock"),
        ],
    )
    def test_forbidden(self, client, cashier_headers, method, path):
        resp = getattr(client, method.lower())(path, headers=cashier_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["owner"]


# =============================================================================
# BOOTSTRAP / LOGIN / LOGOUT
# =============================================================================


class TestAuthFlow:

    def _bootstrap(self, client, secret=BOOTSTRAP_SECRET, **body):
        payload = {"username": "founder", "password": TEST_PASSWORD}
        payload.update(body)
        return client.post("/api/auth/bootstrap", json=payload, headers={"X-Bootstrap-Secret": secret})

    def test_bootstrap_creates_first_owner_once(self, client, db_session):
        resp = self._bootstrap(client)
        assert resp.status_code == 201
        assert resp.get_json()["user"]["role"] == "owner"

        resp = self._bootstrap(client, username="second")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Already bootstrapped"

    def test_bootstrap_wrong_secret(self, client, db_session):
        assert self._bootstrap(client, secret="nope").status_code == 401

    def test_bootstrap_weak_password(self, client, db_session):
        assert self._bootstrap(client, password="short").status_code == 400

    def test_login_me_logout(self, client, cashier):
        resp = client.post("/api/auth/login", json={"username": "amina", "password": TEST_PASSWORD})
        assert resp.status_code == 200
        token = resp.get_json()["token"]
        assert len(token) == 64

        me = client.get("/api/auth/me", headers=auth_headers(token))
        assert me.get_json()["user"]["username"] == "amina"

        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_login_failures(self, client, cashier):
        resp = client.post("/api/auth/login", json={"username": "amina", "password": "Wrong123!"})
        assert resp.status_code == 401
        assert client.post("/api/auth/login", json={"username": "amina"}).status_code == 400

    def test_login_is_audited(self, client, cashier, db_session):
        client.post("/api/auth/login", json={"username": "amina", "password": TEST_PASSWORD})
        entry = db_session.query(AuditLog).filter_by(action="auth.login").one()
        assert entry.username == "amina"

    def test_reset_password_revokes_sessions(self, client, cashier, cashier_headers, db_session):
        resp = client.post("/api/auth/reset-password", json={
            "username": "amina", "new_password": "NewPassw0rd!",
        }, headers={"X-Bootstrap-Secret": BOOTSTRAP_SECRET})
        assert resp.status_code == 200

        assert client.get("/api/auth/me", headers=cashier_headers).status_code == 401
        login = client.post("/api/auth/login", json={"username": "amina", "password": "NewPassw0rd!"})
        assert login.status_code == 200

        entry = db_session.query(AuditLog).filter_by(action="auth.reset_password").one()
        assert entry.meta["password"] == "***"

    def test_idle_session_is_revoked(self, client, cashier, db_session):
        session, token = session_service.create_session(cashier)
        session.last_used_at = utcnow() - timedelta(hours=25)
        db_session.commit()

        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401
        db_session.refresh(session)
        assert session.is_revoked is True
        assert session.revoked_reason == "Idle timeout"


# =============================================================================
# USER ADMINISTRATION
# =============================================================================


class TestUserAdmin:

    def test_owner_creates_cashier(self, client, owner_headers):
        resp = client.post("/api/users", json={
            "username": "hodan", "password": TEST_PASSWORD, "role": "cashier",
        }, headers=owner_headers)
        assert resp.status_code == 201

        usernames = [u["username"] for u in client.get("/api/users", headers=owner_headers).get_json()]
        assert "hodan" in usernames

    def test_duplicate_username(self, client, owner_headers, cashier):
        resp = client.post("/api/users", json={"username": "amina", "password": TEST_PASSWORD},
                           headers=owner_headers)
        assert resp.status_code == 409

    def test_invalid_role(self, client, owner_headers):
        resp = client.post("/api/users", json={
            "username": "x1", "password": TEST_PASSWORD, "role": "admin",
        }, headers=owner_headers)
        assert resp.status_code == 400

    def test_deactivation_revokes_sessions(self, client, owner_headers, cashier, cashier_headers, db_session):
        resp = client.put(f"/api/users/{cashier.id}", json={"is_active": False}, headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json()["is_active"] is False

        assert client.get("/api/auth/me", headers=cashier_headers).status_code == 401
        active = db_session.query(SessionToken).filter_by(user_id=cashier.id, is_revoked=False).count()
        assert active == 0

    def test_update_unknown_user(self, client, owner_headers):
        assert client.put("/api/users/9999", json={"role": "owner"}, headers=owner_headers).status_code == 404


class TestPasswords:

    @pytest.mark.parametrize("password", ["Sh0rt!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial12"])
    def test_weak_passwords(self, password):
        with pytest.raises(ValidationError):
            validate_password_strength(password)

    def test_hash_round_trip(self, password_hash):
        assert verify_password(TEST_PASSWORD, password_hash)
        assert not verify_password("Password123?", password_hash)
