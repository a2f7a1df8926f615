"""Tests for authentication: password hashing, tokens, login, RBAC."""

from datetime import timedelta

from pos_promotions.core.rbac import TokenData, UserRole
from pos_promotions.core.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)
from pos_promotions.models.user import User


# ============== Password hashing ==============

class TestPasswordHashing:
    def test_hash_and_verify(self):
        h = get_password_hash("secret123")
        assert verify_password("secret123", h)

    def test_wrong_password_rejected(self):
        h = get_password_hash("secret123")
        assert not verify_password("wrong", h)

    def test_hash_is_unique(self):
        assert get_password_hash("same") != get_password_hash("same")  # different salts

    def test_invalid_hash_returns_false(self):
        assert not verify_password("test", "not-a-hash")


# ============== JWT tokens ==============

class TestJWTTokens:
    def test_create_and_decode(self):
        token = create_access_token(data={"sub": "42", "email": "a@bistro.vn", "role": "manager"})
        payload = decode_access_token(token)
        assert payload["sub"] == "42"
        assert payload["role"] == "manager"
        assert "exp" in payload
        assert "jti" in payload

    def test_expired_token_rejected(self):
        token = create_access_token(data={"sub": "1"}, expires_delta=timedelta(seconds=-10))
        assert decode_access_token(token) is None

    def test_tampered_token_rejected(self):
        token = create_access_token(data={"sub": "1"})
        assert decode_access_token(token[:-5] + "XXXXX") is None


# ============== Login endpoint ==============

class TestLoginEndpoint:
    def test_successful_login(self, client, test_user):
        res = client.post("/api/v1/auth/login", json={
            "email": "manager@bistro.vn",
            "password": "testpass123",
        })
        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert body["data"]["token_type"] == "bearer"
        assert decode_access_token(body["data"]["access_token"])["sub"] == str(test_user.id)

    def test_wrong_password_401(self, client, test_user):
        res = client.post("/api/v1/auth/login", json={
            "email": "manager@bistro.vn",
            "password": "incorrect",
        })
        assert res.status_code == 401
        body = res.json()
        assert body["success"] is False
        assert body["message"] == "Invalid email or password"

    def test_nonexistent_user_401(self, client):
        res = client.post("/api/v1/auth/login", json={
            "email": "nobody@bistro.vn",
            "password": "anything",
        })
        assert res.status_code == 401

    def test_inactive_user_401(self, client, db_session):
        db_session.add(User(
            email="inactive@bistro.vn",
            password_hash=get_password_hash("pass"),
            role=UserRole.STAFF,
            is_active=False,
        ))
        db_session.commit()

        res = client.post("/api/v1/auth/login", json={
            "email": "inactive@bistro.vn",
            "password": "pass",
        })
        assert res.status_code == 401

    def test_invalid_email_422(self, client):
        res = client.post("/api/v1/auth/login", json={"email": "not-an-email", "password": "x"})
        assert res.status_code == 422


# ============== /me endpoint ==============

class TestMeEndpoint:
    def test_get_current_user(self, client, auth_headers, test_user):
        res = client.get("/api/v1/auth/me", headers=auth_headers)
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["email"] == test_user.email
        assert data["name"] == "Test Manager"
        assert data["role"] == "manager"

    def test_unauthenticated_rejected(self, client):
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401

    def test_deactivated_user_rejected(self, client, auth_headers, test_user, db_session):
        test_user.is_active = False
        db_session.commit()

        res = client.get("/api/v1/auth/me", headers=auth_headers)
        assert res.status_code == 401

    def test_cookie_token_accepted(self, client, test_user):
        token = create_access_token(
            data={"sub": str(test_user.id), "email": test_user.email, "role": "manager"}
        )
        client.cookies.set("access_token", token)
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 200


# ============== RBAC ==============

class TestRBAC:
    def test_owner_passes_manager_check(self, client, db_session, promotion):
        owner = User(
            email="owner@bistro.vn",
            password_hash=get_password_hash("x"),
            role=UserRole.OWNER,
            is_active=True,
        )
        db_session.add(owner)
        db_session.commit()

        token = create_access_token(data={"sub": str(owner.id), "email": owner.email, "role": "owner"})
        res = client.get(
            f"/api/v1/promotions/{promotion.id}/usage-history",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert res.status_code == 200

    def test_token_with_unknown_role_rejected(self, client, test_user):
        token = create_access_token(
            data={"sub": str(test_user.id), "email": test_user.email, "role": "superuser"}
        )
        res = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401


class TestTokenData:
    def test_display_name_falls_back_to_email(self):
        user = TokenData(user_id=3, email="cashier@bistro.vn", role=UserRole.STAFF)
        assert user.user_id == 3
        assert user.full_name == "cashier"
        assert not hasattr(user, "id")
