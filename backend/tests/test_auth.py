from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.errors import AuthError
from app.models import AuthUser, UserRole
from conftest import api_call, api_session


def test_passwords_are_hashed(services):
    services.auth.create_user("Someone@Example.com", "hunter2")

    stored = services.auth.get_user_by_email("someone@example.com")
    assert stored.email == "someone@example.com"
    assert stored.password_hash != "hunter2"
    assert services.auth.verify_password("hunter2", stored.password_hash)
    assert not services.auth.verify_password("hunter3", stored.password_hash)
    assert not services.auth.verify_password("hunter2", "not-a-bcrypt-hash")


def test_authenticate_user(services):
    services.auth.create_user("viewer@example.com", "pw")

    user = services.auth.authenticate_user("VIEWER@example.com", "pw")
    assert user.email == "viewer@example.com"
    assert user.role == UserRole.VIEWER

    assert services.auth.authenticate_user("viewer@example.com", "wrong") is None
    assert services.auth.authenticate_user("nobody@example.com", "pw") is None


def test_ensure_admin_only_creates_once(services):
    first = services.auth.ensure_admin("admin@example.com", "one")
    second = services.auth.ensure_admin("admin@example.com", "two")

    assert first == second
    assert first.role == UserRole.ADMIN
    assert services.auth.authenticate_user("admin@example.com", "one") is not None
    assert services.auth.authenticate_user("admin@example.com", "two") is None


def test_token_round_trip(services):
    user = AuthUser(id=7, email="a@example.com", role=UserRole.ADMIN)
    token = services.auth.create_access_token(user)

    assert jwt.decode(token, "test-secret", algorithms=["HS256"])["sub"] == "7"
    assert services.auth.decode_access_token(token) == user


def test_expired_and_forged_tokens_are_rejected(services):
    user = AuthUser(id=1, email="a@example.com", role=UserRole.VIEWER)
    expired = services.auth.create_access_token(user, now=datetime.now(timezone.utc) - timedelta(days=2))
    forged = jwt.encode({"sub": "1", "email": "a@example.com", "role": "ADMIN"}, "other-secret", algorithm="HS256")
    wrong_shape = jwt.encode({"sub": 1, "email": "a@example.com", "role": "ADMIN"}, "test-secret", algorithm="HS256")

    for token in (expired, forged, wrong_shape, "garbage"):
        with pytest.raises(AuthError):
            services.auth.decode_access_token(token)


def test_login_sets_cookie_and_me_reads_it(services):
    services.auth.create_user("admin@example.com", "s3cret", role=UserRole.ADMIN)

    login, me, logout, me_after = api_session(services, [
        ("POST", "/api/auth/login", {"json": {"email": "admin@example.com", "password": "s3cret"}}),
        ("GET", "/api/auth/me", {}),
        ("POST", "/api/auth/logout", {}),
        ("GET", "/api/auth/me", {}),
    ])

    assert login.status_code == 200
    body = login.json()
    assert body["user"]["role"] == "ADMIN"
    assert "httponly" in login.headers["set-cookie"].lower()

    assert me.status_code == 200
    assert me.json()["email"] == "admin@example.com"

    assert logout.json() == {"success": True}
    assert me_after.status_code == 401


def test_login_failures(services):
    services.auth.create_user("viewer@example.com", "pw")

    missing, wrong = api_session(services, [
        ("POST", "/api/auth/login", {"json": {"email": "viewer@example.com"}}),
        ("POST", "/api/auth/login", {"json": {"email": "viewer@example.com", "password": "nope"}}),
    ])

    assert missing.status_code == 400
    assert wrong.status_code == 401


def test_bearer_header_works_without_cookie(services):
    user = services.auth.create_user("viewer@example.com", "pw")
    token = services.auth.create_access_token(user)

    ok = api_call(services, "GET", "/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    bad = api_call(services, "GET", "/api/auth/me", headers={"Authorization": "Bearer nonsense"})

    assert ok.json() == {"id": user.id, "email": "viewer@example.com", "role": "VIEWER"}
    assert bad.status_code == 401
