"""
tests/test_api_auth.py -- Integration tests for /api/auth/* and /api/admin/*.

Covers:
  - register -> login -> me -> refresh -> logout, end to end over HTTP
  - uniform error body {timestamp, status, error, message, path}
  - 400 validationErrors, 401 for missing/garbage tokens, 409 duplicates
  - logout ends every session; renewal afterwards is 404
  - admin role grant: 401 anonymous, 403 plain user, 200 admin
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from api.limiter import limiter
from auth.models import ROLE_ADMIN, ROLE_USER, RefreshToken

PASSWORD = "Passw0rd!"

# Bootstrap admin created by the api_client fixture.
ADMIN_USERNAME = "rootadmin"
ADMIN_EMAIL = "rootadmin@staffdesk.test"


def _register(client, username: str, email: str | None = None):
    return client.post(
        "/api/auth/register",
        json={"username": username, "email": email or f"{username}@example.com", "password": PASSWORD},
    )


def _login(client, username_or_email: str, password: str = PASSWORD):
    return client.post("/api/auth/login", json={"usernameOrEmail": username_or_email, "password": password})


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _assert_error_body(resp, status: int, error: str) -> dict:
    assert resp.status_code == status
    body = resp.json()
    assert body["status"] == status
    assert body["error"] == error
    assert body["message"]
    assert body["path"] == resp.request.url.path
    assert body["timestamp"]
    return body


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


def test_register_returns_201_with_user_summary(api_client):
    client, _ = api_client
    resp = _register(client, "reg_alice")
    assert resp.status_code == 201
    data = resp.json()
    assert data["username"] == "reg_alice"
    assert data["email"] == "reg_alice@example.com"
    assert data["roles"] == [ROLE_USER]
    assert data["enabled"] is True
    assert data["accountNonLocked"] is True
    assert data["createdAt"]
    assert "hashedPassword" not in data and "password" not in data


def test_register_duplicate_username_409(api_client):
    client, _ = api_client
    _register(client, "dup_user")
    resp = _register(client, "dup_user", "dup_other@example.com")
    body = _assert_error_body(resp, 409, "Conflict")
    assert "dup_user" in body["message"]


def test_register_duplicate_email_409(api_client):
    client, _ = api_client
    _register(client, "dup_mail_a", "shared@example.com")
    resp = _register(client, "dup_mail_b", "shared@example.com")
    body = _assert_error_body(resp, 409, "Conflict")
    assert "shared@example.com" in body["message"]


def test_register_validation_400(api_client):
    client, _ = api_client
    resp = client.post("/api/auth/register", json={"username": "ab", "email": "not-an-email", "password": "short"})
    body = _assert_error_body(resp, 400, "Validation Failed")
    assert set(body["validationErrors"]) == {"username", "email", "password"}


def test_register_missing_body_400(api_client):
    client, _ = api_client
    resp = client.post("/api/auth/register", json={})
    assert resp.status_code == 400
    assert "username" in resp.json()["validationErrors"]


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def test_login_by_username_and_email(api_client):
    client, _ = api_client
    _register(client, "login_bob")
    for identifier in ("login_bob", "login_bob@example.com"):
        resp = _login(client, identifier)
        assert resp.status_code == 200
        data = resp.json()
        assert data["tokenType"] == "Bearer"
        assert data["expiresIn"] == 900
        assert data["username"] == "login_bob"
        assert data["accessToken"].count(".") == 2
        assert data["refreshToken"]
        assert resp.headers["cache-control"] == "no-store"


def test_login_failures_share_one_response(api_client):
    client, _ = api_client
    _register(client, "login_carol")
    wrong_password = _login(client, "login_carol", "wrong-password")
    unknown_user = _login(client, "nobody_here")
    a = _assert_error_body(wrong_password, 401, "Unauthorized")
    b = _assert_error_body(unknown_user, 401, "Unauthorized")
    assert a["message"] == b["message"]


def test_login_disabled_account_401(api_client):
    client, authenticator = api_client
    _register(client, "login_dave")
    dave = authenticator.users.get_by_username("login_dave")
    authenticator.users.update_user(dave.id, enabled=False)
    _assert_error_body(_login(client, "login_dave"), 401, "Unauthorized")


# ---------------------------------------------------------------------------
# Me
# ---------------------------------------------------------------------------


def test_me_with_valid_token(api_client):
    client, _ = api_client
    _register(client, "me_erin")
    token = _login(client, "me_erin").json()["accessToken"]
    resp = client.get("/api/auth/me", headers=_bearer(token))
    assert resp.status_code == 200
    assert resp.json()["username"] == "me_erin"


def test_me_without_token_401(api_client):
    client, _ = api_client
    _assert_error_body(client.get("/api/auth/me"), 401, "Unauthorized")


def test_me_with_garbage_token_401(api_client):
    client, _ = api_client
    _assert_error_body(client.get("/api/auth/me", headers=_bearer("abc.def.ghi")), 401, "Unauthorized")


def test_me_with_lowercase_scheme_401(api_client):
    client, _ = api_client
    _register(client, "me_frank")
    token = _login(client, "me_frank").json()["accessToken"]
    resp = client.get("/api/auth/me", headers={"Authorization": f"bearer {token}"})
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Refresh / logout
# ---------------------------------------------------------------------------


def test_refresh_issues_new_access_token(api_client):
    client, _ = api_client
    _register(client, "ref_gina")
    login = _login(client, "ref_gina").json()
    resp = client.post("/api/auth/refresh", json={"refreshToken": login["refreshToken"]})
    assert resp.status_code == 200
    data = resp.json()
    assert data["refreshToken"] == login["refreshToken"]
    assert data["username"] == "ref_gina"
    assert client.get("/api/auth/me", headers=_bearer(data["accessToken"])).status_code == 200


def test_refresh_unknown_token_404(api_client):
    client, _ = api_client
    resp = client.post("/api/auth/refresh", json={"refreshToken": "never-issued"})
    _assert_error_body(resp, 404, "Not Found")


def test_refresh_expired_token_401(api_client):
    client, authenticator = api_client
    _register(client, "ref_hank")
    hank = authenticator.users.get_by_username("ref_hank")
    authenticator.refresh_tokens.create(
        RefreshToken(token="hank-stale", user_id=hank.id, expiry_date=datetime.now(timezone.utc) - timedelta(days=1))
    )
    resp = client.post("/api/auth/refresh", json={"refreshToken": "hank-stale"})
    _assert_error_body(resp, 401, "Token Expired")
    again = client.post("/api/auth/refresh", json={"refreshToken": "hank-stale"})
    assert again.status_code == 404


def test_refresh_revoked_token_401(api_client):
    client, authenticator = api_client
    _register(client, "ref_ivy")
    refresh_token = _login(client, "ref_ivy").json()["refreshToken"]
    authenticator.refresh_tokens.revoke(refresh_token)
    resp = client.post("/api/auth/refresh", json={"refreshToken": refresh_token})
    _assert_error_body(resp, 401, "Token Revoked")


def test_logout_ends_all_sessions(api_client):
    client, _ = api_client
    _register(client, "out_jack")
    laptop = _login(client, "out_jack").json()
    phone = _login(client, "out_jack").json()

    resp = client.post("/api/auth/logout", headers=_bearer(laptop["accessToken"]))
    assert resp.status_code == 204
    assert resp.content == b""

    for session in (laptop, phone):
        again = client.post("/api/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert again.status_code == 404


def test_logout_without_token_401(api_client):
    client, _ = api_client
    _assert_error_body(client.post("/api/auth/logout"), 401, "Unauthorized")


# ---------------------------------------------------------------------------
# Admin role grant
# ---------------------------------------------------------------------------


def test_grant_admin_as_admin(api_client, admin_token):
    client, _ = api_client
    user_id = _register(client, "adm_kate").json()["id"]
    resp = client.put(f"/api/admin/users/{user_id}/roles/admin", headers=_bearer(admin_token))
    assert resp.status_code == 200
    assert resp.json()["roles"] == [ROLE_ADMIN, ROLE_USER]

    # Idempotent
    again = client.put(f"/api/admin/users/{user_id}/roles/admin", headers=_bearer(admin_token))
    assert again.status_code == 200
    assert again.json()["roles"] == [ROLE_ADMIN, ROLE_USER]


def test_grant_admin_unknown_user_404(api_client, admin_token):
    client, _ = api_client
    resp = client.put("/api/admin/users/999999/roles/admin", headers=_bearer(admin_token))
    _assert_error_body(resp, 404, "Not Found")


def test_grant_admin_as_plain_user_403(api_client):
    client, _ = api_client
    user_id = _register(client, "adm_leo").json()["id"]
    token = _login(client, "adm_leo").json()["accessToken"]
    resp = client.put(f"/api/admin/users/{user_id}/roles/admin", headers=_bearer(token))
    body = _assert_error_body(resp, 403, "Forbidden")
    assert body["message"] == "You don't have permission to access this resource"


def test_grant_admin_anonymous_401(api_client):
    client, _ = api_client
    _assert_error_body(client.put("/api/admin/users/1/roles/admin"), 401, "Unauthorized")


def test_admin_sees_own_roles(api_client, admin_token):
    client, _ = api_client
    data = client.get("/api/auth/me", headers=_bearer(admin_token)).json()
    assert data["username"] == ADMIN_USERNAME
    assert data["email"] == ADMIN_EMAIL
    assert data["roles"] == [ROLE_ADMIN, ROLE_USER]


def test_unknown_route_uses_error_body(api_client):
    client, _ = api_client
    _assert_error_body(client.get("/api/does-not-exist"), 404, "Not Found")


def test_refresh_blank_token_400(api_client):
    client, _ = api_client
    resp = client.post("/api/auth/refresh", json={"refreshToken": "   "})
    body = _assert_error_body(resp, 400, "Validation Failed")
    assert "refreshToken" in body["validationErrors"]


# ---------------------------------------------------------------------------
# Login rate limit / password length
# ---------------------------------------------------------------------------


def test_login_rate_limit_returns_429(api_client, monkeypatch):
    client, _ = api_client
    limiter.reset()
    monkeypatch.setattr("api.routes.auth.get_settings", lambda: SimpleNamespace(login_rate_limit="2/hour"))
    try:
        statuses = [_login(client, "limit_nobody", "wrong-password").status_code for _ in range(3)]
        assert statuses == [401, 401, 429]
        resp = _login(client, "limit_nobody", "wrong-password")
        body = _assert_error_body(resp, 429, "Too Many Requests")
        assert resp.headers["retry-after"] == "3600"
        assert body["path"] == "/api/auth/login"
    finally:
        limiter.reset()


def test_register_password_at_bcrypt_limit(api_client):
    client, _ = api_client
    resp = client.post(
        "/api/auth/register",
        json={"username": "pw_max", "email": "pw_max@example.com", "password": "P" * 72},
    )
    assert resp.status_code == 201
    assert _login(client, "pw_max", "P" * 72).status_code == 200


def test_register_password_over_bcrypt_limit_400(api_client):
    client, _ = api_client
    resp = client.post(
        "/api/auth/register",
        json={"username": "pw_long", "email": "pw_long@example.com", "password": "P" * 73},
    )
    body = _assert_error_body(resp, 400, "Validation Failed")
    assert "password" in body["validationErrors"]


def test_register_multibyte_password_counted_in_bytes(api_client):
    """25 three-byte characters pass max_length but are 75 bytes."""
    client, _ = api_client
    resp = client.post(
        "/api/auth/register",
        json={"username": "pw_utf8", "email": "pw_utf8@example.com", "password": "€" * 25},
    )
    assert resp.status_code == 400
    assert "password" in resp.json()["validationErrors"]
