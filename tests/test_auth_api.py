"""Auth API tests — the HTTP surface end to end.

Learn: Tests cover:
1. Register / login and the {code, message} error envelope
2. Bearer auth on /me (missing, garbage, revoked tokens)
3. Refresh rotation + replay detection over HTTP
4. Logout, password change, session listing and revocation
"""

import uuid

import pytest

PASSWORD = "my_password_123"


async def _register(client, email=None, password=PASSWORD):
    email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": email, "name": "Test User", "password": password},
    )
    assert r.status_code == 201, r.text
    return email


async def _login(client, email, password=PASSWORD, user_agent="pytest-client"):
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers={"User-Agent": user_agent},
    )
    assert r.status_code == 200, r.text
    return r.json()


def _bearer(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}"}


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_user(client):
    """Register a new user account."""
    email = f"test-{uuid.uuid4().hex[:8]}@example.com"
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": email, "name": "Test User", "password": "secure_password_123"},
    )
    assert r.status_code == 201
    user = r.json()
    assert user["email"] == email
    assert user["name"] == "Test User"
    assert user["role"] == "USER"
    assert "id" in user
    assert "password_hash" not in user


@pytest.mark.asyncio
async def test_register_duplicate_email(client):
    """Can't register with the same email twice."""
    email = await _register(client)
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": email.upper(), "name": "User 2", "password": PASSWORD},
    )
    assert r.status_code == 400
    assert r.json() == {"code": "AUTH_EMAIL_EXISTS", "message": "Email already registered"}


@pytest.mark.asyncio
async def test_register_short_password(client):
    """Password must be at least 8 characters."""
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": "short@example.com", "name": "Short", "password": "abc"},
    )
    assert r.status_code == 400
    assert r.json()["code"] == "AUTH_WEAK_PASSWORD"


@pytest.mark.asyncio
async def test_register_missing_field(client):
    r = await client.post("/api/v1/auth/register", json={"email": "x@example.com"})
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_success(client):
    """Login with valid credentials returns tokens and the user."""
    email = await _register(client)
    tokens = await _login(client, email)
    assert tokens["token_type"] == "bearer"
    assert tokens["expires_in"] == 900
    assert tokens["user"]["email"] == email
    assert "." in tokens["refresh_token"]
    assert "session_id" in tokens


@pytest.mark.asyncio
async def test_login_wrong_password(client):
    """Wrong password → 401 with a generic message and a Bearer challenge."""
    email = await _register(client)
    r = await client.post(
        "/api/v1/auth/login", json={"email": email, "password": "wrong_password"}
    )
    assert r.status_code == 401
    assert r.json() == {
        "code": "AUTH_INVALID_CREDENTIALS",
        "message": "Invalid email or password",
    }
    assert r.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_nonexistent_user(client):
    """Nonexistent email is indistinguishable from a wrong password."""
    r = await client.post(
        "/api/v1/auth/login", json={"email": "nobody@example.com", "password": "whatever"}
    )
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_INVALID_CREDENTIALS"


# ═══════════════════════════════════════════════════════════
# Bearer auth
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_token(client):
    email = await _register(client)
    tokens = await _login(client, email)

    r = await client.get("/api/v1/auth/me", headers=_bearer(tokens))
    assert r.status_code == 200
    assert r.json()["email"] == email


@pytest.mark.asyncio
async def test_me_without_token(client):
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_me_with_garbage_token(client):
    r = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_TOKEN_INVALID"


# ═══════════════════════════════════════════════════════════
# Refresh
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_refresh_rotates(client):
    email = await _register(client)
    tokens = await _login(client, email)

    r = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r.status_code == 200
    new = r.json()
    assert new["refresh_token"] != tokens["refresh_token"]
    assert new["session_id"] == tokens["session_id"]

    r = await client.get("/api/v1/auth/me", headers=_bearer(new))
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_refresh_replay_is_detected(client):
    email = await _register(client)
    tokens = await _login(client, email)

    r1 = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r1.status_code == 200

    r2 = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r2.status_code == 401
    assert r2.json()["code"] == "AUTH_TOKEN_REUSED"

    r3 = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": r1.json()["refresh_token"]}
    )
    assert r3.status_code == 401
    assert r3.json()["code"] == "AUTH_SESSION_EXPIRED"


@pytest.mark.asyncio
async def test_refresh_malformed(client):
    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": "bad"})
    assert r.status_code == 401
    assert r.json() == {"code": "AUTH_SESSION_EXPIRED", "message": "Invalid token format"}


# ═══════════════════════════════════════════════════════════
# Logout / password change
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_logout_revokes_access_token(client):
    email = await _register(client)
    tokens = await _login(client, email)

    r = await client.post("/api/v1/auth/logout", headers=_bearer(tokens))
    assert r.status_code == 200
    assert r.json() == {"logged_out": True}

    r = await client.get("/api/v1/auth/me", headers=_bearer(tokens))
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_TOKEN_REVOKED"

    r = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_after_reuse_revocation_still_revokes_access_token(client):
    email = await _register(client)
    tokens = await _login(client, email)

    r = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r.status_code == 200
    r = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r.json()["code"] == "AUTH_TOKEN_REUSED"

    r = await client.post("/api/v1/auth/logout", headers=_bearer(tokens))
    assert r.status_code == 200

    r = await client.get("/api/v1/auth/me", headers=_bearer(tokens))
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_TOKEN_REVOKED"


@pytest.mark.asyncio
async def test_register_unknown_role(client):
    r = await client.post(
        "/api/v1/auth/register",
        json={
            "email": "root@example.com",
            "name": "Root",
            "password": "long-enough-pw",
            "role": "SUPERUSER",
        },
    )
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_change_password(client):
    email = await _register(client)
    old = await _login(client, email)

    r = await client.post(
        "/api/v1/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "a-better-password"},
        headers=_bearer(old),
    )
    assert r.status_code == 200
    new = r.json()

    r = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": old["refresh_token"]}
    )
    assert r.status_code == 401

    await _login(client, email, password="a-better-password")
    r = await client.get("/api/v1/auth/sessions", headers=_bearer(new))
    assert r.status_code == 200
    assert len(r.json()) == 2


@pytest.mark.asyncio
async def test_change_password_wrong_current(client):
    email = await _register(client)
    tokens = await _login(client, email)

    r = await client.post(
        "/api/v1/auth/change-password",
        json={"current_password": "nope-nope", "new_password": "a-better-password"},
        headers=_bearer(tokens),
    )
    assert r.status_code == 401
    assert r.json()["message"] == "Current password is incorrect"


# ═══════════════════════════════════════════════════════════
# Sessions
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_sessions_marks_current(client):
    email = await _register(client)
    await _login(client, email, user_agent="phone")
    laptop = await _login(client, email, user_agent="laptop")

    r = await client.get("/api/v1/auth/sessions", headers=_bearer(laptop))
    assert r.status_code == 200
    sessions = r.json()
    assert [s["user_agent"] for s in sessions] == ["phone", "laptop"]
    assert [s["is_current"] for s in sessions] == [False, True]
    assert all("token_selector" not in s for s in sessions)


@pytest.mark.asyncio
async def test_revoke_one_session(client):
    email = await _register(client)
    phone = await _login(client, email, user_agent="phone")
    laptop = await _login(client, email, user_agent="laptop")

    r = await client.delete(
        f"/api/v1/auth/sessions/{phone['session_id']}", headers=_bearer(laptop)
    )
    assert r.status_code == 200

    r = await client.delete(
        f"/api/v1/auth/sessions/{phone['session_id']}", headers=_bearer(laptop)
    )
    assert r.status_code == 404
    assert r.json()["code"] == "HTTP_404"


@pytest.mark.asyncio
async def test_revoke_all_keeps_current(client):
    email = await _register(client)
    for agent in ("a", "b", "c"):
        await _login(client, email, user_agent=agent)
    current = await _login(client, email, user_agent="current")

    r = await client.post("/api/v1/auth/sessions/revoke-all", headers=_bearer(current))
    assert r.status_code == 200
    assert r.json() == {"revoked": 3}

    r = await client.get("/api/v1/auth/sessions", headers=_bearer(current))
    assert [s["user_agent"] for s in r.json()] == ["current"]


@pytest.mark.asyncio
async def test_auth_responses_are_not_cached(client):
    r = await client.post(
        "/api/v1/auth/login", json={"email": "nobody@example.com", "password": "x"}
    )
    assert r.headers["Cache-Control"] == "no-store"
