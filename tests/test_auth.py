from sqlalchemy import select

from storefront.models.user import RefreshToken, User


def _register(client, *, email: str, full_name: str = "Buyer"):
    return client.post(
        "/auth/register",
        json={
            "email": email,
            "full_name": full_name,
            "password": "password123",
        },
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_auth_register_and_login(test_context):
    client, session_local, _ = test_context

    register_res = _register(client, email="Buyer@Example.com")
    assert register_res.status_code == 200, register_res.text
    register_body = register_res.json()
    assert register_body["token_type"] == "bearer"
    assert register_body["access_token"]
    assert register_body["refresh_token"]

    db = session_local()
    try:
        user = db.execute(select(User).where(User.email == "buyer@example.com")).scalar_one()
        token_rows = db.execute(
            select(RefreshToken).where(RefreshToken.user_id == user.id)
        ).scalars().all()
    finally:
        db.close()

    assert len(user.id) == 22
    assert len(token_rows) == 1

    login_res = client.post(
        "/auth/login",
        json={"email": "BUYER@example.com", "password": "password123"},
    )
    assert login_res.status_code == 200, login_res.text
    assert login_res.json()["access_token"]


def test_auth_register_rejects_duplicate_email(test_context):
    client, _, _ = test_context

    assert _register(client, email="dupe@example.com").status_code == 200
    duplicate = _register(client, email="DUPE@example.com")
    assert duplicate.status_code == 409, duplicate.text
    assert duplicate.json()["error"]["code"] == "email_already_registered"
    assert duplicate.json()["error"]["message"] == "Email already registered"


def test_auth_register_validates_password_length(test_context):
    client, _, _ = test_context

    res = client.post(
        "/auth/register",
        json={"email": "short@example.com", "password": "short"},
    )
    assert res.status_code == 422, res.text
    body = res.json()["error"]
    assert body["code"] == "validation_error"
    assert body["details"][0]["field"] == "password"


def test_auth_swagger_token_form_login(test_context):
    client, _, _ = test_context

    assert _register(client, email="swagger@example.com").status_code == 200
    res = client.post(
        "/auth/token",
        data={"username": "swagger@example.com", "password": "password123"},
    )
    assert res.status_code == 200, res.text
    assert res.json()["token_type"] == "bearer"


def test_auth_refresh_token_returns_new_access(test_context):
    client, _, _ = test_context

    register_res = _register(client, email="refresh-buyer@example.com")
    assert register_res.status_code == 200, register_res.text

    refresh_res = client.post(
        "/auth/refresh",
        json={"refresh_token": register_res.json()["refresh_token"]},
    )
    assert refresh_res.status_code == 200, refresh_res.text
    refresh_body = refresh_res.json()
    assert refresh_body["access_token"]
    assert refresh_body["refresh_token"]

    second_refresh_res = client.post(
        "/auth/refresh",
        json={"refresh_token": register_res.json()["refresh_token"]},
    )
    assert second_refresh_res.status_code == 401, second_refresh_res.text


def test_auth_logout_revokes_refresh_token(test_context):
    client, _, _ = test_context

    register_res = _register(client, email="logout-buyer@example.com")
    assert register_res.status_code == 200, register_res.text
    refresh_token = register_res.json()["refresh_token"]

    logout_res = client.post("/auth/logout", json={"refresh_token": refresh_token})
    assert logout_res.status_code == 200, logout_res.text
    assert logout_res.json()["ok"] is True

    refresh_res = client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert refresh_res.status_code == 401, refresh_res.text


def test_change_password_revokes_active_sessions(test_context):
    client, _, _ = test_context

    register_res = _register(client, email="password-buyer@example.com")
    assert register_res.status_code == 200, register_res.text
    access_token = register_res.json()["access_token"]
    refresh_token = register_res.json()["refresh_token"]

    same_password = client.post(
        "/auth/change-password",
        json={"current_password": "password123", "new_password": "password123"},
        headers=_auth_headers(access_token),
    )
    assert same_password.status_code == 400, same_password.text
    assert same_password.json()["error"]["code"] == "password_unchanged"

    change_res = client.post(
        "/auth/change-password",
        json={"current_password": "password123", "new_password": "newpassword123"},
        headers=_auth_headers(access_token),
    )
    assert change_res.status_code == 200, change_res.text

    old_login = client.post(
        "/auth/login",
        json={"email": "password-buyer@example.com", "password": "password123"},
    )
    assert old_login.status_code == 401, old_login.text

    new_login = client.post(
        "/auth/login",
        json={"email": "password-buyer@example.com", "password": "newpassword123"},
    )
    assert new_login.status_code == 200, new_login.text

    old_refresh = client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert old_refresh.status_code == 401, old_refresh.text


def test_auth_profile_read_and_update(test_context):
    client, _, _ = test_context

    register_res = _register(client, email="profile-buyer@example.com", full_name="Profile Buyer")
    assert register_res.status_code == 200, register_res.text
    token = register_res.json()["access_token"]

    me_res = client.get("/auth/me", headers=_auth_headers(token))
    assert me_res.status_code == 200, me_res.text
    assert me_res.json()["email"] == "profile-buyer@example.com"
    assert me_res.json()["full_name"] == "Profile Buyer"

    update_res = client.patch(
        "/auth/me",
        json={"full_name": "  Profile Buyer Updated  "},
        headers=_auth_headers(token),
    )
    assert update_res.status_code == 200, update_res.text
    assert update_res.json()["full_name"] == "Profile Buyer Updated"


def test_auth_me_requires_token(test_context):
    client, _, _ = test_context

    res = client.get("/auth/me")
    assert res.status_code == 401, res.text
    assert res.json()["error"]["code"] == "unauthorized"


def test_auth_login_rate_limited_after_repeated_failures(test_context):
    client, _, _ = test_context

    register_res = _register(client, email="ratelimit-buyer@example.com")
    assert register_res.status_code == 200, register_res.text

    for _ in range(5):
        failed_login = client.post(
            "/auth/login",
            json={"email": "ratelimit-buyer@example.com", "password": "wrongpass"},
        )
        assert failed_login.status_code == 401, failed_login.text
        assert failed_login.json()["error"]["code"] == "invalid_credentials"

    blocked_login = client.post(
        "/auth/login",
        json={"email": "ratelimit-buyer@example.com", "password": "password123"},
    )
    assert blocked_login.status_code == 429, blocked_login.text
    assert blocked_login.headers["Retry-After"]
    assert blocked_login.json()["error"]["code"] == "rate_limited"
