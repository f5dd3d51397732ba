from __future__ import annotations

from refresh_guard.services.refresh_tokens import SqlAlchemyTokenStore, cookie_name

TEST_PASSWORD = "Correct-Horse-42"  # matches the `user` fixture


def _login(client, email="test@example.com", password=TEST_PASSWORD):
    res = client.post("/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return res


def _refresh_with(client, token: str):
    # Present an explicit cookie instead of whatever the client jar holds.
    client.cookies.clear()
    return client.post("/auth/refresh", headers={"Cookie": f"{cookie_name()}={token}"})


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_register_issues_tokens_and_scoped_cookie(client):
    res = client.post("/auth/register", json={"email": "New@Example.com", "password": "Str0ng-Password!"})
    assert res.status_code == 201
    body = res.json()
    assert body["token_type"] == "bearer"
    assert isinstance(body["access_token"], str) and body["access_token"]

    set_cookie = res.headers["set-cookie"].lower()
    assert f"{cookie_name()}=" in set_cookie
    assert "httponly" in set_cookie
    assert "path=/auth" in set_cookie
    assert "samesite=lax" in set_cookie

    me = client.get("/users/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "new@example.com"
    assert me.json()["roles"] == ["EMPLOYEE"]


def test_register_rejects_weak_password(client):
    res = client.post("/auth/register", json={"email": "weak@example.com", "password": "password"})
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert body["details"]["code"] == "WEAK_PASSWORD"
    assert "uppercase" in body["details"]["violations"]


def test_register_duplicate_email_is_409(client, user):
    res = client.post("/auth/register", json={"email": "TEST@example.com", "password": "Str0ng-Password!"})
    assert res.status_code == 409
    assert res.json()["error"] == "CONFLICT"


def test_login_rejects_bad_credentials(client, user):
    res = client.post("/auth/login", json={"email": "test@example.com", "password": "wrong-password"})
    assert res.status_code == 401
    assert res.json() == {"error": "UNAUTHORIZED", "message": "Invalid email or password"}

    res2 = client.post("/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD})
    assert res2.status_code == 401


def test_login_rejects_inactive_user(client, user, db_session):
    user.is_active = False
    db_session.add(user)
    db_session.commit()

    res = client.post("/auth/login", json={"email": "test@example.com", "password": TEST_PASSWORD})
    assert res.status_code == 401


def test_login_refresh_logout_flow(client, user, db_session):
    res = _login(client)
    first_cookie = res.cookies.get(cookie_name())
    assert first_cookie

    # Refresh rotates using the cookie jar
    res2 = client.post("/auth/refresh")
    assert res2.status_code == 200
    second_cookie = res2.cookies.get(cookie_name())
    assert second_cookie and second_cookie != first_cookie
    access = res2.json()["access_token"]

    me = client.get("/users/me", headers={"Authorization": f"Bearer {access}"})
    assert me.status_code == 200
    assert me.json()["id"] == user.id

    out = client.post("/auth/logout", headers={"Authorization": f"Bearer {access}"})
    assert out.status_code == 200
    assert out.json()["message"] == "Logged out"

    records = SqlAlchemyTokenStore(db_session).list_for_owner(user.id)
    assert len(records) == 2
    assert all(r.revoked_at is not None for r in records)

    # Token revoked by logout can no longer be rotated
    res3 = _refresh_with(client, second_cookie)
    assert res3.status_code == 401


def test_refresh_replay_of_rotated_cookie_revokes_every_session(client, user, db_session):
    old_cookie = _login(client).cookies.get(cookie_name())
    other_device = _login(client).cookies.get(cookie_name())

    rotated = _refresh_with(client, old_cookie)
    assert rotated.status_code == 200
    new_cookie = rotated.cookies.get(cookie_name())

    replay = _refresh_with(client, old_cookie)
    assert replay.status_code == 401
    body = replay.json()
    assert body["error"] == "UNAUTHORIZED"
    assert body["details"]["code"] == "TOKEN_REUSE_DETECTED"
    assert "max-age=0" in replay.headers["set-cookie"].lower()

    records = SqlAlchemyTokenStore(db_session).list_for_owner(user.id)
    assert len(records) == 3
    assert all(r.revoked_at is not None for r in records)

    assert _refresh_with(client, new_cookie).status_code == 401
    assert _refresh_with(client, other_device).status_code == 401


def test_refresh_rotation_links_successor(client, user, db_session):
    old_cookie = _login(client).cookies.get(cookie_name())
    new_cookie = _refresh_with(client, old_cookie).cookies.get(cookie_name())

    records = SqlAlchemyTokenStore(db_session).list_for_owner(user.id)
    assert len(records) == 2
    first, second = records
    assert first.revoked_at is not None
    assert first.replaced_by_id == second.id
    assert second.revoked_at is None
    assert new_cookie != old_cookie


def test_refresh_picks_up_role_changes(client, user, db_session):
    cookie = _login(client).cookies.get(cookie_name())

    user.roles = ["MANAGER"]
    db_session.add(user)
    db_session.commit()

    res = _refresh_with(client, cookie)
    assert res.status_code == 200
    me = client.get("/users/me", headers={"Authorization": f"Bearer {res.json()['access_token']}"})
    assert me.json()["roles"] == ["MANAGER"]


def test_refresh_missing_cookie_is_401(client):
    client.cookies.clear()
    res = client.post("/auth/refresh")
    assert res.status_code == 401
    assert res.json()["message"] == "Missing refresh token"


def test_refresh_garbage_cookie_is_invalid_token(client):
    res = _refresh_with(client, "not-a-token")
    assert res.status_code == 401
    assert res.json()["details"]["code"] == "INVALID_TOKEN"
    assert res.headers["www-authenticate"] == "Bearer"


def test_access_token_cannot_be_used_as_refresh_cookie(client, user):
    access = _login(client).json()["access_token"]
    res = _refresh_with(client, access)
    assert res.status_code == 401
    assert res.json()["details"]["code"] == "INVALID_TOKEN"


def test_logout_with_only_refresh_cookie_revokes_sessions(client, user, db_session):
    cookie = _login(client).cookies.get(cookie_name())

    client.cookies.clear()
    res = client.post("/auth/logout", headers={"Cookie": f"{cookie_name()}={cookie}"})
    assert res.status_code == 200
    assert "max-age=0" in res.headers["set-cookie"].lower()

    records = SqlAlchemyTokenStore(db_session).list_for_owner(user.id)
    assert records and all(r.revoked_at is not None for r in records)


def test_logout_without_credentials_still_succeeds(client):
    client.cookies.clear()
    res = client.post("/auth/logout")
    assert res.status_code == 200
    assert res.json()["message"] == "Logged out"


def test_me_requires_bearer_token(client):
    assert client.get("/users/me").status_code == 401
    res = client.get("/users/me", headers={"Authorization": "Bearer nonsense"})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid or expired token"
