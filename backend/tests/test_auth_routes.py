"""
Auth route tests.

Verifies:
- Login returns an access token and sets the refresh cookie
- Refresh rotates the pair and kills the old access token
- Presenting a rotated refresh token revokes every session of the user
- Logout and password change revoke sessions
"""

import pytest

from prodflow.models import SecurityEvent, RefreshToken
from conftest import PASSWORD, auth_headers, get_auth_token


def _refresh_cookie(response) -> str | None:
    for header in response.headers.getlist("Set-Cookie"):
        name, _, rest = header.partition("=")
        if name == "refreshToken":
            return rest.split(";", 1)[0] or None
    return None


@pytest.fixture
def api(app):
    """Client without a cookie jar, so tokens are passed explicitly."""
    return app.test_client(use_cookies=False)


def _login(api, login, password=PASSWORD):
    response = api.post("/api/auth/login", json={"login": login, "password": password})
    return response, response.json.get("accessToken"), _refresh_cookie(response)


class TestLogin:

    def test_login_returns_tokens_and_permissions(self, api, worker_user):
        response, access, refresh = _login(api, "worker")

        assert response.status_code == 200
        assert access and refresh
        assert response.json["user"]["login"] == "worker"
        assert response.json["user"]["permissions"]["production.work"] == 1
        assert response.json["expires_at"].endswith("Z")

        cookie = next(h for h in response.headers.getlist("Set-Cookie") if h.startswith("refreshToken="))
        assert "HttpOnly" in cookie
        assert "Path=/api/auth" in cookie

    def test_login_by_email(self, api, worker_user):
        response, access, _ = _login(api, "worker@prodflow.test")
        assert response.status_code == 200

    def test_bad_password_logs_security_event(self, api, db_session, worker_user):
        response, _, _ = _login(api, "worker", "WrongPassword1!")

        assert response.status_code == 401
        event = db_session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").one()
        assert event.success is False

    def test_missing_fields(self, api, db_session):
        response = api.post("/api/auth/login", json={"login": "worker"})
        assert response.status_code == 400

    def test_inactive_user_cannot_login(self, api, db_session, worker_user):
        worker_user.is_active = False
        db_session.commit()
        response, _, _ = _login(api, "worker")
        assert response.status_code == 401

    def test_me(self, api, manager_user):
        _, access, _ = _login(api, "manager")
        response = api.get("/api/auth/me", headers=auth_headers(access))

        assert response.status_code == 200
        assert response.json["user"]["id"] == manager_user.id
        assert response.json["user"]["permissions"]["production.manageAll"] == 3

    def test_me_requires_token(self, api, db_session):
        assert api.get("/api/auth/me").status_code == 401
        assert api.get("/api/auth/me", headers=auth_headers("not-a-token")).status_code == 401

    def test_admin_payload_has_wildcard(self, api, admin_user):
        _, access, _ = _login(api, "admin")
        response = api.get("/api/auth/me", headers=auth_headers(access))
        assert response.json["user"]["permissions"]["*.*"] == 3


class TestRefresh:

    def test_rotation(self, api, worker_user):
        _, access, refresh = _login(api, "worker")

        response = api.post("/api/auth/refresh-token", json={"refreshToken": refresh})

        assert response.status_code == 200
        new_access = response.json["accessToken"]
        new_refresh = _refresh_cookie(response)
        assert new_access != access
        assert new_refresh and new_refresh != refresh

        # Old access token died with its refresh token
        assert api.get("/api/auth/me", headers=auth_headers(access)).status_code == 401
        assert api.get("/api/auth/me", headers=auth_headers(new_access)).status_code == 200

    def test_reuse_revokes_all_sessions(self, api, db_session, worker_user):
        _, _, refresh = _login(api, "worker")
        _, other_access, _ = _login(api, "worker")

        first = api.post("/api/auth/refresh-token", json={"refreshToken": refresh})
        rotated_access = first.json["accessToken"]

        reuse = api.post("/api/auth/refresh-token", json={"refreshToken": refresh})

        assert reuse.status_code == 401
        assert api.get("/api/auth/me", headers=auth_headers(rotated_access)).status_code == 401
        assert api.get("/api/auth/me", headers=auth_headers(other_access)).status_code == 401
        assert db_session.query(RefreshToken).filter_by(user_id=worker_user.id, is_revoked=False).count() == 0
        assert db_session.query(SecurityEvent).filter_by(event_type="REFRESH_TOKEN_REUSE").count() == 1

    def test_unknown_refresh_token(self, api, db_session):
        response = api.post("/api/auth/refresh-token", json={"refreshToken": "deadbeef"})
        assert response.status_code == 401

    def test_missing_refresh_token(self, api, db_session):
        assert api.post("/api/auth/refresh-token").status_code == 401

    def test_cookie_flow(self, client, worker_user):
        login = client.post("/api/auth/login", json={"login": "worker", "password": PASSWORD})
        assert login.status_code == 200

        response = client.post("/api/auth/refresh-token")
        assert response.status_code == 200
        assert response.json["user"]["login"] == "worker"


class TestLogout:

    def test_logout_revokes_access_and_refresh(self, api, worker_user):
        _, access, refresh = _login(api, "worker")

        response = api.post("/api/auth/logout", headers=auth_headers(access))

        assert response.status_code == 200
        assert api.get("/api/auth/me", headers=auth_headers(access)).status_code == 401
        assert api.post("/api/auth/refresh-token", json={"refreshToken": refresh}).status_code == 401

    def test_logout_without_tokens(self, api, db_session):
        assert api.post("/api/auth/logout").status_code == 401


class TestPasswordChange:

    def test_change_password_revokes_sessions(self, client, worker_user):
        token = get_auth_token(client, "worker")

        response = client.post("/api/users/me/password", headers=auth_headers(token), json={
            "currentPassword": PASSWORD,
            "newPassword": "N3wPassword!",
        })

        assert response.status_code == 200
        assert response.json["sessions_revoked"] >= 1
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401
        assert get_auth_token(client, "worker", "N3wPassword!")

    def test_wrong_current_password(self, client, worker_user):
        token = get_auth_token(client, "worker")
        response = client.post("/api/users/me/password", headers=auth_headers(token), json={
            "currentPassword": "Nope12345!",
            "newPassword": "N3wPassword!",
        })
        assert response.status_code == 400

    def test_weak_new_password(self, client, worker_user):
        token = get_auth_token(client, "worker")
        response = client.post("/api/users/me/password", headers=auth_headers(token), json={
            "currentPassword": PASSWORD,
            "newPassword": "weak",
        })
        assert response.status_code == 400
