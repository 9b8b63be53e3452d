"""
Client token store and API client tests.

Verifies:
- Concurrent refreshes share one in-flight call and its result
- Three consecutive failures clear the store
- A 401 triggers one refresh and one replay of the request
- A token rotated mid-request is replayed without a second refresh
"""

import json
import threading
import time

import httpx
import pytest

from prodflow.client import ApiClient, ApiError, TokenStore, SessionExpiredError, MAX_REFRESH_ATTEMPTS


BASE_URL = "http://api.prodflow.test"


# =============================================================================
# TOKEN STORE
# =============================================================================


class TestSingleFlight:

    def test_concurrent_callers_share_one_refresh(self):
        store = TokenStore("old-access", "refresh-1")
        started = threading.Event()
        release = threading.Event()
        calls = []

        def refresh_func(token):
            calls.append(token)
            started.set()
            release.wait(timeout=5)
            return {"accessToken": "new-access", "refreshToken": "refresh-2"}

        results = []

        def worker():
            results.append(store.refresh(refresh_func))

        owner = threading.Thread(target=worker)
        owner.start()
        assert started.wait(timeout=5)

        waiters = [threading.Thread(target=worker) for _ in range(4)]
        for t in waiters:
            t.start()
        time.sleep(0.1)
        release.set()
        for t in [owner, *waiters]:
            t.join(timeout=5)

        assert calls == ["refresh-1"]
        assert results == ["new-access"] * 5
        assert store.access_token == "new-access"
        assert store.refresh_token == "refresh-2"

    def test_waiters_receive_the_same_error(self):
        store = TokenStore("old-access", "refresh-1")
        started = threading.Event()
        release = threading.Event()

        def refresh_func(token):
            started.set()
            release.wait(timeout=5)
            raise ConnectionError("network down")

        errors = []

        def worker():
            try:
                store.refresh(refresh_func)
            except ConnectionError as e:
                errors.append(e)

        owner = threading.Thread(target=worker)
        owner.start()
        assert started.wait(timeout=5)
        waiter = threading.Thread(target=worker)
        waiter.start()
        time.sleep(0.1)
        release.set()
        owner.join(timeout=5)
        waiter.join(timeout=5)

        assert len(errors) == 2
        assert errors[0] is errors[1]
        assert store.failures == 1


class TestFailures:

    def test_three_failures_clear_the_store(self):
        store = TokenStore("access", "refresh", user={"id": 1})

        def failing(token):
            raise ConnectionError("boom")

        for _ in range(MAX_REFRESH_ATTEMPTS - 1):
            with pytest.raises(ConnectionError):
                store.refresh(failing)
        assert store.refresh_token == "refresh"

        with pytest.raises(SessionExpiredError) as exc_info:
            store.refresh(failing)

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert store.access_token is None
        assert store.refresh_token is None
        assert store.user is None
        assert not store.is_authenticated

    def test_success_resets_failure_count(self):
        store = TokenStore("access", "refresh")

        def failing(token):
            raise ConnectionError("boom")

        with pytest.raises(ConnectionError):
            store.refresh(failing)
        store.refresh(lambda token: {"accessToken": "fresh"})

        assert store.failures == 0
        assert store.refresh_token == "refresh"

    def test_session_expired_clears_immediately(self):
        store = TokenStore("access", "refresh")

        def rejected(token):
            raise SessionExpiredError("Refresh token reuse detected")

        with pytest.raises(SessionExpiredError):
            store.refresh(rejected)
        assert store.refresh_token is None

    def test_no_refresh_token(self):
        with pytest.raises(SessionExpiredError):
            TokenStore("access").refresh(lambda token: {"accessToken": "x"})


# =============================================================================
# API CLIENT
# =============================================================================


class FakeApi:
    """Minimal auth server for httpx.MockTransport."""

    def __init__(self):
        self.valid_access = None
        self.valid_refresh = None
        self.counter = 0
        self.refresh_calls = 0
        self.requests = []
        self.before_protected = None

    def _issue(self):
        self.counter += 1
        self.valid_access = f"access-{self.counter}"
        self.valid_refresh = f"refresh-{self.counter}"
        return {"Set-Cookie": f"refreshToken={self.valid_refresh}; Path=/api/auth; HttpOnly"}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        path = request.url.path

        if path == "/api/auth/login":
            body = json.loads(request.content)
            if body.get("password") != "Password123!":
                return httpx.Response(401, json={"error": "Invalid credentials"})
            headers = self._issue()
            return httpx.Response(200, json={"accessToken": self.valid_access, "user": {"login": body["login"]}},
                                  headers=headers)

        if path == "/api/auth/refresh-token":
            self.refresh_calls += 1
            body = json.loads(request.content or b"{}")
            if body.get("refreshToken") != self.valid_refresh:
                return httpx.Response(401, json={"error": "Refresh token reuse detected"})
            headers = self._issue()
            return httpx.Response(200, json={"accessToken": self.valid_access}, headers=headers)

        if path == "/api/auth/logout":
            self.valid_access = None
            self.valid_refresh = None
            return httpx.Response(200, json={"message": "Logout successful"})

        if self.before_protected is not None:
            hook, self.before_protected = self.before_protected, None
            hook()

        if request.headers.get("Authorization") != f"Bearer {self.valid_access}":
            return httpx.Response(401, json={"error": "Invalid or expired token"})
        return httpx.Response(200, json={"ok": True, "path": path})

    def expire_access(self):
        self.valid_access = "rotated-elsewhere"


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def api_client(fake_api):
    with ApiClient(BASE_URL, transport=httpx.MockTransport(fake_api)) as client:
        yield client


class TestApiClient:

    def test_login_stores_tokens(self, api_client, fake_api):
        user = api_client.login("worker", "Password123!")

        assert user == {"login": "worker"}
        assert api_client.store.access_token == "access-1"
        assert api_client.store.refresh_token == "refresh-1"

    def test_login_failure(self, api_client):
        with pytest.raises(ApiError) as exc_info:
            api_client.login("worker", "wrong")
        assert exc_info.value.status_code == 401
        assert not api_client.store.is_authenticated

    def test_401_refreshes_and_replays_once(self, api_client, fake_api):
        api_client.login("worker", "Password123!")
        fake_api.expire_access()

        response = api_client.get("/api/production/guides")

        assert response.status_code == 200
        assert fake_api.refresh_calls == 1
        assert api_client.store.access_token == "access-2"
        assert api_client.store.refresh_token == "refresh-2"
        assert fake_api.requests.count(("GET", "/api/production/guides")) == 2

    def test_token_rotated_in_flight_is_replayed_without_refresh(self, api_client, fake_api):
        api_client.login("worker", "Password123!")

        def rotate_elsewhere():
            # Another caller refreshed while this request was on the wire
            fake_api._issue()
            api_client.store.set_tokens(fake_api.valid_access, refresh_token=fake_api.valid_refresh)

        fake_api.before_protected = rotate_elsewhere

        response = api_client.get("/api/production/guides")

        assert response.status_code == 200
        assert fake_api.refresh_calls == 0
        assert api_client.store.access_token == "access-2"
        assert fake_api.requests.count(("GET", "/api/production/guides")) == 2

    def test_rejected_refresh_ends_session(self, api_client, fake_api):
        api_client.login("worker", "Password123!")
        fake_api.expire_access()
        fake_api.valid_refresh = "revoked"

        with pytest.raises(SessionExpiredError):
            api_client.get("/api/production/guides")
        assert not api_client.store.is_authenticated

    def test_json_raises_api_error(self, api_client):
        with pytest.raises(ApiError) as exc_info:
            api_client.json("GET", "/api/production/guides")
        assert exc_info.value.status_code == 401

    def test_logout_clears_store(self, api_client, fake_api):
        api_client.login("worker", "Password123!")
        api_client.logout()

        assert not api_client.store.is_authenticated
        assert ("POST", "/api/auth/logout") in fake_api.requests
