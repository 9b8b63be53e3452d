# Overview: httpx-based API client that attaches bearer tokens and refreshes on 401.

import logging

import httpx

from .token_store import TokenStore, SessionExpiredError

logger = logging.getLogger(__name__)

REFRESH_COOKIE_NAME = "refreshToken"
REFRESH_PATH = "/api/auth/refresh-token"


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, message: str, payload: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error") or response.reason_phrase
    except ValueError:
        return response.reason_phrase


class ApiClient:
    """
    Thin wrapper around httpx.Client.

    Every request carries the store's access token. A 401 triggers one
    TokenStore.refresh and one replay of the original request; a second 401
    is returned to the caller as-is. When the token changed while the request
    was in flight, the request is replayed with the new token without refreshing.
    """

    def __init__(
        self,
        base_url: str,
        *,
        store: TokenStore | None = None,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self.store = store or TokenStore()
        self._http = httpx.Client(base_url=base_url, transport=transport, timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def login(self, login: str, password: str) -> dict:
        response = self._http.post("/api/auth/login", json={"login": login, "password": password})
        if response.status_code != 200:
            raise ApiError(response.status_code, _error_message(response))

        data = response.json()
        self.store.set_tokens(
            data["accessToken"],
            refresh_token=response.cookies.get(REFRESH_COOKIE_NAME),
            user=data.get("user"),
        )
        return data["user"]

    def logout(self) -> None:
        try:
            if self.store.access_token:
                self._http.post("/api/auth/logout", headers=self._auth_headers())
        finally:
            self.store.clear()
            self._http.cookies.clear()

    def _auth_headers(self, token: str | None = None) -> dict:
        token = token or self.store.access_token
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def _refresh(self, refresh_token: str) -> dict:
        response = self._http.post(REFRESH_PATH, json={"refreshToken": refresh_token})
        if response.status_code == 401:
            raise SessionExpiredError(_error_message(response))
        if response.status_code != 200:
            raise ApiError(response.status_code, _error_message(response))

        data = response.json()
        return {
            "accessToken": data["accessToken"],
            "refreshToken": response.cookies.get(REFRESH_COOKIE_NAME),
            "user": data.get("user"),
        }

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        sent_token = self.store.access_token
        response = self._http.request(method, url, headers={**headers, **self._auth_headers(sent_token)}, **kwargs)
        if response.status_code != 401 or not self.store.refresh_token:
            return response

        current = self.store.access_token
        if current is not None and current != sent_token:
            # Another caller already rotated the pair while this request was in flight
            logger.debug("Access token changed during %s %s, replaying", method, url)
        else:
            logger.debug("Access token rejected for %s %s, refreshing", method, url)
            self.store.refresh(self._refresh)
        return self._http.request(method, url, headers={**headers, **self._auth_headers()}, **kwargs)

    def get(self, url: str, **kwargs) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> httpx.Response:
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs) -> httpx.Response:
        return self.request("PUT", url, **kwargs)

    def patch(self, url: str, **kwargs) -> httpx.Response:
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs) -> httpx.Response:
        return self.request("DELETE", url, **kwargs)

    def json(self, method: str, url: str, **kwargs) -> dict:
        """Request and decode JSON, raising ApiError on a non-2xx status."""
        response = self.request(method, url, **kwargs)
        if response.is_error:
            raise ApiError(response.status_code, _error_message(response))
        return response.json()
