# Overview: Client-side token state with single-flight refresh.

"""
Token store for API consumers.

Holds the access token, refresh token and the user payload returned at login.
A refresh is single-flight: the first caller runs the refresh function and
every caller that arrives while it is running waits on the same Future,
receiving the same new token or the same exception.

After MAX_REFRESH_ATTEMPTS consecutive failed refreshes the store clears
itself and raises SessionExpiredError; the caller must log in again.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable

logger = logging.getLogger(__name__)

MAX_REFRESH_ATTEMPTS = 3


class SessionExpiredError(Exception):
    """The session cannot be refreshed; a new login is required."""
    pass


class TokenStore:
    def __init__(self, access_token: str | None = None, refresh_token: str | None = None, user: dict | None = None):
        self._lock = threading.Lock()
        self._in_flight: Future | None = None
        self._failures = 0
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.user = user

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    @property
    def failures(self) -> int:
        return self._failures

    def set_tokens(self, access_token: str, refresh_token: str | None = None, user: dict | None = None) -> None:
        with self._lock:
            self.access_token = access_token
            if refresh_token is not None:
                self.refresh_token = refresh_token
            if user is not None:
                self.user = user
            self._failures = 0

    def clear(self) -> None:
        """Logout: drop every token. An in-flight refresh still completes for its waiters."""
        with self._lock:
            self._clear_locked()

    def _clear_locked(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None
        self._failures = 0

    def refresh(self, refresh_func: Callable[[str], dict[str, Any]]) -> str:
        """
        Refresh the access token, joining a refresh already in progress.

        refresh_func receives the current refresh token and returns
        {"accessToken", "refreshToken"?, "user"?}. Raising SessionExpiredError
        from it ends the session immediately; any other exception counts as
        one failed attempt.

        Returns the new access token.
        """
        with self._lock:
            if self._in_flight is not None:
                future = self._in_flight
                owner = False
            else:
                if not self.refresh_token:
                    raise SessionExpiredError("No refresh token available")
                future = Future()
                self._in_flight = future
                owner = True
                refresh_token = self.refresh_token

        if not owner:
            return future.result()

        try:
            result = refresh_func(refresh_token)
            access_token = result["accessToken"]
        except Exception as e:
            error = self._record_failure(e)
            future.set_exception(error)
            raise error

        with self._lock:
            self.access_token = access_token
            if result.get("refreshToken"):
                self.refresh_token = result["refreshToken"]
            if result.get("user") is not None:
                self.user = result["user"]
            self._failures = 0
            self._in_flight = None

        future.set_result(access_token)
        return access_token

    def _record_failure(self, error: Exception) -> Exception:
        with self._lock:
            self._in_flight = None
            self._failures += 1
            if isinstance(error, SessionExpiredError):
                self._clear_locked()
                return error
            if self._failures >= MAX_REFRESH_ATTEMPTS:
                logger.warning("Token refresh failed %d times, clearing session", self._failures)
                self._clear_locked()
                expired = SessionExpiredError(f"Token refresh failed {MAX_REFRESH_ATTEMPTS} times")
                expired.__cause__ = error
                return expired
        logger.warning("Token refresh failed: %s", error)
        return error
