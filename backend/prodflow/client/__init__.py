# Overview: Python API client package; token store and httpx wrapper.

from .token_store import TokenStore, SessionExpiredError, MAX_REFRESH_ATTEMPTS
from .api_client import ApiClient, ApiError

__all__ = [
    "TokenStore",
    "SessionExpiredError",
    "MAX_REFRESH_ATTEMPTS",
    "ApiClient",
    "ApiError",
]
