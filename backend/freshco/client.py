# Overview: httpx client for the FreshCo API with per-instance token refresh backoff.

"""
API Client

Sends Authorization and X-Tenant-Subdomain on every request. On a 401 the
client refreshes its token once and retries the original request.

REFRESH BACKOFF:
Each ApiClient owns one TokenRefreshState. A failed refresh doubles the
backoff (starting at initial_backoff, capped at max_backoff); while inside
that window further refresh attempts are skipped and the 401 is returned
as-is. A successful refresh resets the backoff. The lock keeps two threads
sharing one client from refreshing at the same time, and a thread that
waited on it reuses the token the winner obtained.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from .services.tenant_service import TENANT_HEADER


REFRESH_PATH = "/api/auth/refresh"
LOGIN_PATH = "/api/auth/login"


@dataclass
class TokenRefreshState:
    last_attempt: Optional[float] = None
    backoff_seconds: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def in_backoff(self, now: float) -> bool:
        if self.last_attempt is None or self.backoff_seconds <= 0:
            return False
        return now - self.last_attempt < self.backoff_seconds


class ApiClient:
    """
    HTTP client wrapper with authentication and tenant header.

    transport lets tests route requests to httpx.MockTransport or to the
    Flask app (httpx.WSGITransport) without a network.
    """

    def __init__(
        self,
        base_url: str,
        tenant: Optional[str] = None,
        *,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.tenant = tenant
        self.token = token
        self.current_user: Optional[Dict] = None
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.refresh_state = TokenRefreshState()
        self._clock = clock
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def _headers(self, extra: Optional[Dict] = None) -> Dict:
        """Build request headers with optional auth."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.tenant:
            headers[TENANT_HEADER] = self.tenant
        if extra:
            headers.update(extra)
        return headers

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        sent_token = self.token
        response = self.client.request(method, path, headers=self._headers(), **kwargs)
        if response.status_code != 401 or path in (REFRESH_PATH, LOGIN_PATH) or not sent_token:
            return response
        if not self.refresh_token(stale_token=sent_token):
            return response
        return self.client.request(method, path, headers=self._headers(), **kwargs)

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Optional[Any] = None, **kwargs) -> httpx.Response:
        return self.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Optional[Any] = None, **kwargs) -> httpx.Response:
        return self.request("PUT", path, json=json, **kwargs)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def login(self, email: str, password: str) -> bool:
        """Authenticate and store token."""
        response = self.post(LOGIN_PATH, json={"email": email, "password": password})
        if response.status_code != 200:
            return False
        data = response.json().get("data") or {}
        self.token = data.get("token")
        self.current_user = data.get("user")
        return True

    def refresh_token(self, stale_token: Optional[str] = None) -> bool:
        """
        Exchange the current token for a new one.

        Returns False without a request while inside the backoff window.
        Concurrent refreshes coalesce: a caller that waited on the lock
        while another thread replaced stale_token returns True without a
        request of its own.
        """
        state = self.refresh_state
        seen = self.token if stale_token is None else stale_token
        with state.lock:
            if self.token != seen:
                return self.token is not None
            now = self._clock()
            if state.in_backoff(now):
                return False
            state.last_attempt = now

            try:
                response = self.client.post(REFRESH_PATH, headers=self._headers())
            except httpx.HTTPError:
                response = None

            if response is not None and response.status_code == 200:
                data = response.json().get("data") or {}
                self.token = data.get("token")
                state.backoff_seconds = 0.0
                return True

            if state.backoff_seconds <= 0:
                state.backoff_seconds = self.initial_backoff
            else:
                state.backoff_seconds = min(state.backoff_seconds * 2, self.max_backoff)
            return False

    def logout(self) -> bool:
        """Logout and clear token."""
        if not self.token:
            return True
        response = self.post("/api/auth/logout")
        self.token = None
        self.current_user = None
        return response.status_code == 200
