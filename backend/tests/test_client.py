# Overview: Pytest coverage for the httpx API client and its token refresh backoff.

"""
API Client Tests

Verifies:
- Tenant and bearer headers go out on every request
- A 401 triggers one refresh + retry
- Failed refreshes back off 1s, 2s, ... (per client), success resets
- Concurrent 401s on one client trigger a single refresh
- Login/refresh work end-to-end against the Flask app (httpx.WSGITransport)
"""

import threading

import httpx
import pytest

from freshco.client import REFRESH_PATH, ApiClient

from conftest import PASSWORD


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class FakeApi:
    """Answers 401 to stale tokens; refresh succeeds only when allowed."""

    def __init__(self):
        self.valid_token = "good"
        self.allow_refresh = False
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        auth = request.headers.get("Authorization", "")
        self.calls.append((request.url.path, auth, request.headers.get("X-Tenant-Subdomain")))
        if request.url.path == REFRESH_PATH:
            if self.allow_refresh:
                return httpx.Response(200, json={"success": True, "data": {"token": self.valid_token}})
            return httpx.Response(401, json={"success": False, "error": {"message": "expired", "code": "AUTHENTICATION_REQUIRED"}})
        if auth != f"Bearer {self.valid_token}":
            return httpx.Response(401, json={"success": False, "error": {"message": "expired", "code": "AUTHENTICATION_REQUIRED"}})
        return httpx.Response(200, json={"success": True, "data": {"ok": True}})

    def refresh_calls(self):
        return [c for c in self.calls if c[0] == REFRESH_PATH]


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def clock():
    return FakeClock()


def _client(fake_api, clock, token="stale"):
    return ApiClient(
        "http://fresh.gofreshco.test",
        "fresh",
        token=token,
        transport=httpx.MockTransport(fake_api),
        clock=clock,
    )


class TestHeaders:

    def test_tenant_and_token_are_sent(self, fake_api, clock):
        with _client(fake_api, clock, token="good") as api:
            assert api.get("/api/orders").status_code == 200
        assert fake_api.calls == [("/api/orders", "Bearer good", "fresh")]


class TestRefresh:

    def test_401_refreshes_and_retries(self, fake_api, clock):
        fake_api.allow_refresh = True
        with _client(fake_api, clock) as api:
            resp = api.get("/api/orders")
            assert resp.status_code == 200
            assert api.token == "good"
        assert [c[0] for c in fake_api.calls] == ["/api/orders", REFRESH_PATH, "/api/orders"]

    def test_backoff_doubles_and_resets(self, fake_api, clock):
        with _client(fake_api, clock) as api:
            state = api.refresh_state

            assert api.get("/api/orders").status_code == 401
            assert state.backoff_seconds == 1.0
            assert len(fake_api.refresh_calls()) == 1

            # Inside the window: no refresh request at all
            clock.now += 0.5
            assert api.get("/api/orders").status_code == 401
            assert len(fake_api.refresh_calls()) == 1

            clock.now += 0.6
            api.get("/api/orders")
            assert state.backoff_seconds == 2.0
            assert len(fake_api.refresh_calls()) == 2

            clock.now += 2.5
            fake_api.allow_refresh = True
            assert api.get("/api/orders").status_code == 200
            assert state.backoff_seconds == 0.0

    def test_backoff_is_capped(self, fake_api, clock):
        api = ApiClient(
            "http://fresh.gofreshco.test",
            "fresh",
            token="stale",
            transport=httpx.MockTransport(fake_api),
            clock=clock,
            max_backoff=3.0,
        )
        for _ in range(4):
            clock.now += 10
            api.refresh_token()
        assert api.refresh_state.backoff_seconds == 3.0
        api.close()

    def test_backoff_is_per_client(self, fake_api, clock):
        first = _client(fake_api, clock)
        second = _client(fake_api, clock)

        first.refresh_token()
        assert first.refresh_state.in_backoff(clock.now)
        assert not second.refresh_state.in_backoff(clock.now)
        assert second.refresh_token() is False
        assert len(fake_api.refresh_calls()) == 2

    def test_concurrent_401s_share_one_refresh(self, fake_api, clock):
        fake_api.allow_refresh = True
        in_refresh = threading.Event()
        second_rejected = threading.Event()
        release = threading.Event()

        def gated(request):
            response = fake_api(request)
            if request.url.path == REFRESH_PATH:
                in_refresh.set()
                release.wait(5)
            elif response.status_code == 401 and in_refresh.is_set():
                second_rejected.set()
            return response

        api = ApiClient(
            "http://fresh.gofreshco.test",
            "fresh",
            token="stale",
            transport=httpx.MockTransport(gated),
            clock=clock,
        )
        results = {}

        def call(name):
            results[name] = api.get("/api/orders").status_code

        first = threading.Thread(target=call, args=("first",))
        first.start()
        assert in_refresh.wait(5)

        # Second request goes out with the stale token while the refresh is in flight
        second = threading.Thread(target=call, args=("second",))
        second.start()
        assert second_rejected.wait(5)
        release.set()
        first.join(5)
        second.join(5)

        assert results == {"first": 200, "second": 200}
        assert len(fake_api.refresh_calls()) == 1
        assert api.token == "good"
        api.close()

    def test_refresh_after_token_changed_skips_request(self, fake_api, clock):
        with _client(fake_api, clock, token="good") as api:
            assert api.refresh_token(stale_token="stale") is True
            assert fake_api.refresh_calls() == []

    def test_transport_error_counts_as_failure(self, clock):
        def down(request):
            raise httpx.ConnectError("down", request=request)

        api = ApiClient("http://x.test", token="t", transport=httpx.MockTransport(down), clock=clock)
        assert api.refresh_token() is False
        assert api.refresh_state.backoff_seconds == 1.0


class TestAgainstApp:

    def test_login_refresh_logout(self, app, admin_a):
        api = ApiClient("http://localhost", "fresh", transport=httpx.WSGITransport(app=app))

        assert api.login("admin@fresh.test", PASSWORD) is True
        assert api.current_user["email"] == "admin@fresh.test"
        first = api.token

        assert api.refresh_token() is True
        assert api.token != first

        resp = api.get("/api/auth/me")
        assert resp.json()["data"]["company_slug"] == "fresh"

        assert api.logout() is True
        assert api.token is None

    def test_bad_login(self, app, admin_a):
        api = ApiClient("http://localhost", "fresh", transport=httpx.WSGITransport(app=app))
        assert api.login("admin@fresh.test", "Nope0000!") is False
        assert api.token is None
