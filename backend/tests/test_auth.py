# Overview: Pytest coverage for login, token refresh/logout, the response envelope and CLI commands.

"""
Auth and API Surface Tests

Verifies:
- Login is scoped to the resolved tenant; refresh rotates the token
- Logged-out and refreshed-away tokens stop working
- Every error uses the {success, error: {message, code}} envelope and
  unexpected exceptions never leak their message
- The flask CLI groups run against the same services
"""

from freshco.extensions import db
from freshco.services import catalog_service
from freshco.services.tenant_service import TENANT_HEADER

from conftest import PASSWORD, auth_headers, set_stock


def _login(client, email, tenant="fresh", password=PASSWORD):
    return client.post(
        "/api/auth/login",
        json={"email": email, "password": password},
        headers={TENANT_HEADER: tenant},
    )


class TestLogin:

    def test_login_and_me(self, client, admin_a):
        resp = _login(client, "ADMIN@fresh.test")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["company_id"] == admin_a.company_id

        resp = client.get("/api/auth/me", headers={
            "Authorization": f"Bearer {data['token']}",
            TENANT_HEADER: "fresh",
        })
        me = resp.get_json()["data"]
        assert me["user"]["id"] == admin_a.id
        assert me["roles"] == ["admin"]
        assert me["company_slug"] == "fresh"

    def test_wrong_password(self, client, admin_a):
        resp = _login(client, "admin@fresh.test", password="Wrong0rd!")
        assert resp.status_code == 401
        body = resp.get_json()
        assert body["success"] is False
        assert body["error"] == {"message": "Invalid email or password", "code": "AUTHENTICATION_REQUIRED"}

    def test_refresh_rotates_token(self, client, admin_a):
        old = _login(client, "admin@fresh.test").get_json()["data"]["token"]

        resp = client.post("/api/auth/refresh", headers={"Authorization": f"Bearer {old}", TENANT_HEADER: "fresh"})
        assert resp.status_code == 200
        new = resp.get_json()["data"]["token"]
        assert new != old

        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {old}", TENANT_HEADER: "fresh"})
        assert resp.status_code == 401
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {new}", TENANT_HEADER: "fresh"})
        assert resp.status_code == 200

    def test_logout_revokes(self, client, admin_a):
        headers = auth_headers(admin_a)
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401
        assert client.post("/api/auth/logout", headers=headers).status_code == 401


class TestEnvelope:

    def test_success_envelope(self, client, admin_headers, warehouse_a):
        body = client.get("/api/warehouses", headers=admin_headers).get_json()
        assert body["success"] is True
        assert [w["code"] for w in body["data"]] == ["MAIN"]

    def test_missing_token(self, client, company_a):
        resp = client.get("/api/warehouses", headers={TENANT_HEADER: "fresh"})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    def test_unknown_route(self, client):
        resp = client.get("/api/nowhere")
        assert resp.status_code == 404
        body = resp.get_json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"

    def test_unexpected_error_is_masked(self, client, admin_headers, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("boom: secret connection string")

        monkeypatch.setattr(catalog_service, "list_warehouses", boom)
        resp = client.get("/api/warehouses", headers=admin_headers)

        assert resp.status_code == 500
        body = resp.get_json()
        assert body == {"success": False, "error": {"message": "Internal server error", "code": "INTERNAL_ERROR"}}
        assert b"boom" not in resp.data

    def test_health_needs_no_tenant(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200


class TestCli:

    def test_create_company_and_user(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "companies", "create", "--name", "Pier Provisions", "--email", "owner@pier.test", "--password", PASSWORD,
        ])
        assert "PASS Created company: Pier Provisions" in result.output

        result = runner.invoke(args=[
            "users", "create", "--company", "pier-provisions", "--email", "clerk@pier.test",
            "--password", PASSWORD, "--role", "sales",
        ])
        assert "PASS Created user clerk@pier.test" in result.output
        assert "roles: sales" in result.output

    def test_unknown_company(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["inventory", "verify-ledger", "--company", "ghost"])
        assert result.exit_code != 0
        assert "FAIL Company not found: ghost" in result.output

    def test_verify_ledger_exit_codes(self, app, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 5)
        runner = app.test_cli_runner()

        result = runner.invoke(args=["inventory", "verify-ledger", "--company", "fresh"])
        assert result.exit_code == 0
        assert "PASS Ledger consistent for fresh" in result.output

        db.session.execute(db.text("UPDATE warehouse_inventory SET stock_count = 9"))
        db.session.commit()

        result = runner.invoke(args=["inventory", "verify-ledger", "--company", "fresh"])
        assert result.exit_code == 1
        assert "FAIL 1 mismatch(es) for fresh" in result.output

        result = runner.invoke(args=["inventory", "rebuild-snapshots", "--company", "fresh"])
        assert "1 row(s) changed" in result.output
