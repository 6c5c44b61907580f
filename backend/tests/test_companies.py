# Overview: Pytest coverage for company registration and its best-effort module bootstrap.

"""
Company Registration Tests

Verifies:
- Company + admin user are created together and the admin is logged in
- Default modules are a best-effort effect: a failure is reported, not raised
- Slugs are normalized, reserved slugs refused and duplicates are conflicts
"""

import pytest

from freshco.errors import ConflictError, ValidationError
from freshco.extensions import db
from freshco.models import Company, CompanyModule, User
from freshco.services import company_service
from freshco.services.tenant_service import TENANT_HEADER

from conftest import PASSWORD


def _register(client, **overrides):
    payload = {
        "company_name": "Harbor Market",
        "email": "owner@harbor.test",
        "password": PASSWORD,
        "first_name": "Ada",
    }
    payload.update(overrides)
    return client.post("/api/companies/register", json=payload)


class TestRegisterCompany:

    def test_register_over_http(self, client, db_session):
        resp = _register(client)

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["company"]["slug"] == "harbor-market"
        assert data["user"]["email"] == "owner@harbor.test"
        assert data["token"]
        assert data["effects"] == [{"name": "initialize_company_modules", "succeeded": True, "error": None}]

        company = db_session.query(Company).filter_by(slug="harbor-market").one()
        modules = db_session.query(CompanyModule).filter_by(company_id=company.id).all()
        assert sorted(m.module_key for m in modules) == sorted(company_service.DEFAULT_MODULES)

        # The returned token works against the new tenant right away
        resp = client.get("/api/auth/me", headers={
            "Authorization": f"Bearer {data['token']}",
            TENANT_HEADER: "harbor-market",
        })
        assert resp.status_code == 200
        assert resp.get_json()["data"]["roles"] == ["admin"]

    def test_module_failure_does_not_block_registration(self, db_session, monkeypatch):
        monkeypatch.setattr(company_service, "DEFAULT_MODULES", ("catalog", "catalog"))

        company, admin, effect = company_service.register_company(
            company_name="Dock Street Deli", email="owner@dock.test", password=PASSWORD,
        )

        assert effect.succeeded is False
        assert effect.name == "initialize_company_modules"
        assert effect.error
        assert db_session.query(Company).filter_by(id=company.id).count() == 1
        assert db_session.query(User).filter_by(id=admin.id).count() == 1
        assert db_session.query(CompanyModule).filter_by(company_id=company.id).count() == 0

    @pytest.mark.parametrize("slug", ["www", "API", "admin"])
    def test_reserved_slug(self, db_session, slug):
        with pytest.raises(ValidationError):
            company_service.register_company(
                company_name="Reserved", company_slug=slug, email="x@reserved.test", password=PASSWORD,
            )

    def test_duplicate_slug_is_conflict(self, client, company_a):
        resp = _register(client, company_slug="Fresh")
        assert resp.status_code == 409
        assert db.session.query(Company).filter_by(slug="fresh").count() == 1

    def test_weak_password_creates_nothing(self, db_session):
        with pytest.raises(ValidationError):
            company_service.register_company(
                company_name="Weak Co", email="owner@weak.test", password="short",
            )
        assert db_session.query(Company).count() == 0

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/companies/register", json={"company_name": "No Email"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Fresh Foods", "fresh-foods"),
            ("  Mom & Pop's  ", "mom-pop-s"),
            ("***", ""),
        ],
    )
    def test_slugify(self, value, expected):
        assert company_service.slugify(value) == expected

    def test_conflict_type(self, company_a):
        with pytest.raises(ConflictError):
            company_service.register_company(
                company_name="Fresh again", company_slug="fresh", email="o@fresh2.test", password=PASSWORD,
            )
