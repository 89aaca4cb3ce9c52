"""
Fixtures for the BuildTrack test-suite.

One app per session on in-memory SQLite. Every test runs inside its own
app context and leaves behind freshly recreated tables. Entity fixtures
(``project``, ``phase``, ``material``, ``purchase_order``) go through the
HTTP API so they carry the same audit rows a real caller would create.
"""

from datetime import date, timedelta

import pytest

from buildtrack import create_app
from buildtrack.models import db as _db


def role_headers(role: str = "owner", user: str | None = None) -> dict:
    """X-User-Role / X-User headers read by the auth layer when API keys are off."""
    headers = {"X-User-Role": role}
    if user:
        headers["X-User"] = user
    return headers


def future_date(days: int = 14) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


# ── Application ──────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    return create_app("testing")


@pytest.fixture(scope="session")
def _schema(app):
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _schema):
    with app.app_context():
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def as_role():
    return role_headers


# ── Entities ─────────────────────────────────────────────────────────────

@pytest.fixture()
def project(client):
    """Project with a 100 000 budget and the four default phases."""
    res = client.post("/api/v1/projects", json={
        "project_code": "VILLA-01",
        "project_name": "Lakeside Villa",
        "location": "Izmir",
        "status": "active",
        "budget": {"total": 100000, "materials": 60000, "labour": 30000, "contingency": 10000},
    }, headers=role_headers("owner"))
    assert res.status_code == 201
    return res.get_json()["data"]


@pytest.fixture()
def phase(project):
    """First default phase (Basement/Substructure, 15% of the budget)."""
    return project["phases"][0]


@pytest.fixture()
def material(client, project, phase):
    """Retroactive material logged by a clerk, waiting in ``submitted``."""
    res = client.post("/api/v1/materials", json={
        "project_id": project["id"],
        "phase_id": phase["id"],
        "name": "Cement 50kg",
        "category": "cement",
        "quantity": 100,
        "unit": "bag",
        "unit_cost": 10,
        "supplier_name": "Akcansa",
    }, headers=role_headers("clerk", "clerk@site.test"))
    assert res.status_code == 201
    return res.get_json()["data"]


@pytest.fixture()
def purchase_order(client, project, phase):
    """Order sent to a supplier; the body includes the response token."""
    res = client.post("/api/v1/purchase-orders", json={
        "project_id": project["id"],
        "phase_id": phase["id"],
        "supplier_name": "Demir Celik AS",
        "supplier_email": "sales@demir.test",
        "material_name": "Rebar 12mm",
        "unit": "ton",
        "quantity_ordered": 5,
        "unit_cost": 800,
        "delivery_date": future_date(),
    }, headers=role_headers("pm", "pm@site.test"))
    assert res.status_code == 201
    return res.get_json()["data"]
