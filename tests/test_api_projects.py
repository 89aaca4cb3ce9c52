"""
Tests — Projects, phases and phase templates API.

Covers:
    - Project CRUD, default phases, duplicate codes, soft delete
    - Phase create/update rules (sequence, completion, depends_on, status)
    - Phase delete guard when materials reference the phase
    - Phase template CRUD and apply
"""

import pytest

from tests.conftest import role_headers

OWNER = role_headers("owner", "owner@site.test")


# ═════════════════════════════════════════════════════════════════════════════
# PROJECTS
# ═════════════════════════════════════════════════════════════════════════════

class TestProjectCRUD:
    def test_create_project_with_default_phases(self, client, project):
        phases = project["phases"]
        assert project["project_code"] == "VILLA-01"
        assert [p["phase_name"] for p in phases] == [
            "Basement/Substructure", "Superstructure", "Finishing Works", "Final Systems",
        ]
        assert [p["budget_allocation"]["total"] for p in phases] == [15000, 45000, 30000, 10000]

    def test_create_without_default_phases(self, client):
        res = client.post("/api/v1/projects", json={
            "project_code": "SHOP-02", "project_name": "Corner Shop",
            "auto_create_phases": False,
        }, headers=OWNER)
        assert res.status_code == 201
        assert res.get_json()["data"]["phases"] == []

    def test_create_requires_code_and_name(self, client):
        res = client.post("/api/v1/projects", json={"project_name": "No code"}, headers=OWNER)
        assert res.status_code == 400
        body = res.get_json()
        assert body["success"] is False
        assert body["code"] == "ERR_VALIDATION_INVALID"

    def test_duplicate_code_is_conflict(self, client, project):
        res = client.post("/api/v1/projects", json={
            "project_code": "villa-01", "project_name": "Copy",
        }, headers=OWNER)
        assert res.status_code == 409

    def test_invalid_status(self, client):
        res = client.post("/api/v1/projects", json={
            "project_code": "X-1", "project_name": "X", "status": "dreaming",
        }, headers=OWNER)
        assert res.status_code == 400

    def test_list_and_search(self, client, project):
        res = client.get("/api/v1/projects?search=Lakeside", headers=OWNER)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["data"][0]["id"] == project["id"]

        res = client.get("/api/v1/projects?status=completed", headers=OWNER)
        assert res.get_json()["total"] == 0

    def test_update_project(self, client, project):
        res = client.patch(f"/api/v1/projects/{project['id']}", json={
            "project_name": "Lakeside Villa II", "status": "paused",
        }, headers=role_headers("pm"))
        assert res.status_code == 200
        assert res.get_json()["data"]["project_name"] == "Lakeside Villa II"
        assert res.get_json()["data"]["status"] == "paused"

    def test_clerk_cannot_create_project(self, client):
        res = client.post("/api/v1/projects", json={
            "project_code": "NOPE", "project_name": "Nope",
        }, headers=role_headers("clerk"))
        assert res.status_code == 403
        body = res.get_json()
        assert body == {"success": False, "error": "Permission denied", "required": "create_project"}

    def test_soft_delete_hides_project(self, client, project):
        res = client.delete(f"/api/v1/projects/{project['id']}", headers=OWNER)
        assert res.status_code == 200
        assert client.get(f"/api/v1/projects/{project['id']}", headers=OWNER).status_code == 404
        assert client.get("/api/v1/projects", headers=OWNER).get_json()["total"] == 0

    def test_pm_cannot_delete_project(self, client, project):
        res = client.delete(f"/api/v1/projects/{project['id']}", headers=role_headers("pm"))
        assert res.status_code == 403

    def test_missing_project_is_404(self, client):
        res = client.get("/api/v1/projects/9999", headers=OWNER)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# PHASES
# ═════════════════════════════════════════════════════════════════════════════

class TestPhases:
    def test_list_phases_ordered_by_sequence(self, client, project):
        res = client.get(f"/api/v1/phases?project_id={project['id']}", headers=OWNER)
        assert res.status_code == 200
        sequences = [p["sequence"] for p in res.get_json()["data"]]
        assert sequences == sorted(sequences)

    def test_create_phase_defaults_code(self, client, project):
        res = client.post("/api/v1/phases", json={
            "project_id": project["id"],
            "phase_name": "Landscaping",
            "phase_type": "final",
            "budget_allocation": {"total": 5000, "materials": 3000},
        }, headers=OWNER)
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["phase_code"] == "PHASE-05"
        assert data["budget_allocation"]["total"] == 5000

    def test_negative_sequence_rejected(self, client, project):
        res = client.post("/api/v1/phases", json={
            "project_id": project["id"], "phase_name": "Bad", "sequence": -1,
        }, headers=OWNER)
        assert res.status_code == 400

    @pytest.mark.parametrize("sequence", ["first", 1.5, "NaN"])
    def test_malformed_sequence_rejected(self, client, project, sequence):
        res = client.post("/api/v1/phases", json={
            "project_id": project["id"], "phase_name": "Bad", "sequence": sequence,
        }, headers=OWNER)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_blank_sequence_uses_next_position(self, client, project):
        res = client.post("/api/v1/phases", json={
            "project_id": project["id"], "phase_name": "Landscaping", "sequence": "",
        }, headers=OWNER)
        assert res.status_code == 201
        assert res.get_json()["data"]["sequence"] == 5

    def test_blank_sequence_on_update_rejected(self, client, phase):
        res = client.patch(f"/api/v1/phases/{phase['id']}", json={"sequence": ""},
                           headers=OWNER)
        assert res.status_code == 400

    def test_duplicate_dependencies_rejected(self, client, project, phase):
        res = client.post("/api/v1/phases", json={
            "project_id": project["id"], "phase_name": "Roof",
            "depends_on": [phase["id"], phase["id"]],
        }, headers=OWNER)
        assert res.status_code == 400

    def test_dependency_from_other_project_rejected(self, client, project):
        other = client.post("/api/v1/projects", json={
            "project_code": "OTHER", "project_name": "Other",
        }, headers=OWNER).get_json()["data"]
        res = client.post("/api/v1/phases", json={
            "project_id": project["id"], "phase_name": "Roof",
            "depends_on": [other["phases"][0]["id"]],
        }, headers=OWNER)
        assert res.status_code == 400

    def test_completion_out_of_range(self, client, phase):
        res = client.patch(f"/api/v1/phases/{phase['id']}", json={
            "completion_percentage": 120,
        }, headers=OWNER)
        assert res.status_code == 400

    def test_completing_phase_sets_100_and_end_date(self, client, phase):
        res = client.patch(f"/api/v1/phases/{phase['id']}", json={"status": "completed"},
                           headers=OWNER)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["completion_percentage"] == 100
        assert data["actual_end_date"] is not None

    def test_phase_detail_includes_financial_summary(self, client, phase):
        res = client.get(f"/api/v1/phases/{phase['id']}", headers=OWNER)
        summary = res.get_json()["data"]["financial_summary"]
        assert summary["budget"] == 15000
        assert summary["actual"] == 0
        assert summary["remaining"] == 15000

    def test_delete_phase_with_materials_refused(self, client, phase, material):
        res = client.delete(f"/api/v1/phases/{phase['id']}", headers=OWNER)
        assert res.status_code == 400

    def test_delete_empty_phase(self, client, project):
        last = project["phases"][-1]
        res = client.delete(f"/api/v1/phases/{last['id']}", headers=OWNER)
        assert res.status_code == 200
        assert client.get(f"/api/v1/phases/{last['id']}", headers=OWNER).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# PHASE TEMPLATES
# ═════════════════════════════════════════════════════════════════════════════

def _template_payload(**overrides):
    payload = {
        "template_name": "Duplex",
        "template_type": "residential",
        "phases": [
            {"phase_name": "Groundworks", "phase_code": "GW", "default_budget_percentage": 20},
            {"phase_name": "Frame", "default_budget_percentage": 50},
        ],
    }
    payload.update(overrides)
    return payload


class TestPhaseTemplates:
    def test_create_template_fills_defaults(self, client):
        res = client.post("/api/v1/phase-templates", json=_template_payload(), headers=OWNER)
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["phases"][1]["phase_code"] == "PHASE-02"
        assert data["phases"][1]["phase_type"] == "construction"
        assert data["phases"][1]["sequence"] == 1
        assert data["default_budget_allocation"] == {
            "materials": 40, "labour": 30, "equipment": 10, "subcontractors": 15, "contingency": 5,
        }

    def test_template_requires_phases(self, client):
        res = client.post("/api/v1/phase-templates", json=_template_payload(phases=[]),
                          headers=OWNER)
        assert res.status_code == 400

    def test_percentage_above_100_rejected(self, client):
        res = client.post("/api/v1/phase-templates", json=_template_payload(phases=[
            {"phase_name": "All", "default_budget_percentage": 150},
        ]), headers=OWNER)
        assert res.status_code == 400

    @pytest.mark.parametrize("sequence", ["first", -2, 0.5])
    def test_bad_phase_sequence_rejected(self, client, sequence):
        res = client.post("/api/v1/phase-templates", json=_template_payload(phases=[
            {"phase_name": "A", "sequence": sequence},
        ]), headers=OWNER)
        assert res.status_code == 400
        assert "phases[0].sequence" in res.get_json()["details"]

    def test_blank_phase_sequence_falls_back_to_position(self, client):
        res = client.post("/api/v1/phase-templates", json=_template_payload(phases=[
            {"phase_name": "A", "sequence": "7"},
            {"phase_name": "B", "sequence": ""},
        ]), headers=OWNER)
        assert res.status_code == 201
        assert [p["sequence"] for p in res.get_json()["data"]["phases"]] == [7, 1]

    def test_apply_template_creates_phases(self, client):
        project = client.post("/api/v1/projects", json={
            "project_code": "DUPLEX-1", "project_name": "Duplex",
            "budget": {"total": 200000}, "auto_create_phases": False,
        }, headers=OWNER).get_json()["data"]
        template = client.post("/api/v1/phase-templates", json=_template_payload(),
                               headers=OWNER).get_json()["data"]

        res = client.post(f"/api/v1/phase-templates/{template['id']}/apply",
                          json={"project_id": project["id"]}, headers=OWNER)
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["phases_count"] == 2
        groundworks = data["phases"][0]
        assert groundworks["budget_allocation"]["total"] == 40000
        assert groundworks["budget_allocation"]["materials"] == 16000

        again = client.post(f"/api/v1/phase-templates/{template['id']}/apply",
                            json={"project_id": project["id"]}, headers=OWNER)
        assert again.get_json()["data"]["phases_count"] == 0

        detail = client.get(f"/api/v1/phase-templates/{template['id']}", headers=OWNER)
        assert detail.get_json()["data"]["usage_count"] == 2
        assert detail.get_json()["data"]["last_used_at"] is not None

    def test_list_templates_by_type(self, client):
        client.post("/api/v1/phase-templates", json=_template_payload(), headers=OWNER)
        client.post("/api/v1/phase-templates",
                    json=_template_payload(template_name="Mall", template_type="commercial"),
                    headers=OWNER)
        res = client.get("/api/v1/phase-templates?template_type=commercial", headers=OWNER)
        names = [t["template_name"] for t in res.get_json()["data"]]
        assert names == ["Mall"]

    def test_seed_default_templates_is_idempotent(self):
        from buildtrack.models import db
        from buildtrack.services.phase_template_service import seed_default_templates

        assert seed_default_templates() == 1
        db.session.commit()
        assert seed_default_templates() == 0
