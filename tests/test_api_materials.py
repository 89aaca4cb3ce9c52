"""
Tests — Material API.

Covers:
    - Creation: status by role, cost status, capital warning, validation
    - Quantity updates and discrepancy recording
    - Approval workflow (submit / approve / reject, idempotent approve)
    - Soft delete, archive listing and restore
"""

from tests.conftest import role_headers

OWNER = role_headers("owner", "owner@site.test")
PM = role_headers("pm", "pm@site.test")
CLERK = role_headers("clerk", "clerk@site.test")


def _create(client, project, headers=OWNER, **overrides):
    payload = {
        "project_id": project["id"],
        "name": "Sand",
        "quantity": 10,
        "unit": "m3",
        "unit_cost": 50,
    }
    payload.update(overrides)
    return client.post("/api/v1/materials", json=payload, headers=headers)


def _fund(client, project, amount):
    res = client.post("/api/v1/investors", json={
        "name": "Anchor Capital",
        "investment_type": "EQUITY",
        "total_invested": amount,
        "project_allocations": [{"project_id": project["id"], "amount": amount}],
    }, headers=OWNER)
    assert res.status_code == 201
    return res.get_json()["data"]


# ═════════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════════

class TestMaterialCreate:
    def test_clerk_entry_waits_for_approval(self, material):
        assert material["status"] == "submitted"
        assert material["entry_type"] == "retroactive_entry"
        assert material["quantity_delivered"] == 100
        assert material["quantity_remaining"] == 100
        assert material["total_cost"] == 1000
        assert material["cost_status"] == "actual"
        assert material["submitted_by"] == "clerk@site.test"

    def test_owner_entry_is_auto_approved(self, client, project):
        res = _create(client, project)
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["status"] == "received"
        assert data["approved_by"] == "owner@site.test"
        assert data["approval_chain"][0]["status"] == "approved"

    def test_estimated_cost(self, client, project):
        res = _create(client, project, unit_cost=None, estimated_unit_cost=5)
        data = res.get_json()["data"]
        assert data["cost_status"] == "estimated"
        assert data["total_cost"] == 50

    def test_missing_cost(self, client, project):
        res = _create(client, project, unit_cost=None)
        data = res.get_json()["data"]
        assert data["cost_status"] == "missing"
        assert data["total_cost"] == 0

    def test_quantity_must_be_positive(self, client, project):
        res = _create(client, project, quantity=0)
        assert res.status_code == 400

    def test_name_required(self, client, project):
        res = _create(client, project, name="  ")
        assert res.status_code == 400

    def test_phase_must_belong_to_project(self, client, project):
        other = client.post("/api/v1/projects", json={
            "project_code": "OTHER", "project_name": "Other",
        }, headers=OWNER).get_json()["data"]
        res = _create(client, project, phase_id=other["phases"][0]["id"])
        assert res.status_code == 400

    def test_new_procurement_requires_purchase_order(self, client, project):
        res = _create(client, project, entry_type="new_procurement")
        assert res.status_code == 400

    def test_new_procurement_requires_ready_order(self, client, project, purchase_order):
        res = _create(client, project, entry_type="new_procurement",
                      purchase_order_id=purchase_order["id"])
        assert res.status_code == 400
        assert "ready for delivery" in res.get_json()["error"]

    def test_capital_warning_does_not_block(self, client, project):
        _fund(client, project, 200)
        res = _create(client, project)
        assert res.status_code == 201
        body = res.get_json()
        assert body["capital_warning"]["type"] == "insufficient_capital"
        assert body["capital_warning"]["available"] == 200
        assert body["capital_warning"]["required"] == 500

    def test_no_warning_without_capital_records(self, client, project):
        body = _create(client, project).get_json()
        assert "capital_warning" not in body

    def test_supplier_cannot_create(self, client, project):
        res = _create(client, project, headers=role_headers("supplier"))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# UPDATE & DISCREPANCIES
# ═════════════════════════════════════════════════════════════════════════════

class TestMaterialUpdate:
    def test_delivered_cannot_exceed_purchased(self, client, material):
        res = client.patch(f"/api/v1/materials/{material['id']}",
                           json={"quantity_delivered": 150}, headers=OWNER)
        assert res.status_code == 400
        assert "cannot exceed purchased" in res.get_json()["error"]

    def test_used_cannot_exceed_delivered(self, client, material):
        res = client.patch(f"/api/v1/materials/{material['id']}",
                           json={"quantity_used": 101}, headers=OWNER)
        assert res.status_code == 400
        body = res.get_json()
        assert body["error"] == "Used quantity (101) cannot exceed delivered quantity (100)"
        assert body["details"] == {
            "quantity_purchased": 100, "quantity_delivered": 100, "quantity_used": 101,
        }

    def test_negative_used_quantity_rejected(self, client, material):
        res = client.patch(f"/api/v1/materials/{material['id']}",
                           json={"quantity_used": -5}, headers=OWNER)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Used quantity cannot be negative"

    def test_clerk_cannot_edit_submitted_material(self, client, material):
        res = client.patch(f"/api/v1/materials/{material['id']}",
                           json={"name": "Cement 25kg"}, headers=CLERK)
        assert res.status_code == 400

    def test_usage_updates_remaining_and_records_discrepancy(self, client, material):
        res = client.patch(f"/api/v1/materials/{material['id']}",
                           json={"quantity_used": 80}, headers=OWNER)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["quantity_remaining"] == 20
        assert data["wastage"] == 20.0

        detail = client.get(f"/api/v1/materials/{material['id']}", headers=OWNER).get_json()["data"]
        assert detail["project"]["project_code"] == "VILLA-01"
        assert detail["discrepancy"]["alerts"]["loss"] is True
        assert detail["discrepancy"]["status"] == "open"

    def test_unit_cost_change_recomputes_total(self, client, material):
        res = client.patch(f"/api/v1/materials/{material['id']}",
                           json={"unit_cost": 12.5}, headers=OWNER)
        assert res.get_json()["data"]["total_cost"] == 1250

    def test_discrepancy_endpoint(self, client, material):
        res = client.get(f"/api/v1/materials/{material['id']}/discrepancy", headers=OWNER)
        assert res.status_code == 200
        data = res.get_json()["data"]
        # nothing used yet: the whole delivery is unaccounted for
        assert data["metrics"]["variance"] == 0
        assert data["metrics"]["loss"] == 100
        assert data["alerts"]["variance"] is False
        assert data["severity"] == "LOW"


# ═════════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═════════════════════════════════════════════════════════════════════════════

class TestMaterialWorkflow:
    def test_approve_is_idempotent(self, client, material):
        url = f"/api/v1/materials/{material['id']}/approve"
        first = client.post(url, json={"notes": "ok"}, headers=PM)
        assert first.status_code == 200
        assert first.get_json()["already_approved"] is False
        assert first.get_json()["data"]["status"] == "approved"
        assert first.get_json()["data"]["approved_by"] == "pm@site.test"

        second = client.post(url, json={}, headers=PM)
        assert second.status_code == 200
        assert second.get_json()["already_approved"] is True
        assert second.get_json()["message"] == "Material already approved"

    def test_clerk_cannot_approve(self, client, material):
        res = client.post(f"/api/v1/materials/{material['id']}/approve", json={}, headers=CLERK)
        assert res.status_code == 403
        assert res.get_json()["required"] == "approve_material"

    def test_approve_blocked_by_insufficient_capital(self, client, project, material):
        _fund(client, project, 300)
        res = client.post(f"/api/v1/materials/{material['id']}/approve", json={}, headers=PM)
        assert res.status_code == 400
        assert res.get_json()["details"]["available"] == 300

    def test_approve_within_phase_budget_has_no_warning(self, client, material):
        res = client.post(f"/api/v1/materials/{material['id']}/approve", json={}, headers=PM)
        assert res.status_code == 200
        assert res.get_json()["phase_budget_warning"] is None

    def test_approve_over_phase_budget_warns(self, client, project, phase):
        res = _create(client, project, headers=CLERK, phase_id=phase["id"],
                      name="Rebar", quantity=100, unit="t", unit_cost=200)
        assert res.status_code == 201
        big = res.get_json()["data"]

        res = client.post(f"/api/v1/materials/{big['id']}/approve", json={}, headers=PM)
        assert res.status_code == 200
        body = res.get_json()
        assert body["data"]["status"] == "approved"
        warning = body["phase_budget_warning"]
        assert warning["type"] == "phase_budget_exceeded"
        assert warning["budget"] == 15000
        assert warning["available"] == 15000
        assert warning["required"] == 20000

    def test_reject_requires_reason(self, client, material):
        res = client.post(f"/api/v1/materials/{material['id']}/reject", json={}, headers=PM)
        assert res.status_code == 400

    def test_reject_then_resubmit(self, client, material):
        res = client.post(f"/api/v1/materials/{material['id']}/reject",
                          json={"reason": "Wrong supplier"}, headers=PM)
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "rejected"

        res = client.post(f"/api/v1/materials/{material['id']}/submit", json={}, headers=CLERK)
        assert res.status_code == 200
        chain = res.get_json()["data"]["approval_chain"]
        assert [entry["status"] for entry in chain] == ["rejected", "submitted"]

    def test_cannot_reject_received_material(self, client, project):
        received = _create(client, project).get_json()["data"]
        res = client.post(f"/api/v1/materials/{received['id']}/reject",
                          json={"reason": "late"}, headers=PM)
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_TRANSITION"
        assert body["details"]["status"] == "received"


# ═════════════════════════════════════════════════════════════════════════════
# DELETE, RESTORE & LISTING
# ═════════════════════════════════════════════════════════════════════════════

class TestMaterialArchive:
    def test_only_owner_deletes(self, client, material):
        res = client.delete(f"/api/v1/materials/{material['id']}", headers=PM)
        assert res.status_code == 403

    def test_delete_archive_and_restore(self, client, project, material):
        res = client.delete(f"/api/v1/materials/{material['id']}", headers=OWNER)
        assert res.status_code == 200
        assert client.get(f"/api/v1/materials/{material['id']}", headers=OWNER).status_code == 404

        archived = client.get(
            f"/api/v1/materials?project_id={project['id']}&archived=true", headers=OWNER,
        ).get_json()["data"]
        assert [m["id"] for m in archived["materials"]] == [material["id"]]

        res = client.post(f"/api/v1/materials/{material['id']}/restore", json={}, headers=OWNER)
        assert res.status_code == 200
        assert res.get_json()["data"]["deleted_at"] is None

    def test_restore_active_material_fails(self, client, material):
        res = client.post(f"/api/v1/materials/{material['id']}/restore", json={}, headers=OWNER)
        assert res.status_code == 400

    def test_list_pagination_and_filters(self, client, project):
        for name in ("Sand", "Gravel", "Lime"):
            _create(client, project, name=name)
        _create(client, project, name="Cement", headers=CLERK)

        res = client.get(f"/api/v1/materials?project_id={project['id']}&limit=2", headers=OWNER)
        data = res.get_json()["data"]
        assert len(data["materials"]) == 2
        assert data["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}

        res = client.get("/api/v1/materials?status=submitted", headers=OWNER)
        assert [m["name"] for m in res.get_json()["data"]["materials"]] == ["Cement"]

        res = client.get("/api/v1/materials?sort_by=name&sort_order=asc", headers=OWNER)
        names = [m["name"] for m in res.get_json()["data"]["materials"]]
        assert names == ["Cement", "Gravel", "Lime", "Sand"]

    def test_non_numeric_id_filter_rejected(self, client):
        res = client.get("/api/v1/materials?phase_id=basement", headers=OWNER)
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"phase_id": "basement"}
