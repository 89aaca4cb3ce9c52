"""
Tests — Purchase order API and supplier response links.

Covers:
    - Create validation and PO numbering
    - Supplier respond: accept / reject / modify, token checks
    - Buyer decisions: approve / reject modification, retry
    - mark-ready, confirm-delivery (material creation), delete guard
    - Supplier visibility and the rejection reason catalogue
"""

from datetime import date, timedelta

from buildtrack.models import db
from buildtrack.models.purchase_order import PurchaseOrder
from buildtrack.models.soft_delete import utcnow
from tests.conftest import future_date, role_headers

OWNER = role_headers("owner", "owner@site.test")
PM = role_headers("pm", "pm@site.test")
SUPPLIER = role_headers("supplier", "sales@demir.test")


def _respond(client, po, **body):
    body.setdefault("token", po["response_token"])
    return client.post(f"/api/v1/purchase-orders/{po['id']}/respond", json=body)


def _accept(client, po):
    res = _respond(client, po, action="accept")
    assert res.status_code == 200
    return res.get_json()["data"]


def _modify(client, po, **modifications):
    res = _respond(client, po, action="modify", supplier_notes="Price went up",
                   modifications=modifications)
    assert res.status_code == 200
    return res.get_json()["data"]


def _fund(client, project, amount):
    return client.post("/api/v1/investors", json={
        "name": "Anchor Capital",
        "investment_type": "LOAN",
        "total_invested": amount,
        "project_allocations": [{"project_id": project["id"], "amount": amount}],
    }, headers=OWNER)


# ═════════════════════════════════════════════════════════════════════════════
# CREATE / UPDATE / DELETE
# ═════════════════════════════════════════════════════════════════════════════

class TestPurchaseOrderCreate:
    def test_created_as_sent_with_token(self, purchase_order):
        assert purchase_order["status"] == "order_sent"
        assert purchase_order["financial_status"] == "not_committed"
        assert purchase_order["total_cost"] == 4000
        assert purchase_order["response_token"]
        today = utcnow().date().strftime("%Y%m%d")
        assert purchase_order["purchase_order_number"] == f"PO-{today}-001"

    def test_numbers_increase_per_day(self, client, project, phase, purchase_order):
        res = client.post("/api/v1/purchase-orders", json={
            "project_id": project["id"], "phase_id": phase["id"],
            "supplier_name": "Beton AS", "material_name": "Ready-mix C30",
            "quantity_ordered": 20, "unit_cost": 90, "delivery_date": future_date(),
        }, headers=PM)
        assert res.get_json()["data"]["purchase_order_number"].endswith("-002")

    def test_delivery_date_must_be_in_future(self, client, project, phase):
        res = client.post("/api/v1/purchase-orders", json={
            "project_id": project["id"], "phase_id": phase["id"],
            "supplier_name": "Beton AS", "material_name": "Ready-mix C30",
            "quantity_ordered": 20, "unit_cost": 90,
            "delivery_date": (date.today() - timedelta(days=1)).isoformat(),
        }, headers=PM)
        assert res.status_code == 400

    def test_total_must_match(self, client, project, phase):
        res = client.post("/api/v1/purchase-orders", json={
            "project_id": project["id"], "phase_id": phase["id"],
            "supplier_name": "Beton AS", "material_name": "Ready-mix C30",
            "quantity_ordered": 20, "unit_cost": 90, "total_cost": 2000,
            "delivery_date": future_date(),
        }, headers=PM)
        assert res.status_code == 400
        assert res.get_json()["details"]["expected"] == 1800

    def test_phase_required(self, client, project):
        res = client.post("/api/v1/purchase-orders", json={
            "project_id": project["id"], "supplier_name": "Beton AS",
            "material_name": "Ready-mix", "quantity_ordered": 1, "unit_cost": 1,
            "delivery_date": future_date(),
        }, headers=PM)
        assert res.status_code == 400

    def test_clerk_cannot_create(self, client, project, phase):
        res = client.post("/api/v1/purchase-orders", json={"project_id": project["id"]},
                          headers=role_headers("clerk"))
        assert res.status_code == 403

    def test_update_recomputes_total(self, client, purchase_order):
        res = client.patch(f"/api/v1/purchase-orders/{purchase_order['id']}",
                           json={"quantity_ordered": 6}, headers=PM)
        assert res.status_code == 200
        assert res.get_json()["data"]["total_cost"] == 4800

    def test_cannot_edit_accepted_order(self, client, purchase_order):
        _accept(client, purchase_order)
        res = client.patch(f"/api/v1/purchase-orders/{purchase_order['id']}",
                           json={"notes": "x"}, headers=PM)
        assert res.status_code == 400

    def test_committed_order_cannot_be_deleted(self, client, purchase_order):
        _accept(client, purchase_order)
        res = client.delete(f"/api/v1/purchase-orders/{purchase_order['id']}", headers=OWNER)
        assert res.status_code == 400

    def test_delete_sent_order(self, client, purchase_order):
        res = client.delete(f"/api/v1/purchase-orders/{purchase_order['id']}", headers=OWNER)
        assert res.status_code == 200
        assert client.get(f"/api/v1/purchase-orders/{purchase_order['id']}",
                          headers=OWNER).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# SUPPLIER RESPONSE
# ═════════════════════════════════════════════════════════════════════════════

class TestSupplierResponse:
    def test_view_order_with_token(self, client, purchase_order):
        res = client.get(f"/api/v1/purchase-orders/{purchase_order['id']}/respond"
                         f"?token={purchase_order['response_token']}")
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["purchase_order"]["project"]["project_name"] == "Lakeside Villa"
        assert data["purchase_order"]["awaiting_response"] is True
        assert "response_token" not in data["purchase_order"]
        assert len(data["rejection_reasons"]) == 8

    def test_wrong_token_is_401(self, client, purchase_order):
        res = _respond(client, purchase_order, token="nope", action="accept")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_accept_commits_order(self, client, purchase_order):
        data = _accept(client, purchase_order)
        assert data["status"] == "order_accepted"
        assert data["financial_status"] == "committed"

    def test_token_is_single_use(self, client, purchase_order):
        _accept(client, purchase_order)
        res = _respond(client, purchase_order, action="accept")
        assert res.status_code == 410
        assert res.get_json()["code"] == "ERR_TOKEN_EXPIRED"

    def test_expired_token_is_410(self, client, purchase_order):
        po = db.session.get(PurchaseOrder, purchase_order["id"])
        po.response_token_expires_at = utcnow() - timedelta(hours=1)
        db.session.commit()
        res = _respond(client, purchase_order, action="accept")
        assert res.status_code == 410

    def test_accept_blocked_by_insufficient_capital(self, client, project, purchase_order):
        _fund(client, project, 1000)
        res = _respond(client, purchase_order, action="accept")
        assert res.status_code == 400
        assert res.get_json()["details"]["available"] == 1000

    def test_unknown_action(self, client, purchase_order):
        res = _respond(client, purchase_order, action="maybe")
        assert res.status_code == 400

    def test_reject_needs_reason_and_notes(self, client, purchase_order):
        res = _respond(client, purchase_order, action="reject", rejection_reason="timeline")
        assert res.status_code == 400
        res = _respond(client, purchase_order, action="reject", rejection_reason="bored",
                       supplier_notes="x")
        assert res.status_code == 400

    def test_retryable_rejection(self, client, purchase_order):
        res = _respond(client, purchase_order, action="reject", rejection_reason="timeline",
                       rejection_subcategory="delivery_date_too_soon",
                       supplier_notes="Need three more weeks")
        data = res.get_json()["data"]
        assert data["status"] == "order_rejected"
        assert data["is_retryable"] is True
        assert data["retry_recommendation"] == "Adjust delivery date or split order"

    def test_modify_requires_a_change(self, client, purchase_order):
        res = _respond(client, purchase_order, action="modify", modifications={"notes": "hm"})
        assert res.status_code == 400

    def test_modify_records_proposal(self, client, purchase_order):
        data = _modify(client, purchase_order, unit_cost=850)
        assert data["status"] == "order_modified"
        detail = client.get(f"/api/v1/purchase-orders/{purchase_order['id']}",
                            headers=OWNER).get_json()["data"]
        assert detail["supplier_modifications"]["unit_cost"] == 850
        events = [h["event"] for h in detail["response_history"]]
        assert events == ["sent", "supplier_modify"]


# ═════════════════════════════════════════════════════════════════════════════
# BUYER DECISIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestBuyerDecisions:
    def test_approve_modification_resends(self, client, purchase_order):
        _modify(client, purchase_order, unit_cost=850)
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/approve-modification",
                          json={"approval_notes": "Fair"}, headers=PM)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "order_sent"
        assert data["total_cost"] == 4250
        assert data["response_token"] != purchase_order["response_token"]

        # the fresh token lets the supplier confirm
        confirmed = _respond(client, data, action="accept").get_json()["data"]
        assert confirmed["status"] == "order_accepted"

    def test_approve_modification_with_auto_commit(self, client, purchase_order):
        _modify(client, purchase_order, quantity=4)
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/approve-modification",
                          json={"auto_commit": True}, headers=PM)
        data = res.get_json()["data"]
        assert data["status"] == "order_accepted"
        assert data["financial_status"] == "committed"
        assert data["total_cost"] == 3200

    def test_cannot_decide_twice(self, client, purchase_order):
        _modify(client, purchase_order, unit_cost=850)
        url = f"/api/v1/purchase-orders/{purchase_order['id']}/approve-modification"
        client.post(url, json={"auto_commit": True}, headers=PM)
        assert client.post(url, json={}, headers=PM).status_code == 400

    def test_reject_modification_reverts(self, client, purchase_order):
        _modify(client, purchase_order, unit_cost=850)
        url = f"/api/v1/purchase-orders/{purchase_order['id']}/reject-modification"
        assert client.post(url, json={}, headers=PM).status_code == 400

        res = client.post(url, json={"rejection_reason": "Too expensive"}, headers=PM)
        data = res.get_json()["data"]
        assert data["status"] == "order_sent"
        assert data["total_cost"] == 4000
        assert data["supplier_modifications"] is None

    def test_reject_modification_can_cancel(self, client, purchase_order):
        _modify(client, purchase_order, unit_cost=850)
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/reject-modification",
                          json={"rejection_reason": "Going elsewhere",
                                "revert_to_original": False}, headers=PM)
        assert res.get_json()["data"]["status"] == "cancelled"

    def test_retry_rejected_order_with_adjustments(self, client, purchase_order):
        _respond(client, purchase_order, action="reject", rejection_reason="price_too_high",
                 supplier_notes="Below market")
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/retry",
                          json={"adjustments": {"unit_cost": 900}}, headers=PM)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "retry_sent"
        assert data["retry_count"] == 1
        assert data["total_cost"] == 4500

        accepted = _respond(client, data, action="accept").get_json()["data"]
        assert accepted["status"] == "order_accepted"

    def test_non_retryable_rejection(self, client, purchase_order):
        _respond(client, purchase_order, action="reject", rejection_reason="unavailable",
                 supplier_notes="Discontinued")
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/retry",
                          json={}, headers=PM)
        assert res.status_code == 400

    def test_retry_requires_rejected_order(self, client, purchase_order):
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/retry",
                          json={}, headers=PM)
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# DELIVERY
# ═════════════════════════════════════════════════════════════════════════════

class TestDelivery:
    def test_supplier_marks_ready(self, client, purchase_order):
        _accept(client, purchase_order)
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/mark-ready",
                          json={}, headers=SUPPLIER)
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "ready_for_delivery"

    def test_other_supplier_cannot_mark_ready(self, client, purchase_order):
        _accept(client, purchase_order)
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/mark-ready",
                          json={}, headers=role_headers("supplier", "other@supplier.test"))
        assert res.status_code == 403

    def test_mark_ready_requires_acceptance(self, client, purchase_order):
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/mark-ready",
                          json={}, headers=PM)
        assert res.status_code == 400

    def test_confirm_delivery_creates_material(self, client, project, purchase_order):
        _accept(client, purchase_order)
        client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/mark-ready",
                    json={}, headers=PM)
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/confirm-delivery",
                          json={"delivery_note_file_url": "https://files.test/dn-1.pdf",
                                "actual_quantity_delivered": 4.5}, headers=PM)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["purchase_order"]["status"] == "delivered"
        assert data["purchase_order"]["financial_status"] == "fulfilled"
        material = data["material"]
        assert material["status"] == "received"
        assert material["entry_type"] == "new_procurement"
        assert material["quantity_purchased"] == 4.5
        assert material["total_cost"] == 3600
        assert material["purchase_order_id"] == purchase_order["id"]

        again = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/confirm-delivery",
                            json={"delivery_note_file_url": "https://files.test/dn-1.pdf"},
                            headers=PM)
        assert again.status_code == 400

    def test_confirm_delivery_requires_note(self, client, purchase_order):
        _accept(client, purchase_order)
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/confirm-delivery",
                          json={}, headers=PM)
        assert res.status_code == 400

    def test_cannot_confirm_unaccepted_order(self, client, purchase_order):
        res = client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/confirm-delivery",
                          json={"delivery_note_file_url": "https://files.test/dn.pdf"},
                          headers=PM)
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# VISIBILITY & CATALOGUE
# ═════════════════════════════════════════════════════════════════════════════

class TestVisibility:
    def test_supplier_sees_own_orders_only(self, client, purchase_order):
        mine = client.get("/api/v1/purchase-orders", headers=SUPPLIER).get_json()["data"]
        assert mine["pagination"]["total"] == 1
        assert "response_token" not in mine["purchase_orders"][0]

        other = client.get("/api/v1/purchase-orders",
                           headers=role_headers("supplier", "x@other.test")).get_json()["data"]
        assert other["pagination"]["total"] == 0

        res = client.get(f"/api/v1/purchase-orders/{purchase_order['id']}",
                         headers=role_headers("supplier", "x@other.test"))
        assert res.status_code == 403

    def test_token_only_shown_to_managers(self, client, purchase_order):
        owner_view = client.get(f"/api/v1/purchase-orders/{purchase_order['id']}",
                                headers=OWNER).get_json()["data"]
        accountant_view = client.get(f"/api/v1/purchase-orders/{purchase_order['id']}",
                                     headers=role_headers("accountant")).get_json()["data"]
        assert owner_view["response_token"] == purchase_order["response_token"]
        assert "response_token" not in accountant_view

    def test_rejection_reason_catalogue(self, client):
        res = client.get("/api/v1/purchase-orders/rejection-reasons", headers=PM)
        reasons = {r["value"]: r for r in res.get_json()["data"]}
        assert reasons["unavailable"]["retryable"] is False
        assert reasons["unavailable"]["priority_value"] == 5
        assert reasons["timeline"]["subcategories"][0] == {
            "value": "delivery_date_too_soon", "label": "Delivery Date Too Soon",
        }
