"""
Tests — Finance API: investors, expenses, initial expenses, project finances.
"""

from tests.conftest import role_headers

OWNER = role_headers("owner", "owner@site.test")
ACCOUNTANT = role_headers("accountant", "acc@site.test")
INVESTOR = role_headers("investor", "deniz")


def _investor(client, project, amount=50000, investment_type="EQUITY", **extra):
    payload = {
        "name": "Deniz Holding",
        "investment_type": investment_type,
        "total_invested": amount,
        "project_allocations": [{"project_id": project["id"], "amount": amount}],
    }
    payload.update(extra)
    res = client.post("/api/v1/investors", json=payload, headers=OWNER)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]


def _expense(client, project, amount=2000, **extra):
    payload = {"project_id": project["id"], "amount": amount, "category": "transport",
               "vendor": "Kargo Ltd"}
    payload.update(extra)
    res = client.post("/api/v1/expenses", json=payload, headers=ACCOUNTANT)
    assert res.status_code == 201
    return res.get_json()["data"]


def _finances(client, project, headers=OWNER):
    return client.get(f"/api/v1/project-finances?project_id={project['id']}", headers=headers)


# ═════════════════════════════════════════════════════════════════════════════
# INVESTORS
# ═════════════════════════════════════════════════════════════════════════════

class TestInvestors:
    def test_create_and_allocations(self, client, project):
        investor = _investor(client, project, amount=30000, total_invested=40000)
        assert investor["project_allocations"] == [{"project_id": project["id"], "amount": 30000}]

        res = client.get(f"/api/v1/investors/{investor['id']}/allocations", headers=ACCOUNTANT)
        data = res.get_json()["data"]
        assert data["total_allocated"] == 30000
        assert data["unallocated"] == 10000
        assert data["allocations"][0]["project_code"] == "VILLA-01"

    def test_invalid_investment_type(self, client, project):
        res = client.post("/api/v1/investors", json={
            "name": "X", "investment_type": "GRANT", "total_invested": 10,
        }, headers=OWNER)
        assert res.status_code == 400

    def test_allocation_cannot_exceed_investment(self, client, project):
        res = client.post("/api/v1/investors", json={
            "name": "X", "investment_type": "LOAN", "total_invested": 1000,
            "project_allocations": [{"project_id": project["id"], "amount": 1500}],
        }, headers=OWNER)
        assert res.status_code == 400

    def test_duplicate_project_allocation(self, client, project):
        res = client.post("/api/v1/investors", json={
            "name": "X", "investment_type": "LOAN", "total_invested": 1000,
            "project_allocations": [
                {"project_id": project["id"], "amount": 100},
                {"project_id": project["id"], "amount": 200},
            ],
        }, headers=OWNER)
        assert res.status_code == 400

    def test_lowering_investment_below_allocations_fails(self, client, project):
        investor = _investor(client, project, amount=5000)
        res = client.patch(f"/api/v1/investors/{investor['id']}",
                           json={"total_invested": 1000}, headers=OWNER)
        assert res.status_code == 400

    def test_only_owner_manages_investors(self, client, project):
        res = client.post("/api/v1/investors", json={"name": "X"}, headers=ACCOUNTANT)
        assert res.status_code == 403

    def test_delete_marks_inactive(self, client, project):
        investor = _investor(client, project)
        assert client.delete(f"/api/v1/investors/{investor['id']}",
                             headers=OWNER).status_code == 200
        assert client.get(f"/api/v1/investors/{investor['id']}",
                          headers=OWNER).status_code == 404
        totals = _finances(client, project).get_json()["data"]
        assert totals["total_invested"] == 0


# ═════════════════════════════════════════════════════════════════════════════
# EXPENSES
# ═════════════════════════════════════════════════════════════════════════════

class TestExpenses:
    def test_full_lifecycle(self, client, project):
        _investor(client, project)
        expense = _expense(client, project)
        assert expense["status"] == "PENDING"

        url = f"/api/v1/expenses/{expense['id']}"
        res = client.post(f"{url}/approve", json={"notes": "ok"}, headers=ACCOUNTANT)
        assert res.get_json()["data"]["status"] == "APPROVED"

        res = client.post(f"{url}/pay", json={}, headers=ACCOUNTANT)
        data = res.get_json()["data"]
        assert data["status"] == "PAID"
        assert [step["status"] for step in data["approval_chain"]] == ["approved", "paid"]

    def test_cannot_pay_pending(self, client, project):
        expense = _expense(client, project)
        res = client.post(f"/api/v1/expenses/{expense['id']}/pay", json={}, headers=OWNER)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"

    def test_rejected_can_be_approved_later(self, client, project):
        expense = _expense(client, project)
        url = f"/api/v1/expenses/{expense['id']}"
        assert client.post(f"{url}/reject", json={}, headers=OWNER).status_code == 400
        res = client.post(f"{url}/reject", json={"reason": "No receipt"}, headers=OWNER)
        assert res.get_json()["data"]["status"] == "REJECTED"
        res = client.post(f"{url}/approve", json={}, headers=OWNER)
        assert res.get_json()["data"]["status"] == "APPROVED"

    def test_approval_checks_capital(self, client, project):
        _investor(client, project, amount=1000)
        expense = _expense(client, project, amount=2500)
        res = client.post(f"/api/v1/expenses/{expense['id']}/approve", json={}, headers=OWNER)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"available": 1000, "required": 2500}

    def test_invalid_category(self, client, project):
        res = client.post("/api/v1/expenses", json={
            "project_id": project["id"], "amount": 10, "category": "party",
        }, headers=OWNER)
        assert res.status_code == 400

    def test_list_by_status(self, client, project):
        _expense(client, project)
        second = _expense(client, project, amount=300)
        client.post(f"/api/v1/expenses/{second['id']}/approve", json={}, headers=OWNER)
        res = client.get(f"/api/v1/expenses?project_id={project['id']}&status=APPROVED",
                         headers=ACCOUNTANT)
        body = res.get_json()
        assert body["total"] == 1
        assert body["data"][0]["amount"] == 300


# ═════════════════════════════════════════════════════════════════════════════
# INITIAL EXPENSES
# ═════════════════════════════════════════════════════════════════════════════

class TestInitialExpenses:
    def test_crud(self, client, project):
        res = client.post("/api/v1/initial-expenses", json={
            "project_id": project["id"], "item_name": "Land survey",
            "category": "survey", "amount": 1200,
        }, headers=ACCOUNTANT)
        assert res.status_code == 201
        item = res.get_json()["data"]
        assert item["status"] == "PENDING"

        res = client.patch(f"/api/v1/initial-expenses/{item['id']}",
                           json={"status": "PAID", "date_paid": "2026-02-01"}, headers=ACCOUNTANT)
        assert res.get_json()["data"]["date_paid"] == "2026-02-01"

        listed = client.get(f"/api/v1/initial-expenses?project_id={project['id']}",
                            headers=ACCOUNTANT).get_json()
        assert listed["total"] == 1

        assert client.delete(f"/api/v1/initial-expenses/{item['id']}",
                             headers=ACCOUNTANT).status_code == 200

    def test_bad_category(self, client, project):
        res = client.post("/api/v1/initial-expenses", json={
            "project_id": project["id"], "item_name": "Lunch", "category": "food", "amount": 5,
        }, headers=OWNER)
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# PROJECT FINANCES
# ═════════════════════════════════════════════════════════════════════════════

class TestProjectFinances:
    def test_totals_and_balances(self, client, project, purchase_order):
        _investor(client, project, amount=50000, investment_type="MIXED")

        expense = _expense(client, project, amount=2000)
        client.post(f"/api/v1/expenses/{expense['id']}/approve", json={}, headers=OWNER)
        client.post("/api/v1/initial-expenses", json={
            "project_id": project["id"], "item_name": "Permit", "category": "approvals",
            "amount": 1000, "status": "PAID",
        }, headers=OWNER)
        # auto-approved owner entry: 100 x 30
        client.post("/api/v1/materials", json={
            "project_id": project["id"], "name": "Bricks", "quantity": 100, "unit_cost": 30,
        }, headers=OWNER)
        # waiting for approval: counted as estimated only
        client.post("/api/v1/materials", json={
            "project_id": project["id"], "name": "Tiles", "quantity": 10, "unit_cost": 40,
        }, headers=role_headers("clerk"))
        client.post(f"/api/v1/purchase-orders/{purchase_order['id']}/respond",
                    json={"token": purchase_order["response_token"], "action": "accept"})

        res = _finances(client, project, headers=ACCOUNTANT)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["total_invested"] == 50000
        assert data["total_loans"] == 25000
        assert data["total_equity"] == 25000
        assert data["breakdown"] == {
            "expenses": 2000, "materials": 3000, "initial_expenses": 1000, "total": 6000,
        }
        assert data["total_used"] == 6000
        assert data["capital_balance"] == 44000
        assert data["loan_balance"] == 22000
        assert data["committed_cost"] == 4000
        assert data["estimated_cost"] == 400
        assert data["available_capital"] == 40000
        assert data["materials_breakdown"]["budget"] == 60000
        assert data["materials_breakdown"]["remaining"] == 53000

    def test_committed_includes_professional_contracts(self, client, project):
        library = client.post("/api/v1/professional-services-library", json={
            "name": "Can Yildiz", "type": "engineer",
        }, headers=OWNER).get_json()["data"]
        client.post("/api/v1/professional-services", json={
            "library_id": library["id"], "project_id": project["id"], "contract_value": 12000,
        }, headers=OWNER)
        data = _finances(client, project).get_json()["data"]
        assert data["committed_cost"] == 12000

    def test_portfolio_view(self, client, project):
        _investor(client, project, amount=10000)
        res = client.get("/api/v1/project-finances", headers=OWNER)
        data = res.get_json()["data"]
        assert data["project_id"] is None
        assert data["total_invested"] == 10000
        assert "committed_cost" not in data

    def test_missing_project(self, client):
        assert client.get("/api/v1/project-finances?project_id=999",
                          headers=OWNER).status_code == 404

    def test_investor_sees_allocated_project_only(self, client, project):
        _investor(client, project, user_name="deniz")
        other = client.post("/api/v1/projects", json={
            "project_code": "OTHER", "project_name": "Other",
        }, headers=OWNER).get_json()["data"]

        assert _finances(client, project, headers=INVESTOR).status_code == 200
        assert _finances(client, other, headers=INVESTOR).status_code == 403
        assert client.get("/api/v1/project-finances", headers=INVESTOR).status_code == 403

        listed = client.get("/api/v1/projects", headers=INVESTOR).get_json()
        assert [p["id"] for p in listed["data"]] == [project["id"]]
        assert client.get(f"/api/v1/projects/{other['id']}", headers=INVESTOR).status_code == 403

    def test_investor_without_record_is_404(self, client, project):
        res = _finances(client, project, headers=role_headers("investor", "stranger"))
        assert res.status_code == 404

    def test_clerk_cannot_view_finances(self, client, project):
        assert _finances(client, project, headers=role_headers("clerk")).status_code == 403
