"""
API tests for employees, employments, probation and the grant registry.

Covers:
  - employee + employment creation (with allocations) → 201
  - validation 422 / unknown 404 body shapes
  - employment update and termination
  - probation extend / pass / fail endpoints and statistics
  - grant registry, slots and capacity endpoints
  - health probes
"""

from datetime import date, timedelta

from hrms.models.grant import Grant


class TestEmployeesAndEmployments:
    def test_create_employee_and_employment(self, client, org_grant):
        res = client.post("/api/v1/employees", json={"staff_id": "0500", "first_name": "Hla"})
        assert res.status_code == 201
        employee_id = res.get_json()["data"]["id"]

        res = client.post("/api/v1/employments", json={
            "employee_id": employee_id,
            "start_date": (date.today() - timedelta(days=10)).isoformat(),
            "pass_probation_date": (date.today() + timedelta(days=80)).isoformat(),
            "probation_salary": 20000,
            "pass_probation_salary": 32000,
            "allocations": [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}],
        })
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["allocations"][0]["allocated_amount"] == 20000.0

        listing = client.get(f"/api/v1/employments?employee_id={employee_id}").get_json()
        assert listing["total"] == 1

    def test_validation_body(self, client, employee):
        res = client.post("/api/v1/employments", json={"employee_id": employee.id})
        assert res.status_code == 422
        body = res.get_json()
        assert body["success"] is False
        assert "start_date" in body["errors"]

    def test_show_404(self, client):
        res = client.get("/api/v1/employments/999")
        assert res.status_code == 404
        assert res.get_json() == {"success": False, "message": "Employment id=999 not found"}

    def test_update_and_terminate(self, client, employment, org_grant):
        client.post("/api/v1/employee-funding-allocations", json={
            "employment_id": employment.id,
            "allocations": [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}],
        })
        res = client.put(f"/api/v1/employments/{employment.id}", json={"site_id": 4})
        assert res.status_code == 200
        assert res.get_json()["data"]["site_id"] == 4

        res = client.delete(f"/api/v1/employments/{employment.id}")
        assert res.status_code == 200
        assert len(res.get_json()["data"]["terminated_allocations"]) == 1
        assert client.get(f"/api/v1/employments/{employment.id}").status_code == 404

        res = client.get(f"/api/v1/employments/{employment.id}/funding-allocations")
        data = res.get_json()["data"]
        assert data["active"] == []
        assert data["history"][0]["status"] == "terminated"


class TestProbationEndpoints:
    def test_extend_pass_flow(self, client, employment, org_grant, grant_item):
        client.post("/api/v1/employee-funding-allocations", json={
            "employment_id": employment.id,
            "allocations": [
                {"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 60},
                {"allocation_type": "grant", "grant_item_id": grant_item.id, "fte": 40},
            ],
        })
        new_end = employment.pass_probation_date + timedelta(days=30)
        res = client.post(f"/api/v1/employments/{employment.id}/probation/extend",
                          json={"new_end_date": new_end.isoformat(), "reason": "Review pending"})
        assert res.status_code == 200
        assert res.get_json()["data"]["record"]["extension_number"] == 1

        res = client.post(f"/api/v1/employments/{employment.id}/probation/pass", json={})
        assert res.status_code == 200
        assert len(res.get_json()["data"]["allocations"]["created"]) == 2

        active = client.get(f"/api/v1/employments/{employment.id}").get_json()["data"]["allocations"]
        assert sorted(a["allocated_amount"] for a in active) == [12800.0, 19200.0]

        res = client.post(f"/api/v1/employments/{employment.id}/probation/fail", json={})
        assert res.status_code == 422

        history = client.get(f"/api/v1/employments/{employment.id}/probation").get_json()["data"]
        assert [r["event_type"] for r in history["records"]] == ["initial", "extension", "passed"]
        assert history["current_status"] == "passed"

    def test_extend_requires_date(self, client, employment):
        res = client.post(f"/api/v1/employments/{employment.id}/probation/extend", json={})
        assert res.status_code == 422
        assert res.get_json()["errors"] == {"new_end_date": "required"}

    def test_pass_without_recalculation(self, client, employment, org_grant):
        client.post("/api/v1/employee-funding-allocations", json={
            "employment_id": employment.id,
            "allocations": [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}],
        })
        res = client.post(f"/api/v1/employments/{employment.id}/probation/pass", json={"recalculate": "false"})
        assert res.get_json()["data"]["recalculated"] is False

    def test_statistics(self, client, employment):
        client.post(f"/api/v1/employments/{employment.id}/probation/fail", json={"reason": "Attendance"})
        stats = client.get("/api/v1/probation/statistics").get_json()["data"]
        assert stats["total_failed"] == 1
        assert stats["total_ongoing"] == 0


class TestGrantEndpoints:
    def test_create_with_items_and_capacity(self, client):
        res = client.post("/api/v1/grants", json={
            "code": "GR-900",
            "name": "Malaria Study",
            "grant_items": [{"grant_position": "Nurse", "grant_position_number": 3, "grant_salary": 15000}],
        })
        assert res.status_code == 201
        grant = res.get_json()["data"]
        item_id = grant["grant_items"][0]["id"]

        res = client.get(f"/api/v1/grant-items/{item_id}/capacity")
        assert res.get_json()["data"]["available_slots"] == 3

        res = client.post(f"/api/v1/grants/{grant['id']}/items", json={"grant_position_number": 0})
        assert res.status_code == 422

        slots = client.get(f"/api/v1/grants/{grant['id']}/slots").get_json()["data"]
        assert slots[0]["utilization_percentage"] == 0

    def test_duplicate_code(self, client, grant):
        res = client.post("/api/v1/grants", json={"code": grant.code, "name": "Dup"})
        assert res.status_code == 422
        assert Grant.query.count() == 1

    def test_update_position_slots(self, client, employment, single_slot_item):
        client.post("/api/v1/employee-funding-allocations", json={
            "employment_id": employment.id,
            "allocations": [{"allocation_type": "grant", "grant_item_id": single_slot_item.id, "fte": 100}],
        })
        res = client.put(f"/api/v1/grant-items/{single_slot_item.id}", json={"grant_position_number": 3})
        assert res.status_code == 200
        res = client.get(f"/api/v1/grant-items/{single_slot_item.id}/capacity").get_json()["data"]
        assert res["available_slots"] == 2

    def test_capacity_404(self, client):
        assert client.get("/api/v1/grant-items/999/capacity").status_code == 404


class TestHealth:
    def test_ready_and_live(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_response_headers(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Request-ID" in res.headers
