"""Admin endpoints: login, dashboard, floors and slots, charges, overrides and audit."""

import pytest

from smart_parking.db import ParkingSlot
from smart_parking.security import generate_jwt


def park(client, plate, vehicle_type, **extra):
    resp = client.post("/parking/park", params={"licensePlate": plate, "vehicleType": vehicle_type, **extra})
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestAuth:
    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/admin/verify"),
            ("get", "/admin/dashboard/stats"),
            ("get", "/admin/charges"),
            ("get", "/admin/audit-logs"),
            ("post", "/admin/override/force-exit?slotNumber=6"),
        ],
    )
    def test_requires_token(self, client, method, path):
        assert getattr(client, method)(path).status_code == 401

    def test_rejects_garbage_token(self, client):
        resp = client.get("/admin/verify", headers={"Authorization": "Bearer not-a-jwt"})

        assert resp.status_code == 401

    def test_rejects_expired_token(self, client):
        token = generate_jwt({"sub": "admin"}, expires_in_seconds=-10)

        resp = client.get("/admin/verify", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 401

    def test_wrong_password(self, client):
        resp = client.post("/admin/login", data={"username": "admin", "password": "wrong"})

        assert resp.status_code == 401

    def test_login_returns_admin(self, client):
        resp = client.post("/admin/login", data={"username": "operator", "password": "operator123"})

        body = resp.json()
        assert body["token"]
        assert body["admin"] == {
            "username": "operator",
            "role": "OPERATOR",
            "fullName": "Parking Operator",
            "email": "operator@smartparking.com",
        }

    def test_verify(self, client, admin_headers):
        resp = client.get("/admin/verify", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["valid"] is True
        assert resp.json()["admin"]["username"] == "admin"


class TestDashboard:
    def test_stats(self, client, admin_headers):
        park(client, "A-1", "CAR")
        park(client, "B-1", "BIKE")
        client.post("/parking/exit-by-slot", params={"slotNumber": 1})

        stats = client.get("/admin/dashboard/stats", headers=admin_headers).json()

        assert stats["totalSlots"] == 20
        assert stats["occupiedSlots"] == 1
        assert stats["availableSlots"] == 19
        assert stats["currentlyParkedVehicles"] == 1
        assert stats["vehiclesParkedToday"] == 2
        assert stats["todayRevenue"] == 50.0


class TestFloorsAndSlots:
    def test_floor_lifecycle(self, client, admin_headers):
        resp = client.post("/admin/floors", json={"floorNumber": 2, "description": "Roof"}, headers=admin_headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["floorNumber"] == 2

        added = client.post(
            "/admin/slots/add",
            params={"floorNumber": 2, "vehicleType": "TRUCK", "startSlotNumber": 1, "numberOfSlots": 2},
            headers=admin_headers,
        ).json()
        assert added["success"] is True
        assert [s["slotNumber"] for s in added["slots"]] == [1, 2]

        floors = client.get("/admin/floors", headers=admin_headers).json()
        assert [f["floorNumber"] for f in floors] == [1, 2]

        slots = client.get("/admin/floors/2/slots", headers=admin_headers).json()
        assert [(s["slotNumber"], s["vehicleType"]) for s in slots] == [(1, "TRUCK"), (2, "TRUCK")]

        assert client.get("/parking/slots", params={"floorNumber": 2}).json()[0]["slotType"] == "TRUCK"

    def test_duplicate_floor(self, client, admin_headers):
        resp = client.post("/admin/floors", json={"floorNumber": 1}, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Floor 1 already exists"

    def test_invalid_floor_number(self, client, admin_headers):
        assert client.post("/admin/floors", json={"floorNumber": 0}, headers=admin_headers).status_code == 422

    def test_missing_floor(self, client, admin_headers):
        assert client.get("/admin/floors/9", headers=admin_headers).status_code == 404

    def test_delete_slot(self, client, admin_headers, db):
        slot_id = db.query(ParkingSlot).filter_by(slot_number=20).one().id

        resp = client.delete(f"/admin/slots/{slot_id}", headers=admin_headers)

        assert resp.status_code == 200
        assert len(client.get("/parking/slots").json()) == 19

    def test_delete_occupied_slot(self, client, admin_headers, db):
        park(client, "T-1", "TRUCK")
        slot_id = db.query(ParkingSlot).filter_by(slot_number=19).one().id

        resp = client.delete(f"/admin/slots/{slot_id}", headers=admin_headers)

        assert resp.status_code == 400

    def test_slot_detail_and_history(self, client, admin_headers):
        park(client, "A-1", "CAR")

        detail = client.get("/admin/slots/6", headers=admin_headers).json()
        assert detail["occupied"] is True
        assert detail["licensePlate"] == "A-1"
        assert detail["currentCharge"] == 100.0
        assert detail["overdue"] is False

        client.post("/parking/exit-by-slot", params={"slotNumber": 6})
        history = client.get("/admin/slots/6/history", headers=admin_headers).json()
        assert [r["licensePlate"] for r in history] == ["A-1"]
        assert client.get("/admin/slots/6", headers=admin_headers).json()["occupied"] is False

    def test_entry_and_exit_slips(self, client, admin_headers):
        record_id = park(client, "A-1", "CAR")["recordId"]

        entry = client.get("/admin/slots/6/entry-slip", headers=admin_headers)
        assert entry.status_code == 200
        assert entry.json()["id"] == record_id
        assert client.get(f"/admin/records/{record_id}/exit-slip", headers=admin_headers).status_code == 400

        client.post("/parking/exit-by-slot", params={"slotNumber": 6})

        assert client.get("/admin/slots/6/entry-slip", headers=admin_headers).status_code == 400
        exit_slip = client.get(f"/admin/records/{record_id}/exit-slip", headers=admin_headers).json()
        assert exit_slip["recordId"] == record_id
        assert exit_slip["totalCharge"] == 100.0

    def test_mark_available(self, client, admin_headers):
        park(client, "A-1", "CAR")

        refused = client.post("/admin/slots/6/mark-available", headers=admin_headers)
        assert refused.status_code == 400
        assert "Force Exit" in refused.json()["detail"]

        ok = client.post("/admin/slots/7/mark-available", headers=admin_headers)
        assert ok.json() == {"success": True, "message": "Slot marked as available"}


class TestHistory:
    def test_filters(self, client, admin_headers):
        park(client, "A-1", "CAR")
        park(client, "B-1", "BIKE")
        client.post("/parking/exit", params={"licensePlate": "A-1"})
        client.post("/parking/exit", params={"licensePlate": "B-1"})

        everything = client.get("/admin/history", headers=admin_headers).json()
        bikes = client.get("/admin/history", params={"vehicleType": "bike"}, headers=admin_headers).json()
        slot6 = client.get("/admin/history", params={"slotNumber": 6}, headers=admin_headers).json()

        assert [r["licensePlate"] for r in everything] == ["B-1", "A-1"]
        assert [r["licensePlate"] for r in bikes] == ["B-1"]
        assert [r["licensePlate"] for r in slot6] == ["A-1"]


class TestCharges:
    def test_list_and_get(self, client, admin_headers):
        charges = client.get("/admin/charges", headers=admin_headers).json()

        assert {c["vehicleType"]: c["hourlyRate"] for c in charges} == {
            "BIKE": 50.0,
            "CAR": 100.0,
            "MICROBUS": 150.0,
            "TRUCK": 200.0,
        }
        assert client.get("/admin/charges/truck", headers=admin_headers).json()["hourlyRate"] == 200.0
        assert client.get("/admin/charges/OTHER", headers=admin_headers).status_code == 404

    def test_update_rate_applies_to_next_exit(self, client, admin_headers):
        resp = client.put("/admin/charges/CAR", params={"hourlyRate": 80}, headers=admin_headers)
        assert resp.json()["hourlyRate"] == 80.0

        park(client, "A-1", "CAR")
        slip = client.post("/parking/exit-by-slot", params={"slotNumber": 6}).json()

        assert slip["totalCharge"] == 80.0

    def test_negative_rate(self, client, admin_headers):
        resp = client.put("/admin/charges/CAR", params={"hourlyRate": -1}, headers=admin_headers)

        assert resp.status_code == 400


class TestOverrides:
    def test_force_exit(self, client, admin_headers):
        park(client, "A-1", "CAR")

        resp = client.post("/admin/override/force-exit", params={"slotNumber": 6}, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["licensePlate"] == "A-1"
        assert client.get("/parking/slots").json()[5]["occupied"] is False

    def test_force_exit_empty_slot(self, client, admin_headers):
        resp = client.post("/admin/override/force-exit", params={"slotNumber": 6}, headers=admin_headers)

        assert resp.status_code == 400

    def test_update_license(self, client, admin_headers):
        park(client, "A-1", "CAR")

        resp = client.post(
            "/admin/override/update-license",
            params={"slotNumber": 6, "newLicensePlate": "A-9"},
            headers=admin_headers,
        )

        assert resp.json()["licensePlate"] == "A-9"
        assert client.get("/parking/slots").json()[5]["licensePlate"] == "A-9"

    def test_change_slot(self, client, admin_headers):
        park(client, "A-1", "CAR")

        resp = client.post(
            "/admin/override/change-slot",
            params={"slotNumber": 6, "newSlotNumber": 12},
            headers=admin_headers,
        )

        assert resp.json()["slotNumber"] == 12
        slots = client.get("/parking/slots").json()
        assert slots[5]["occupied"] is False
        assert slots[11]["licensePlate"] == "A-1"

    def test_change_to_same_slot(self, client, admin_headers):
        park(client, "A-1", "CAR")

        resp = client.post(
            "/admin/override/change-slot",
            params={"slotNumber": 6, "newSlotNumber": 6},
            headers=admin_headers,
        )

        assert resp.status_code == 400


class TestAuditLogs:
    def test_actions_are_recorded(self, client, admin_headers):
        park(client, "A-1", "CAR")
        client.post("/admin/override/force-exit", params={"slotNumber": 6}, headers=admin_headers)
        client.put("/admin/charges/BIKE", params={"hourlyRate": 60}, headers=admin_headers)

        logs = client.get("/admin/audit-logs", params={"adminUsername": "admin"}, headers=admin_headers).json()

        assert [log["action"] for log in logs] == ["UPDATE_CHARGE", "FORCE_EXIT", "LOGIN"]
        assert logs[0]["adminUsername"] == "admin"
