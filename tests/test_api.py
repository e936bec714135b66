from datetime import datetime

import pytest

from clinicdesk.core.config import settings


@pytest.fixture
def receptionist(make_user):
    return make_user("receptionist")


def _issue(client, doctor, patient, priority=0):
    return client.post("/api/queue/token",
                       json={
                           "doctor_id": doctor.id,
                           "patient_id": patient.id,
                           "priority": priority,
                       })


def test_health(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["version"] == "v1"


def test_requires_login(client, doctor):
    r = client.get(f"/api/queue/doctor/{doctor.id}")
    assert r.status_code == 401
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "UNAUTHORIZED"


# ---------------------------------------------------------------------------
# queue
# ---------------------------------------------------------------------------
def test_issue_token_endpoint(client, auth, doctor, receptionist,
                              make_patient):
    auth.user = receptionist
    r = _issue(client, doctor, make_patient())
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["data"]["token_number"] == 1
    assert body["data"]["status"] == "waiting"
    assert body["message"] == "Token #1 issued"


def test_issue_token_role_and_validation(client, auth, doctor, make_user,
                                        make_patient):
    auth.user = make_user("pharmacist")
    r = _issue(client, doctor, make_patient())
    assert r.status_code == 403
    assert r.json()["code"] == "ROLE_NOT_PERMITTED"

    auth.user = make_user("admin")
    r = client.post("/api/queue/token", json={"patient_id": "x"})
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_priority_flow_over_http(client, auth, clock, doctor, receptionist,
                                 make_patient):
    auth.user = receptionist
    clock.current = datetime(2026, 10, 19, 9, 0)
    t1 = _issue(client, doctor, make_patient()).json()["data"]
    clock.current = datetime(2026, 10, 19, 9, 5)
    t2 = _issue(client, doctor, make_patient(), priority=4).json()["data"]

    auth.user = doctor
    r = client.post(f"/api/queue/call-next/{doctor.id}")
    assert r.json()["data"]["id"] == t2["id"]
    assert r.json()["data"]["is_urgent"] is True

    r = client.put(f"/api/queue/token/{t2['id']}/start-consultation")
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "serving"

    r = client.put(f"/api/queue/token/{t1['id']}/start-consultation")
    assert r.status_code == 409
    assert r.json()["success"] is False

    r = client.get(f"/api/queue/doctor/{doctor.id}")
    data = r.json()["data"]
    assert [t["id"] for t in data["tokens"]] == [t2["id"], t1["id"]]
    assert data["status"]["status"] == "consulting"
    assert data["statistics"]["serving"] == 1

    r = client.put(f"/api/queue/token/{t2['id']}/complete-consultation",
                   json={"outcome": "completed"})
    assert r.json()["data"]["status"] == "completed"
    r = client.put(f"/api/queue/token/{t2['id']}/complete-consultation")
    assert r.status_code == 409
    assert r.json()["code"] == "ALREADY_TERMINAL"


def test_call_next_with_empty_queue(client, auth, doctor):
    auth.user = doctor
    r = client.post(f"/api/queue/call-next/{doctor.id}")
    assert r.status_code == 200
    assert r.json()["data"] is None
    assert r.json()["message"] == "No patients waiting"


def test_nurse_endpoints(client, auth, doctor, receptionist, make_user,
                         make_patient):
    auth.user = receptionist
    tok = _issue(client, doctor, make_patient()).json()["data"]

    auth.user = make_user("nurse")
    r = client.put(f"/api/queue/token/{tok['id']}/mark-ready",
                   json={
                       "vitals": {"bp": "118/76"},
                       "notes": "fasting"
                   })
    assert r.json()["data"]["nurse_status"] == "ready"
    assert r.json()["data"]["vitals"] == {"bp": "118/76"}

    r = client.put(f"/api/queue/token/{tok['id']}/delay",
                   json={"reason": "Went for X-ray"})
    assert r.json()["data"]["nurse_status"] == "delayed"

    r = client.put(f"/api/queue/token/{tok['id']}/undelay")
    assert r.json()["data"]["token_number"] == 2


def test_unknown_token_is_404(client, auth, doctor):
    auth.user = doctor
    r = client.put("/api/queue/token/missing/start-consultation")
    assert r.status_code == 404
    assert r.json()["code"] == "TOKEN_NOT_FOUND"


def test_display_board_is_public(client, auth, doctor, receptionist,
                                 make_patient):
    auth.user = receptionist
    _issue(client, doctor, make_patient(first_name="Lata", last_name="Nair"))
    auth.user = None

    r = client.get(f"/api/queue/doctor/{doctor.id}/display-board")
    assert r.status_code == 200
    waiting = r.json()["data"]["waiting_queue"]
    assert waiting == [{
        "token_number": 1,
        "patient_name": "Lata N.",
        "is_urgent": False
    }]


def test_capacity_and_patient_info(client, auth, doctor, receptionist,
                                   make_patient):
    auth.user = receptionist
    p = make_patient()
    _issue(client, doctor, p)

    r = client.get(f"/api/queue/doctor/{doctor.id}/capacity")
    assert r.json()["data"]["can_accept"] is True
    assert r.json()["data"]["current_queue"] == 1

    r = client.get(f"/api/queue/patient/{p.id}/info")
    assert r.json()["data"]["queue_position"] == 1
    assert r.json()["data"]["message"] == "You are next in line"


def test_success_body_without_message(client, auth, doctor):
    auth.user = doctor
    r = client.get(f"/api/queue/doctor/{doctor.id}/active-consultation")
    assert r.status_code == 200
    assert r.json() == {"success": True, "data": None}


def test_call_next_and_start_over_http(client, auth, doctor, receptionist,
                                       make_patient):
    auth.user = receptionist
    _issue(client, doctor, make_patient(first_name="Ravi", last_name="Kumar"))

    auth.user = doctor
    r = client.post(f"/api/queue/call-next-and-start/{doctor.id}")
    assert r.status_code == 200
    body = r.json()
    assert body["data"]["status"] == "serving"
    assert body["message"] == "Consultation started with Ravi Kumar (Token #1)"

    r = client.post(f"/api/queue/call-next-and-start/{doctor.id}")
    assert r.status_code == 409
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "DOCTOR_BUSY"
    assert body["details"]["token_number"] == 1


def test_bulk_issue_and_status_over_http(client, auth, doctor, receptionist,
                                         make_patient):
    auth.user = receptionist
    p1, p2 = make_patient(), make_patient()
    r = client.post("/api/queue/bulk/issue-tokens",
                    json={
                        "tokens": [
                            {"doctor_id": doctor.id, "patient_id": p1.id},
                            {"doctor_id": doctor.id, "patient_id": p2.id},
                            {"doctor_id": doctor.id, "patient_id": p1.id},
                        ]
                    })
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["summary"] == {"total": 3, "successful": 2, "failed": 1}
    assert data["failed"][0]["index"] == 2
    assert data["failed"][0]["code"] == "ACTIVE_VISIT_EXISTS"
    first, second = data["successful"]

    r = client.post("/api/queue/bulk/issue-tokens", json={"tokens": []})
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"

    r = client.put("/api/queue/bulk/update-status",
                   json={"updates": [{"token_id": first["id"],
                                      "status": "cancelled"}]})
    assert r.status_code == 403

    auth.user = doctor
    r = client.put("/api/queue/bulk/update-status",
                   json={
                       "updates": [
                           {"token_id": first["id"], "status": "cancelled"},
                           {"token_id": second["id"], "status": "bogus"},
                       ]
                   })
    data = r.json()["data"]
    assert [t["status"] for t in data["successful"]] == ["cancelled"]
    assert data["failed"][0]["code"] == "INVALID_STATUS"
    assert data["failed"][0]["token_id"] == second["id"]


def test_admin_closes_tokens_left_open_overnight(client, auth, clock, doctor,
                                                 receptionist, make_user,
                                                 make_patient):
    auth.user = receptionist
    p = make_patient()
    tok = _issue(client, doctor, p).json()["data"]

    clock.advance(minutes=24 * 60)

    auth.user = doctor
    r = client.post("/api/admin/cleanup/stuck-consultations")
    assert r.status_code == 403

    auth.user = make_user("admin")
    r = client.post("/api/admin/cleanup/stuck-consultations")
    assert r.status_code == 200
    body = r.json()
    assert body["data"]["fixed"] == 1
    assert body["data"]["tokens"][0]["token_id"] == tok["id"]
    assert body["data"]["tokens"][0]["status"] == "missed"

    r = client.post("/api/admin/cleanup/stuck-consultations")
    assert r.json()["data"]["fixed"] == 0
    assert r.json()["message"] == "No stale tokens found"

    # the patient can queue again today
    auth.user = receptionist
    assert _issue(client, doctor, p).status_code == 201


# ---------------------------------------------------------------------------
# clinical records
# ---------------------------------------------------------------------------
def test_diagnosis_needs_active_visit(client, auth, doctor, make_patient,
                                      make_visit):
    auth.user = doctor
    p = make_patient()

    payload = {"patient_id": p.id, "diagnosis_name": "Hypertension"}
    r = client.post("/api/patient-diagnoses/", json=payload)
    assert r.status_code == 403
    assert r.json()["code"] == "NO_ACTIVE_VISIT"

    v = make_visit(p, doctor)
    r = client.post("/api/patient-diagnoses/", json=payload)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["visit_id"] == v.id
    assert data["diagnosed_by"] == doctor.id

    listing = client.get(f"/api/patient-diagnoses/patient/{p.id}").json()
    assert listing["data"]["has_active_visit"] is True
    assert [d["id"] for d in listing["data"]["records"]] == [data["id"]]


def test_diagnosis_update_blocked_after_visit_ends(client, auth, db, doctor,
                                                   make_patient, make_visit):
    auth.user = doctor
    p = make_patient()
    v = make_visit(p, doctor)
    created = client.post("/api/patient-diagnoses/",
                          json={
                              "patient_id": p.id,
                              "diagnosis_name": "Gastritis"
                          }).json()["data"]

    r = client.put(f"/api/patient-diagnoses/{created['id']}",
                   json={"notes": "improving"})
    assert r.status_code == 200
    assert r.json()["data"]["notes"] == "improving"

    v.status = "completed"
    db.commit()
    r = client.put(f"/api/patient-diagnoses/{created['id']}",
                   json={"notes": "later"})
    assert r.status_code == 403
    assert r.json()["code"] == "NO_ACTIVE_VISIT"

    r = client.patch(f"/api/patient-diagnoses/{created['id']}/status",
                     json={"status": "resolved"})
    assert r.json()["data"]["resolved_date"] == "2026-10-19"


def test_diagnosis_soft_delete_over_http(client, auth, doctor, make_patient,
                                         make_visit):
    auth.user = doctor
    p = make_patient()
    make_visit(p, doctor)
    created = client.post("/api/patient-diagnoses/",
                          json={
                              "patient_id": p.id,
                              "diagnosis_name": "Migraine"
                          }).json()["data"]

    assert client.delete(
        f"/api/patient-diagnoses/{created['id']}").status_code == 200

    listing = client.get(f"/api/patient-diagnoses/patient/{p.id}").json()
    assert listing["data"]["records"] == []
    one = client.get(f"/api/patient-diagnoses/{created['id']}").json()
    assert one["data"]["deleted_at"] is not None

    r = client.delete(f"/api/patient-diagnoses/{created['id']}")
    assert r.status_code == 404


def test_receptionist_cannot_write_diagnosis(client, auth, receptionist,
                                             make_patient):
    auth.user = receptionist
    r = client.post("/api/patient-diagnoses/",
                    json={
                        "patient_id": make_patient().id,
                        "diagnosis_name": "Flu"
                    })
    assert r.status_code == 403
    assert r.json()["code"] == "ROLE_NOT_PERMITTED"


def test_allergy_flow(client, auth, doctor, make_user, make_patient,
                      make_visit):
    auth.user = make_user("nurse")
    p = make_patient()

    payload = {"patient_id": p.id, "allergy_name": "Sulfa", "severity": "mild"}
    assert client.post("/api/patient-allergies/",
                       json=payload).status_code == 403

    v = make_visit(p, doctor)
    r = client.post("/api/patient-allergies/", json=payload)
    assert r.status_code == 201
    assert r.json()["data"]["visit_id"] == v.id

    r = client.post("/api/patient-allergies/",
                    json={**payload, "severity": "extreme"})
    assert r.status_code == 400

    active = client.get("/api/patient-allergies/active/all").json()["data"]
    assert active[0]["patient"]["id"] == p.id


# ---------------------------------------------------------------------------
# dispenses
# ---------------------------------------------------------------------------
@pytest.fixture
def dispensed(make_invoice, make_patient, make_user):
    pharmacist = make_user("pharmacist")
    p = make_patient(first_name="Kiran", last_name="S")
    make_invoice(p, [
        {"name": "Metformin 500mg", "quantity": 30},
        {"name": "Insulin (write-out)", "quantity": 1},
    ], completed_at=datetime(2026, 10, 19, 9, 0), completed_by=pharmacist)
    return pharmacist


def test_dispense_list_endpoint(client, auth, dispensed):
    auth.user = dispensed
    r = client.get("/api/dispenses/", params={"pageSize": 10})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["total"] == 1
    assert data["pageSize"] == 10
    row = data["items"][0]
    assert row["medicineName"] == "Metformin 500mg"
    assert row["patientName"] == "Kiran S"
    assert row["dispensedBy"]["role"] == "pharmacist"
    assert data["summary"]["totalUnits"] == 30


def test_dispense_list_rejects_bad_filters(client, auth, dispensed):
    auth.user = dispensed
    r = client.get("/api/dispenses/", params={"pageSize": 500})
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_dispense_nurse_forbidden(client, auth, make_user):
    auth.user = make_user("nurse")
    assert client.get("/api/dispenses/").status_code == 403


def test_dispense_csv_export(client, auth, dispensed):
    auth.user = dispensed
    r = client.get("/api/dispenses/export")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert r.headers["content-disposition"] == (
        'attachment; filename="dispenses_2026-10-19.csv"')
    text = r.content.decode("utf-8")
    assert text.startswith("\ufeff")
    assert len(text.strip().splitlines()) == 2


def test_dispense_xlsx_export(client, auth, dispensed):
    auth.user = dispensed
    r = client.get("/api/dispenses/export", params={"format": "xlsx"})
    assert r.status_code == 200
    assert "spreadsheetml" in r.headers["content-type"]
    assert r.content[:2] == b"PK"


def test_production_hides_store_errors(client, auth, dispensed, monkeypatch):
    from sqlalchemy.exc import OperationalError

    from clinicdesk.services import dispense_service

    def boom(self, f):
        raise OperationalError("SELECT 1", {}, Exception("db host down"))

    monkeypatch.setattr(dispense_service.DispenseService, "_collect", boom)
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    auth.user = dispensed

    r = client.get("/api/dispenses/")
    assert r.status_code == 500
    assert r.json() == {
        "success": False,
        "message": "Something went wrong",
        "code": "UPSTREAM_ERROR",
    }
