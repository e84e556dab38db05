import httpx

from portal.models import AuditLog, Specialist, SpecialistAppointmentType
from tests.conftest import auth


def times_by_type(request):
    params = request.url.params
    if params["appointmentTypeID"] == "5002":
        return httpx.Response(500, json={"message": "boom", "error": "server_error"})
    return httpx.Response(200, json=[{"time": f"{params['date']}T09:00:00+1100"}, {"time": f"{params['date']}T08:00:00+1100"}])


def test_list_hides_inactive_and_private_fields(client, seed):
    r = client.get("/api/specialists", headers=auth("referrer-token"))
    assert r.status_code == 200
    [specialist] = r.json()["data"]
    assert specialist["slug"] == "dr-jane-smith"
    assert "acuityCalendarId" not in specialist
    assert "email" not in specialist["user"]

    r = client.get("/api/specialists?includeInactive=true", headers=auth("admin-token"))
    data = r.json()["data"]
    assert [s["slug"] for s in data] == ["dr-jane-smith", "dr-tom-lee"]
    assert data[0]["acuityCalendarId"] == 101
    assert data[0]["user"]["email"] == "jane@clinic.test"


def test_list_filters(client, seed):
    headers = auth("admin-token")
    assert len(client.get("/api/specialists?appointmentType=both", headers=headers).json()["data"]) == 1
    r = client.get("/api/specialists?includeInactive=true&appointmentType=in_person", headers=headers)
    assert [s["slug"] for s in r.json()["data"]] == ["dr-jane-smith"]
    r = client.get("/api/specialists?includeInactive=true&city=melb", headers=headers)
    assert [s["slug"] for s in r.json()["data"]] == ["dr-tom-lee"]
    r = client.get("/api/specialists?state=vic", headers=headers)
    assert r.json()["data"] == []
    assert client.get("/api/specialists?appointmentType=video", headers=headers).status_code == 400


def test_get_specialist(client, seed):
    r = client.get(f"/api/specialists/{seed.specialist_id}", headers=auth("specialist-token"))
    assert r.status_code == 200
    assert r.json()["data"]["acuityCalendarId"] == 101

    r = client.get(f"/api/specialists/{seed.specialist_id}", headers=auth("referrer-token"))
    assert "userId" not in r.json()["data"]

    assert client.get("/api/specialists/abc", headers=auth("admin-token")).status_code == 400
    missing = client.get("/api/specialists/00000000-0000-0000-0000-000000000000", headers=auth("admin-token"))
    assert missing.status_code == 404


def test_admin_routes_reject_non_admins(client, seed):
    headers = auth("referrer-token")
    assert client.post("/api/specialists/check-slug", json={"slug": "x"}, headers=headers).status_code == 403
    assert client.put(f"/api/specialists/{seed.specialist_id}", json={}, headers=headers).status_code == 403
    assert client.delete(f"/api/specialists/{seed.specialist_id}/deactivate", headers=headers).status_code == 403


def test_check_slug(client, seed):
    headers = auth("admin-token")
    assert client.post("/api/specialists/check-slug", json={"slug": "dr-jane-smith"}, headers=headers).json() == {
        "available": False
    }
    assert client.post("/api/specialists/check-slug", json={"slug": "dr-new"}, headers=headers).json() == {
        "available": True
    }


def test_sync_specialist_from_calendar(client, seed, acuity, db):
    acuity.add("GET", "/calendars", json=[{"id": 303, "name": "Dr Jane Smith"}])
    r = client.post(
        "/api/specialists/sync",
        json={"userId": seed.owner_id, "acuityCalendarId": 303},
        headers=auth("admin-token"),
    )
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["acuityCalendarId"] == 303
    assert data["slug"] == "dr-jane-smith-2"
    assert db.query(AuditLog).filter_by(action="specialist.synced").count() == 1


def test_sync_specialist_rejections(client, seed, acuity):
    headers = auth("admin-token")
    acuity.add("GET", "/calendars", json=[{"id": 303, "name": "Dr New"}])

    r = client.post("/api/specialists/sync", json={"userId": seed.specialist_user_id, "acuityCalendarId": 303}, headers=headers)
    assert r.json()["message"] == "User is already registered as a specialist"
    r = client.post("/api/specialists/sync", json={"userId": seed.owner_id, "acuityCalendarId": 101}, headers=headers)
    assert r.status_code == 400
    r = client.post("/api/specialists/sync", json={"userId": seed.owner_id, "acuityCalendarId": 999}, headers=headers)
    assert r.json()["message"] == "Invalid Acuity calendar ID - calendar not found"

    acuity.add("GET", "/calendars", status=401, json={})
    r = client.post("/api/specialists/sync", json={"userId": seed.owner_id, "acuityCalendarId": 303}, headers=headers)
    assert r.status_code == 502


def test_update_positions(client, seed, db):
    headers = auth("admin-token")
    r = client.put(
        "/api/specialists/positions",
        json=[{"id": seed.specialist_id, "position": 5}, {"id": seed.inactive_specialist_id, "position": 2}],
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["updated"] == 2
    db.expire_all()
    assert db.get(Specialist, seed.specialist_id).position == 5

    duplicate = [{"id": seed.specialist_id, "position": 1}, {"id": seed.inactive_specialist_id, "position": 1}]
    assert client.put("/api/specialists/positions", json=duplicate, headers=headers).status_code == 400
    same_id = [{"id": seed.specialist_id, "position": 1}, {"id": seed.specialist_id, "position": 2}]
    assert client.put("/api/specialists/positions", json=same_id, headers=headers).status_code == 400
    negative = [{"id": seed.specialist_id, "position": -1}]
    assert client.put("/api/specialists/positions", json=negative, headers=headers).status_code == 422


def test_update_specialist(client, seed):
    headers = auth("admin-token")
    r = client.put(
        f"/api/specialists/{seed.specialist_id}",
        json={
            "specialty": "neurology",
            "acceptsInPerson": False,
            "location": {"city": "Newcastle", "state": "NSW"},
        },
        headers=headers,
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["specialty"] == "neurology"
    assert data["acceptsInPerson"] is False
    assert data["location"]["city"] == "Newcastle"
    assert data["name"] == "Dr Jane Smith"

    url = f"/api/specialists/{seed.specialist_id}"
    assert client.put(url, json={"specialty": "astrology"}, headers=headers).status_code == 400
    assert client.put(url, json={"slug": "dr-tom-lee"}, headers=headers).status_code == 409
    assert client.put(url, json={"slug": "dr-jane-smith"}, headers=headers).status_code == 200


def test_update_specialist_rejects_null_for_required_fields(client, seed, db):
    url = f"/api/specialists/{seed.specialist_id}"
    headers = auth("admin-token")
    for field in ("specialty", "acceptsInPerson", "acceptsTelehealth", "isActive", "name"):
        r = client.put(url, json={field: None}, headers=headers)
        assert r.status_code == 400, field
        assert r.json()["details"] == {"fields": [field]}

    r = client.put(url, json={"image": None, "location": None}, headers=headers)
    assert r.status_code == 200
    db.expire_all()
    specialist = db.get(Specialist, seed.specialist_id)
    assert specialist.specialty is not None
    assert specialist.location is None


def test_deactivate_and_activate(client, seed):
    headers = auth("admin-token")
    r = client.delete(f"/api/specialists/{seed.specialist_id}/deactivate", headers=headers)
    assert r.json()["data"]["isActive"] is False
    r = client.get(f"/api/specialists/{seed.specialist_id}/appointment-types", headers=headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Specialist is not active"

    r = client.post(f"/api/specialists/{seed.specialist_id}/activate", headers=headers)
    assert r.json()["data"]["isActive"] is True


def test_availability_across_types_and_days(client, seed, acuity, db):
    acuity.add("GET", "/availability/times", handler=times_by_type)
    r = client.get(
        f"/api/specialists/{seed.specialist_id}/availability?startDate=2026-11-02&endDate=2026-11-03",
        headers=auth("referrer-token"),
    )
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["calendarId"] == 101
    slots = data["timeSlots"]
    # type 5002 fails upstream and is skipped
    assert [s["time"] for s in slots] == [
        "2026-11-02T08:00:00+1100",
        "2026-11-02T09:00:00+1100",
        "2026-11-03T08:00:00+1100",
        "2026-11-03T09:00:00+1100",
    ]
    assert {s["appointmentTypeId"] for s in slots} == {5001}
    assert slots[0]["duration"] == 60
    assert db.query(AuditLog).filter_by(action="specialist.availability_viewed").count() == 1


def test_availability_for_one_type_uses_cache(client, seed, acuity):
    acuity.add("GET", "/availability/times", handler=times_by_type)
    url = (
        f"/api/specialists/{seed.specialist_id}/availability"
        "?startDate=2026-11-02&endDate=2026-11-02&appointmentTypeId=5001"
    )
    first = client.get(url, headers=auth("referrer-token")).json()["data"]["timeSlots"]
    second = client.get(url, headers=auth("referrer-token")).json()["data"]["timeSlots"]
    assert first == second
    assert len(acuity.calls("GET", "/availability/times")) == 1


def test_availability_validation(client, seed):
    base = f"/api/specialists/{seed.specialist_id}/availability"
    headers = auth("referrer-token")
    assert client.get(f"{base}?startDate=2026-11-05&endDate=2026-11-01", headers=headers).status_code == 400
    assert client.get(f"{base}?startDate=2026-11-01&endDate=2026-12-15", headers=headers).status_code == 400
    assert client.get(f"{base}?startDate=Nov&endDate=2026-11-01", headers=headers).status_code == 400
    assert client.get(base, headers=headers).status_code == 422
    inactive = f"/api/specialists/{seed.inactive_specialist_id}/availability?startDate=2026-11-01&endDate=2026-11-01"
    assert client.get(inactive, headers=headers).status_code == 400


def test_available_dates_and_time_slots(client, seed, acuity):
    acuity.add("GET", "/availability/dates", json=[{"date": "2026-11-02"}, {"date": "2026-11-09"}])
    acuity.add("GET", "/availability/times", handler=times_by_type)
    headers = auth("referrer-token")

    r = client.get(
        f"/api/specialists/{seed.specialist_id}/available-dates?month=2026-11&appointmentTypeId=5001", headers=headers
    )
    assert r.json()["data"] == {"specialistId": seed.specialist_id, "month": "2026-11", "dates": ["2026-11-02", "2026-11-09"]}
    r = client.get(
        f"/api/specialists/{seed.specialist_id}/available-dates?month=11-2026&appointmentTypeId=5001", headers=headers
    )
    assert r.status_code == 400

    r = client.get(
        f"/api/specialists/{seed.specialist_id}/time-slots?date=2026-11-02&appointmentTypeId=5001", headers=headers
    )
    assert [s["datetime"] for s in r.json()["data"]["timeSlots"]] == [
        "2026-11-02T09:00:00+1100",
        "2026-11-02T08:00:00+1100",
    ]
    r = client.get(
        f"/api/specialists/{seed.specialist_id}/time-slots?date=2026-11-02&appointmentTypeId=5002", headers=headers
    )
    assert r.status_code == 502


def test_appointment_types(client, seed, db):
    r = client.get(f"/api/specialists/{seed.specialist_id}/appointment-types", headers=auth("referrer-token"))
    types = r.json()["data"]
    assert [t["id"] for t in types] == [f"{seed.specialist_id}_5001", f"{seed.specialist_id}_5002"]
    assert types[1]["name"] == "Video IME"
    assert types[1]["source"] == {"name": "override", "description": "acuity"}
    assert types[0]["duration"] == 60

    mapping = db.query(SpecialistAppointmentType).filter_by(appointment_type_id=5002).one()
    mapping.enabled = False
    db.commit()
    r = client.get(f"/api/specialists/{seed.specialist_id}/appointment-types", headers=auth("referrer-token"))
    assert [t["acuityAppointmentTypeId"] for t in r.json()["data"]] == [5001]


def test_appointment_type_form(client, seed):
    headers = auth("referrer-token")
    r = client.get(f"/api/specialists/{seed.specialist_id}/appointment-types/5001/form", headers=headers)
    form = r.json()["data"]
    assert form["acuityFormId"] == 9001
    assert form["acuityForm"]["name"] == "Examinee details"
    # ordered by display order, which runs opposite to the field ids here
    assert [f["acuityFieldId"] for f in form["fields"]] == [17, 16, 15, 14, 13, 12, 11]
    assert form["fields"][-1]["acuityField"]["name"] == "First name"

    r = client.get(f"/api/specialists/{seed.specialist_id}/appointment-types/5002/form", headers=headers)
    assert r.json()["data"] is None

    base = f"/api/specialists/{seed.specialist_id}/appointment-types"
    assert client.get(f"{base}/5003/form", headers=headers).status_code == 404
    assert client.get(f"{base}/abc/form", headers=headers).status_code == 400


def test_update_appointment_type(client, seed):
    url = f"/api/specialists/{seed.specialist_id}/appointment-types/5001"
    r = client.put(
        url,
        json={"customDisplayName": "In-person IME", "customPrice": 1650.0, "appointmentMode": "in-person"},
        headers=auth("admin-token"),
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["name"] == "In-person IME"
    assert data["customPrice"] == 1650.0

    assert client.put(url, json={"appointmentMode": "phone"}, headers=auth("admin-token")).status_code == 422
    missing = f"/api/specialists/{seed.specialist_id}/appointment-types/5003"
    assert client.put(missing, json={"enabled": True}, headers=auth("admin-token")).status_code == 404


def test_update_appointment_type_rejects_null_for_required_fields(client, seed, db):
    url = f"/api/specialists/{seed.specialist_id}/appointment-types/5001"
    headers = auth("admin-token")
    r = client.put(url, json={"enabled": None, "appointmentMode": None}, headers=headers)
    assert r.status_code == 400
    assert r.json()["details"] == {"fields": ["enabled", "appointmentMode"]}

    assert client.put(url, json={"notes": None, "customPrice": None}, headers=headers).status_code == 200
    mapping = db.query(SpecialistAppointmentType).filter_by(specialist_id=seed.specialist_id, appointment_type_id=5001).one()
    assert mapping.enabled is True
    assert mapping.appointment_mode == "in-person"
