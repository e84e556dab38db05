import json

from portal.domain.bookings import service as booking_service
from portal.models import AuditLog, Booking, BookingProgress, Referrer
from tests.conftest import INTAKE_FIELDS, auth


def booking_payload(seed, **overrides):
    payload = {
        "appointmentTypeId": 5001,
        "datetime": "2026-12-01T09:00:00+1100",
        "firstName": "Rita",
        "lastName": "Referrer",
        "email": "referrer@acme.test",
        "phone": "0400000000",
        "timezone": "Australia/Sydney",
        "organizationSlug": "acme-legal",
        "specialistId": seed.specialist_id,
        "fields": INTAKE_FIELDS,
    }
    payload.update(overrides)
    return payload


def test_requires_authentication(client, seed):
    r = client.get("/api/bookings")
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"

    r = client.get("/api/bookings", headers=auth("no-such-token"))
    assert r.status_code == 401


def test_session_cookie_is_accepted(client, seed):
    client.cookies.set("session_token", "referrer-token")
    r = client.get("/api/bookings")
    assert r.status_code == 200


def test_list_is_scoped_by_role(client, seed):
    for token in ("admin-token", "owner-token", "referrer-token", "specialist-token"):
        r = client.get("/api/bookings", headers=auth(token))
        assert r.status_code == 200, token
        assert [b["id"] for b in r.json()["bookings"]] == [seed.booking_id], token

    r = client.get("/api/bookings", headers=auth("outsider-token"))
    assert r.json()["bookings"] == []
    assert r.json()["pagination"] == {"page": 1, "limit": 20, "total": 0, "totalPages": 0}


def test_list_filters_and_search(client, seed):
    headers = auth("admin-token")
    assert client.get("/api/bookings?status=closed", headers=headers).json()["bookings"] == []
    assert client.get("/api/bookings?startDate=2026-11-21", headers=headers).json()["bookings"] == []
    assert len(client.get("/api/bookings?endDate=2026-11-20", headers=headers).json()["bookings"]) == 1
    assert len(client.get("/api/bookings?search=TAYLOR", headers=headers).json()["bookings"]) == 1
    assert client.get("/api/bookings?search=nobody", headers=headers).json()["bookings"] == []
    assert client.get("/api/bookings?status=pending", headers=headers).status_code == 400
    assert client.get("/api/bookings?startDate=21-11-2026", headers=headers).status_code == 400


def test_get_booking_decrypts_details(client, seed):
    r = client.get(f"/api/bookings/{seed.booking_id}", headers=auth("referrer-token"))
    assert r.status_code == 200
    booking = r.json()["booking"]
    assert booking["examinee"]["condition"] == "Shoulder injury"
    assert booking["referrer"]["email"] == "referrer@acme.test"
    assert booking["currentProgress"] == "scheduled"
    assert booking["dateTime"] == "2026-11-20T10:00:00Z"
    assert [p["toStatus"] for p in booking["progress"]] == ["scheduled"]


def test_get_booking_access_errors(client, seed):
    assert client.get(f"/api/bookings/{seed.booking_id}", headers=auth("outsider-token")).status_code == 403
    assert client.get(f"/api/bookings/{seed.booking_id}", headers=auth("lead-token")).status_code == 403
    assert client.get("/api/bookings/not-a-uuid", headers=auth("admin-token")).status_code == 400
    missing = client.get("/api/bookings/00000000-0000-0000-0000-000000000000", headers=auth("admin-token"))
    assert missing.status_code == 404
    assert missing.json()["message"] == "Booking not found"
    assert missing.json()["details"] is None
    assert missing.json()["code"] == "NOT_FOUND"


def test_create_booking(client, seed, acuity, db, monkeypatch):
    acuity.add("POST", "/appointments", json={"id": 8001, "calendarID": 101, "duration": "60", "location": "Sydney"})
    sent = []

    async def record(**kwargs):
        sent.append(kwargs)

    monkeypatch.setattr(booking_service, "send_booking_confirmation", record)

    r = client.post("/api/bookings", json=booking_payload(seed), headers=auth("referrer-token"))
    assert r.status_code == 201, r.text
    booking_id = r.json()["id"]

    booking = db.get(Booking, booking_id)
    assert booking.acuity_appointment_id == 8001
    assert booking.specialist_id == seed.specialist_id
    assert booking.duration == 60
    assert booking.type == "in-person"
    assert booking.examinee.first_name == "Alex"
    assert booking.examinee.authorized_contact is True
    # the caller's existing referrer record is reused
    assert booking.referrer_id == seed.referrer_id
    assert [p.to_status for p in booking.progress] == ["scheduled"]

    request = json.loads(acuity.calls("POST", "/appointments")[0].content)
    assert request["calendarID"] == 101
    assert sent[0]["to"] == "referrer@acme.test"
    assert sent[0]["booking_id"] == booking_id
    assert db.query(AuditLog).filter_by(action="booking.created", entity_id=booking_id).count() == 1


def test_create_booking_survives_email_failure(client, seed, acuity):
    acuity.add("POST", "/appointments", json={"id": 8002, "calendarID": 101})
    r = client.post("/api/bookings", json=booking_payload(seed), headers=auth("referrer-token"))
    assert r.status_code == 201


def test_create_booking_validation(client, seed, acuity, db):
    headers = auth("referrer-token")

    r = client.post("/api/bookings", json=booking_payload(seed, fields=INTAKE_FIELDS[:2]), headers=headers)
    assert r.status_code == 400
    assert "dateOfBirth" in r.json()["details"]["missingFields"]

    r = client.post("/api/bookings", json=booking_payload(seed, email="nope"), headers=headers)
    assert r.status_code == 422

    r = client.post("/api/bookings", json=booking_payload(seed, organizationSlug="unknown"), headers=headers)
    assert r.status_code == 404

    r = client.post("/api/bookings", json=booking_payload(seed), headers=auth("outsider-token"))
    assert r.status_code == 403

    r = client.post(
        "/api/bookings",
        json=booking_payload(seed, specialistId=seed.inactive_specialist_id),
        headers=headers,
    )
    assert r.status_code == 404

    assert acuity.calls("POST", "/appointments") == []
    assert db.query(Booking).count() == 1


def test_create_booking_rejects_double_booking(client, seed, acuity):
    r = client.post(
        "/api/bookings",
        json=booking_payload(seed, datetime="2026-11-20T10:00:00Z"),
        headers=auth("referrer-token"),
    )
    assert r.status_code == 409
    assert acuity.requests == []


def test_create_booking_acuity_failure(client, seed, acuity, db):
    acuity.add("POST", "/appointments", status=400, json={"message": "Time not available", "error": "not_available"})
    r = client.post("/api/bookings", json=booking_payload(seed), headers=auth("referrer-token"))
    assert r.status_code == 502
    assert r.json()["details"] == {"code": "not_available"}
    assert db.query(Booking).count() == 1
    assert db.query(Referrer).count() == 1


def test_booking_creation_is_rate_limited(client, seed, fake_redis):
    key = f"rate_limit:booking_create:{seed.referrer_user_id}:/api/bookings"
    fake_redis.set(key, 10, ex=600)
    r = client.post("/api/bookings", json=booking_payload(seed), headers=auth("referrer-token"))
    assert r.status_code == 429
    assert r.json()["message"] == "Rate limit exceeded. Please try again in 10 minutes."


def test_update_progress(client, seed, db):
    r = client.post(
        f"/api/bookings/{seed.booking_id}/progress",
        json={"progress": "generating-report", "notes": "Dictation received"},
        headers=auth("specialist-token"),
    )
    assert r.status_code == 200
    progress = r.json()["booking"]["progress"]
    assert progress[-1]["fromStatus"] == "scheduled"
    assert progress[-1]["toStatus"] == "generating-report"
    assert r.json()["booking"]["status"] == "active"

    r = client.post(
        f"/api/bookings/{seed.booking_id}/progress",
        json={"progress": "payment-received"},
        headers=auth("owner-token"),
    )
    assert r.json()["booking"]["status"] == "closed"
    assert r.json()["booking"]["completedAt"] is not None


def test_update_progress_permissions_and_values(client, seed):
    url = f"/api/bookings/{seed.booking_id}/progress"
    assert client.post(url, json={"progress": "no-show"}, headers=auth("referrer-token")).status_code == 403
    assert client.post(url, json={"progress": "finished"}, headers=auth("admin-token")).status_code == 422


def test_reschedule_booking(client, seed, acuity, db):
    acuity.add("PUT", "/appointments/7001", json={"id": 7001, "calendarID": 101})
    r = client.post(
        f"/api/bookings/{seed.booking_id}/reschedule",
        json={"datetime": "2026-11-27T14:00:00Z", "timezone": "Australia/Sydney"},
        headers=auth("referrer-token"),
    )
    assert r.status_code == 200
    booking = r.json()["booking"]
    assert booking["dateTime"] == "2026-11-27T14:00:00Z"
    assert booking["currentProgress"] == "rescheduled"
    assert booking["progress"][-1]["notes"] == "Rescheduled from 2026-11-20T10:00:00Z to 2026-11-27T14:00:00Z"
    assert json.loads(acuity.calls("PUT", "/appointments/7001")[0].content) == {
        "datetime": "2026-11-27T14:00:00Z",
        "timezone": "Australia/Sydney",
    }


def test_reschedule_failure_leaves_booking_untouched(client, seed, acuity, db):
    acuity.add("PUT", "/appointments/7001", status=400, json={"message": "Slot taken"})
    r = client.post(
        f"/api/bookings/{seed.booking_id}/reschedule",
        json={"datetime": "2026-11-27T14:00:00Z"},
        headers=auth("referrer-token"),
    )
    assert r.status_code == 502
    assert db.query(BookingProgress).filter_by(booking_id=seed.booking_id).count() == 1


def test_cancel_booking(client, seed, acuity):
    acuity.add("GET", "/appointments/7001", json={"id": 7001, "calendarID": 101})
    acuity.add("DELETE", "/appointments/7001", status=204)

    r = client.post(f"/api/bookings/{seed.booking_id}/cancel", headers=auth("referrer-token"))
    assert r.status_code == 200
    assert r.json()["message"] == "Booking cancelled successfully"
    assert r.json()["booking"]["status"] == "closed"
    assert r.json()["booking"]["currentProgress"] == "cancelled"
    assert len(acuity.calls("DELETE", "/appointments/7001")) == 1

    again = client.post(f"/api/bookings/{seed.booking_id}/cancel", headers=auth("referrer-token"))
    assert again.status_code == 409


def test_no_show(client, seed, acuity):
    acuity.add("GET", "/appointments/7001", json={"id": 7001, "calendarID": 101})
    acuity.add("DELETE", "/appointments/7001", status=204)
    r = client.post(
        f"/api/bookings/{seed.booking_id}/cancel", json={"noShow": True}, headers=auth("specialist-token")
    )
    assert r.json()["message"] == "Booking marked as no-show"
    assert r.json()["booking"]["currentProgress"] == "no-show"


def test_form_email_never_links_another_referrer(client, seed, acuity, db):
    r = client.post(
        "/webhooks/appointment",
        json={
            "acuityAppointmentId": 8201,
            "location": "Sydney",
            "datetime": "2026-12-04T09:00:00Z",
            "duration": 60,
            "acuityCalendarId": 101,
            "acuityAppointmentTypeId": 5001,
            "referrerEmail": "victim@lawfirm.test",
            "organizationName": "Acme Legal",
            "fields": INTAKE_FIELDS,
        },
    )
    victim_booking_id = r.json()["bookingId"]
    assert client.get(f"/api/bookings/{victim_booking_id}", headers=auth("lead-token")).status_code == 403

    acuity.add("POST", "/appointments", json={"id": 8202, "calendarID": 101})
    r = client.post(
        "/api/bookings",
        json=booking_payload(seed, email="victim@lawfirm.test"),
        headers=auth("lead-token"),
    )
    assert r.status_code == 201, r.text

    assert client.get(f"/api/bookings/{victim_booking_id}", headers=auth("lead-token")).status_code == 403
    listed = client.get("/api/bookings", headers=auth("lead-token")).json()["bookings"]
    assert [b["id"] for b in listed] == [r.json()["id"]]

    db.expire_all()
    victim = db.get(Booking, victim_booking_id).referrer
    assert victim.user_id is None
    own = db.get(Booking, r.json()["id"]).referrer
    assert own.user_id == seed.lead_id
    assert own.email == "lead@acme.test"
