import fnmatch
import io
import json
import os
import re
from datetime import datetime, timedelta
from types import SimpleNamespace

import httpx
import pytest
from botocore.exceptions import ClientError

# Settings are read when portal.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ.setdefault("ENVIRONMENT", "test")

from fastapi.testclient import TestClient  # noqa: E402

from portal import config, rate_limiter  # noqa: E402
from portal.database import Base, SessionLocal, engine  # noqa: E402
from portal.encryption import hash_lookup_value  # noqa: E402
from portal.main import app  # noqa: E402
from portal.models import (  # noqa: E402
    AcuityAppointmentType,
    AcuityAppointmentTypeForm,
    AcuityForm,
    AcuityFormField,
    AppForm,
    AppFormField,
    Booking,
    BookingProgress,
    Examinee,
    Member,
    Organization,
    Referrer,
    Session,
    Specialist,
    SpecialistAppointmentType,
    Team,
    TeamMember,
    User,
)
from portal.services import acuity_service as acuity_module  # noqa: E402
from portal.services import storage_service  # noqa: E402

ACUITY_PREFIX = "/api/v1"

INTAKE_FIELDS = [
    {"id": 11, "value": "Alex"},
    {"id": 12, "value": "Morgan"},
    {"id": 13, "value": "1980-04-02"},
    {"id": 14, "value": "1 George St, Sydney"},
    {"id": 15, "value": "Lower back injury"},
    {"id": 16, "value": "Workers compensation"},
    {"id": 17, "value": "yes"},
]


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the app uses"""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = str(value)
        if ex:
            self.expiry[key] = ex
        return True

    def setex(self, key, ttl, value):
        return self.set(key, value, ex=ttl)

    def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    def ttl(self, key):
        if key not in self.store:
            return -2
        return self.expiry.get(key, -1)

    def expire(self, key, seconds):
        if key not in self.store:
            return False
        self.expiry[key] = seconds
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    def scan_iter(self, match=None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    def ping(self):
        return True


class FakeAcuity:
    """Routes Acuity API calls made through httpx.MockTransport"""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, json=None, status=200, handler=None):
        self.routes[(method, path)] = (status, json, handler)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == ACUITY_PREFIX + path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len(ACUITY_PREFIX):] if request.url.path.startswith(ACUITY_PREFIX) else request.url.path
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json={"status_code": 404, "message": "Not found", "error": "not_found"})
        status, body, handler = route
        if handler is not None:
            return handler(request)
        return httpx.Response(status, json=body)


class StubS3:
    """Records objects in memory and serves byte ranges"""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    def put_object(self, Bucket, Key, Body, ContentType, **kwargs):
        self.objects[Key] = {"Body": Body, "ContentType": ContentType, "Metadata": kwargs.get("Metadata", {}), **kwargs}

    def get_object(self, Bucket, Key, Range=None):
        data = self.objects[Key]["Body"]
        result = {"ContentType": self.objects[Key]["ContentType"], "AcceptRanges": "bytes"}
        if Range:
            match = re.match(r"bytes=(\d+)-(\d*)", Range)
            start = int(match.group(1))
            if start >= len(data):
                raise ClientError(
                    {"Error": {"Code": "InvalidRange", "Message": "The requested range is not satisfiable"}},
                    "GetObject",
                )
            end = int(match.group(2)) if match.group(2) else len(data) - 1
            part = data[start : end + 1]
            result["ContentRange"] = f"bytes {start}-{start + len(part) - 1}/{len(data)}"
        else:
            part = data
        result["Body"] = io.BytesIO(part)
        result["ContentLength"] = len(part)
        return result

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)
        self.deleted.append(Key)


@pytest.fixture(autouse=True)
def database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(rate_limiter, "redis_client", client)
    return client


@pytest.fixture(autouse=True)
def quiet_settings(monkeypatch):
    monkeypatch.setattr(config, "RESEND_API_KEY", None)
    monkeypatch.setattr(config, "ACUITY_WEBHOOK_SECRET", None)
    monkeypatch.setattr(config, "SYSTEM_USER_ID", "system")


@pytest.fixture(autouse=True)
def acuity(monkeypatch):
    fake = FakeAcuity()
    service = acuity_module.acuity_service
    monkeypatch.setattr(service, "transport", httpx.MockTransport(fake.handle))
    monkeypatch.setattr(service, "rate_limit_per_second", 10_000)
    monkeypatch.setattr(service, "_requests_this_hour", 0)
    return fake


@pytest.fixture()
def s3(monkeypatch):
    stub = StubS3()
    monkeypatch.setattr(storage_service, "_s3_client", stub)
    monkeypatch.setattr(config, "STORAGE_BUCKET", "test-bucket")
    return stub


@pytest.fixture()
def client():
    return TestClient(app)


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def _user(db, name, email, role="user", token=None):
    user = User(name=name, email=email, role=role)
    db.add(user)
    db.flush()
    if token:
        db.add(Session(token=token, user_id=user.id, expires_at=datetime.utcnow() + timedelta(days=1)))
    return user


@pytest.fixture()
def seed(db):
    admin = _user(db, "Ada Admin", "admin@medibytes.test", role="admin", token="admin-token")
    referrer_user = _user(db, "Rita Referrer", "referrer@acme.test", token="referrer-token")
    owner = _user(db, "Owen Owner", "owner@acme.test", token="owner-token")
    lead = _user(db, "Tess Lead", "lead@acme.test", token="lead-token")
    outsider = _user(db, "Olly Outsider", "outsider@other.test", token="outsider-token")
    specialist_user = _user(db, "Jane Smith", "jane@clinic.test", token="specialist-token")
    other_specialist_user = _user(db, "Tom Lee", "tom@clinic.test", token="other-specialist-token")

    organization = Organization(name="Acme Legal", slug="acme-legal")
    db.add(organization)
    db.flush()
    team = Team(organization_id=organization.id, name="Acme Legal")
    db.add(team)
    db.flush()
    db.add_all(
        [
            Member(organization_id=organization.id, user_id=referrer_user.id, role="member"),
            Member(organization_id=organization.id, user_id=owner.id, role="owner"),
            Member(organization_id=organization.id, user_id=lead.id, role="team_lead"),
            TeamMember(team_id=team.id, user_id=lead.id),
            TeamMember(team_id=team.id, user_id=referrer_user.id),
        ]
    )

    specialist = Specialist(
        user_id=specialist_user.id,
        acuity_calendar_id=101,
        name="Dr Jane Smith",
        slug="dr-jane-smith",
        specialty="orthopedics",
        location={"city": "Sydney", "state": "NSW", "country": "Australia"},
        accepts_in_person=True,
        accepts_telehealth=True,
        position=0,
        is_active=True,
    )
    inactive = Specialist(
        user_id=other_specialist_user.id,
        acuity_calendar_id=202,
        name="Dr Tom Lee",
        slug="dr-tom-lee",
        specialty="psychiatry",
        location={"city": "Melbourne", "state": "VIC", "country": "Australia"},
        accepts_in_person=False,
        accepts_telehealth=True,
        position=1,
        is_active=False,
    )
    db.add_all([specialist, inactive])
    db.flush()

    db.add_all(
        [
            AcuityAppointmentType(id=5001, name="Independent Medical Examination", duration=60, calendar_ids=[101]),
            AcuityAppointmentType(id=5002, name="Telehealth IME", duration=45, calendar_ids=[101]),
            AcuityAppointmentType(id=5003, name="File Review", duration=30, calendar_ids=[202], active=False),
        ]
    )
    db.flush()
    db.add_all(
        [
            SpecialistAppointmentType(specialist_id=specialist.id, appointment_type_id=5001, appointment_mode="in-person"),
            SpecialistAppointmentType(
                specialist_id=specialist.id,
                appointment_type_id=5002,
                appointment_mode="telehealth",
                custom_display_name="Video IME",
            ),
        ]
    )

    form = AcuityForm(id=9001, name="Examinee details", appointment_type_ids=[5001])
    db.add(form)
    db.flush()
    labels = ["First name", "Last name", "Date of birth", "Address", "Condition", "Case type", "Authorised contact"]
    for offset, label in enumerate(labels):
        db.add(AcuityFormField(id=11 + offset, form_id=9001, name=label, type="textbox", required=offset < 6))
    db.add(AcuityAppointmentTypeForm(appointment_type_id=5001, form_id=9001))
    app_form = AppForm(acuity_form_id=9001, name="Examinee intake")
    db.add(app_form)
    db.flush()
    mappings = ["firstName", "lastName", "dateOfBirth", "address", "condition", "caseType", "authorizedContact"]
    for offset, mapping in enumerate(mappings):
        db.add(
            AppFormField(
                app_form_id=app_form.id,
                acuity_field_id=11 + offset,
                examinee_field_mapping=mapping,
                display_order=len(mappings) - offset,
            )
        )

    referrer = Referrer(
        organization_id=organization.id,
        user_id=referrer_user.id,
        first_name="Rita",
        last_name="Referrer",
        email="referrer@acme.test",
        email_hash=hash_lookup_value("referrer@acme.test"),
        phone="0400000000",
    )
    db.add(referrer)
    db.flush()
    examinee = Examinee(
        referrer_id=referrer.id,
        first_name="Sam",
        last_name="Taylor",
        date_of_birth="1975-08-14",
        address="10 Pitt St, Sydney",
        email="sam@example.test",
        phone_number="0411111111",
        authorized_contact=True,
        condition="Shoulder injury",
        case_type="Motor accident",
    )
    db.add(examinee)
    db.flush()
    booking = Booking(
        organization_id=organization.id,
        team_id=team.id,
        created_by_id=referrer_user.id,
        referrer_id=referrer.id,
        specialist_id=specialist.id,
        examinee_id=examinee.id,
        status="active",
        type="in-person",
        duration=60,
        location="Sydney clinic",
        date_time=datetime(2026, 11, 20, 10, 0),
        acuity_appointment_id=7001,
        acuity_appointment_type_id=5001,
        acuity_calendar_id=101,
    )
    db.add(booking)
    db.flush()
    db.add(BookingProgress(booking_id=booking.id, to_status="scheduled", changed_by_id=referrer_user.id))
    db.commit()

    return SimpleNamespace(
        admin_id=admin.id,
        referrer_user_id=referrer_user.id,
        owner_id=owner.id,
        lead_id=lead.id,
        outsider_id=outsider.id,
        specialist_user_id=specialist_user.id,
        organization_id=organization.id,
        team_id=team.id,
        specialist_id=specialist.id,
        inactive_specialist_id=inactive.id,
        referrer_id=referrer.id,
        examinee_id=examinee.id,
        booking_id=booking.id,
    )


def json_body(payload):
    return json.dumps(payload).encode()
