import asyncio

from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from portal.domain.documents.repository import DocumentRepository
from portal.main import app
from portal.models import AuditLog, Document
from portal.services import storage_service
from tests.conftest import auth

PDF_BYTES = b"%PDF-1.4 consent form body"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def upload(client, seed, token, name="consent.pdf", content=PDF_BYTES, mime="application/pdf", **form):
    data = {"bookingId": seed.booking_id, "section": "ime_documents", "category": "consent_form"}
    data.update(form)
    return client.post(
        "/api/documents",
        data=data,
        files={"file": (name, content, mime)},
        headers=auth(token),
    )


def test_upload_stores_object_and_metadata(client, seed, s3, db):
    r = upload(client, seed, "referrer-token", description="Signed consent")
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["category"] == "consent_form"
    assert body["fileName"] == "consent.pdf"
    assert body["fileSize"] == len(PDF_BYTES)
    assert "s3Key" not in body

    [key] = s3.objects
    assert key.startswith(f"bookings/{seed.booking_id}/{seed.referrer_user_id}/")
    assert key.endswith("-consent.pdf")
    stored = s3.objects[key]
    assert stored["ServerSideEncryption"] == "AES256"
    assert stored["Metadata"]["phi-data"] == "true"

    document = db.get(Document, body["id"])
    assert document.s3_key == key
    assert document.s3_bucket == "test-bucket"
    assert db.query(AuditLog).filter_by(action="document.uploaded", entity_id=body["id"]).count() == 1


def test_audio_is_always_filed_as_dictation(client, seed, s3):
    r = upload(
        client,
        seed,
        "specialist-token",
        name="session.mp3",
        content=b"ID3 audio",
        mime="audio/mpeg",
        category="draft_report",
    )
    assert r.status_code == 201, r.text
    assert r.json()["category"] == "dictation"


def test_upload_rejections(client, seed, s3):
    assert upload(client, seed, "outsider-token").status_code == 403
    # referrers cannot upload reports
    assert upload(client, seed, "referrer-token", category="draft_report").status_code == 403
    assert upload(client, seed, "referrer-token", section="billing").status_code == 400
    assert upload(client, seed, "referrer-token", name="consent.exe").status_code == 400
    assert upload(client, seed, "referrer-token", content=b"").status_code == 400
    assert upload(client, seed, "referrer-token", bookingId="nope").status_code == 400
    assert s3.objects == {}


def test_upload_rate_limit(client, seed, s3, fake_redis):
    fake_redis.set(f"rate_limit:document_upload:{seed.referrer_user_id}:/api/documents", 50, ex=3600)
    assert upload(client, seed, "referrer-token").status_code == 429


def test_storage_calls_run_off_the_event_loop(client, seed, s3, monkeypatch):
    calls = []

    def tracked(name, func):
        def wrapper(*args, **kwargs):
            try:
                asyncio.get_running_loop()
                calls.append((name, True))
            except RuntimeError:
                calls.append((name, False))
            return func(*args, **kwargs)

        return wrapper

    for name in ("upload_object", "download_object", "delete_object"):
        monkeypatch.setattr(storage_service, name, tracked(name, getattr(storage_service, name)))

    document_id = upload(client, seed, "referrer-token").json()["id"]
    assert client.get(f"/api/documents/{document_id}", headers=auth("referrer-token")).status_code == 200
    assert client.delete(f"/api/documents/{document_id}", headers=auth("referrer-token")).status_code == 200

    assert [name for name, _ in calls] == ["upload_object", "download_object", "delete_object"]
    assert not any(on_loop for _, on_loop in calls)


def test_failed_insert_removes_stored_object(seed, s3, db, monkeypatch):
    def fail(db, **document_data):
        raise SQLAlchemyError("insert failed")

    monkeypatch.setattr(DocumentRepository, "create_document", staticmethod(fail))
    client = TestClient(app, raise_server_exceptions=False)

    r = upload(client, seed, "referrer-token")
    assert r.status_code == 500
    assert s3.objects == {}
    [key] = s3.deleted
    assert key.startswith(f"bookings/{seed.booking_id}/")
    assert db.query(Document).count() == 0
    assert db.query(AuditLog).filter_by(action="document.uploaded").count() == 0


def test_download_streams_with_attachment_headers(client, seed, s3, db):
    document_id = upload(client, seed, "referrer-token").json()["id"]

    r = client.get(f"/api/documents/{document_id}", headers=auth("specialist-token"))
    assert r.status_code == 403  # specialists cannot read consent forms

    r = client.get(f"/api/documents/{document_id}", headers=auth("referrer-token"))
    assert r.status_code == 200
    assert r.content == PDF_BYTES
    assert r.headers["Content-Disposition"] == 'attachment; filename="consent.pdf"'
    assert r.headers["Cache-Control"] == "no-store, no-cache, must-revalidate, private"
    assert r.headers["Accept-Ranges"] == "bytes"

    actions = [a for (a,) in db.query(AuditLog.action).filter_by(entity_id=document_id).all()]
    assert "document.downloaded" in actions
    assert "document.access_denied" in actions


def test_range_download(client, seed, s3):
    document_id = upload(client, seed, "referrer-token").json()["id"]
    headers = {**auth("referrer-token"), "Range": "bytes=0-7"}
    r = client.get(f"/api/documents/{document_id}", headers=headers)
    assert r.status_code == 206
    assert r.content == PDF_BYTES[:8]
    assert r.headers["Content-Range"] == f"bytes 0-7/{len(PDF_BYTES)}"


def test_range_past_end_is_not_satisfiable(client, seed, s3, db):
    document_id = upload(client, seed, "referrer-token").json()["id"]
    headers = {**auth("referrer-token"), "Range": f"bytes={len(PDF_BYTES)}-"}
    r = client.get(f"/api/documents/{document_id}", headers=headers)
    assert r.status_code == 416
    assert r.headers["Content-Range"] == f"bytes */{len(PDF_BYTES)}"
    assert r.json()["code"] == "RANGE_NOT_SATISFIABLE"
    assert db.query(AuditLog).filter_by(action="document.download_failed", entity_id=document_id).count() == 1

    headers["Range"] = f"bytes={len(PDF_BYTES) - 4}-{len(PDF_BYTES) + 100}"
    r = client.get(f"/api/documents/{document_id}", headers=headers)
    assert r.status_code == 206
    assert r.content == PDF_BYTES[-4:]


def test_referrers_only_get_final_reports_as_pdf(client, seed, s3):
    docx_id = upload(
        client, seed, "specialist-token", name="report.docx", content=b"PK docx", mime=DOCX, category="final_report"
    ).json()["id"]
    pdf_id = upload(
        client, seed, "specialist-token", name="report.pdf", content=PDF_BYTES, category="final_report"
    ).json()["id"]

    r = client.get(f"/api/documents/{docx_id}", headers=auth("referrer-token"))
    assert r.status_code == 403
    assert "PDF only" in r.json()["message"]
    assert client.get(f"/api/documents/{pdf_id}", headers=auth("referrer-token")).status_code == 200


def test_list_filters_by_role(client, seed, s3):
    upload(client, seed, "referrer-token")
    upload(client, seed, "specialist-token", name="notes.mp3", content=b"ID3", mime="audio/mpeg", category="dictation")
    upload(client, seed, "specialist-token", name="final.pdf", category="final_report")

    r = client.get(f"/api/documents/booking/{seed.booking_id}", headers=auth("referrer-token"))
    assert r.status_code == 200
    listed = {d["category"]: d["downloadFormat"] for d in r.json()["documents"]}
    assert listed == {"consent_form": "original", "final_report": "pdf_only"}

    r = client.get(f"/api/documents/booking/{seed.booking_id}", headers=auth("specialist-token"))
    assert sorted(d["category"] for d in r.json()["documents"]) == ["dictation", "final_report"]

    r = client.get(f"/api/documents/booking/{seed.booking_id}?category=dictation", headers=auth("admin-token"))
    assert [d["category"] for d in r.json()["documents"]] == ["dictation"]


def test_team_lead_sees_team_bookings(client, seed, s3):
    upload(client, seed, "referrer-token")
    r = client.get(f"/api/documents/booking/{seed.booking_id}", headers=auth("lead-token"))
    assert r.status_code == 200
    assert len(r.json()["documents"]) == 1
    assert client.get(f"/api/documents/booking/{seed.booking_id}", headers=auth("outsider-token")).status_code == 403


def test_delete_is_soft_and_removes_object(client, seed, s3, db):
    document_id = upload(client, seed, "referrer-token").json()["id"]
    [key] = s3.objects

    assert client.delete(f"/api/documents/{document_id}", headers=auth("specialist-token")).status_code == 403

    r = client.delete(f"/api/documents/{document_id}", headers=auth("referrer-token"))
    assert r.status_code == 200
    assert s3.deleted == [key]
    db.expire_all()
    assert db.get(Document, document_id).deleted_at is not None

    assert client.get(f"/api/documents/{document_id}", headers=auth("referrer-token")).status_code == 404
    assert client.delete(f"/api/documents/{document_id}", headers=auth("referrer-token")).status_code == 404


def test_permissions_endpoint(client, seed):
    r = client.get("/api/documents/permissions", headers=auth("referrer-token"))
    assert r.status_code == 200
    body = r.json()
    assert body["role"] == "referrer"
    assert body["sections"]["ime_documents"]["upload"] == ["consent_form", "document_brief"]
    assert body["sections"]["supplementary_documents"]["download"] == ["document_brief", "final_report"]

    r = client.get("/api/documents/permissions", headers=auth("lead-token"))
    assert r.json()["role"] == "team_lead"
    assert r.json()["effectiveRole"] == "admin"
