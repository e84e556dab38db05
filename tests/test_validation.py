from datetime import datetime

import pytest

from portal import config
from portal.domain.documents.service import parse_range_header
from portal.domain.documents.validation import (
    sanitize_file_name,
    validate_booking_document_upload,
    validate_file_name,
)
from portal.errors import RangeNotSatisfiableError, ValidationError
from portal.shared.validators import (
    isoformat,
    parse_datetime,
    slugify,
    validate_email,
    validate_month,
    validate_uuid,
)


def test_sanitize_file_name():
    assert sanitize_file_name("../../etc/passwd") == "passwd"
    assert sanitize_file_name("C:\\reports\\final report (v2).pdf") == "final_report_v2_.pdf"
    assert sanitize_file_name("...hidden..pdf") == "hidden.pdf"
    assert sanitize_file_name("") == "file"
    long_name = "a" * 300 + ".pdf"
    cleaned = sanitize_file_name(long_name)
    assert len(cleaned) == 255
    assert cleaned.endswith(".pdf")


@pytest.mark.parametrize("name", ["", "../secret.pdf", "a/b.pdf", "bad\x00name.pdf", "CON.pdf", "x" * 256])
def test_validate_file_name_rejects(name):
    with pytest.raises(ValidationError):
        validate_file_name(name)


def test_upload_accepts_matching_type_and_extension():
    validate_booking_document_upload("consent.pdf", "application/pdf", 1024, "consent_form")
    validate_booking_document_upload("note.m4a", "audio/x-m4a", 1024, "dictation")


def test_upload_rejects_wrong_mime_for_category():
    with pytest.raises(ValidationError) as exc:
        validate_booking_document_upload("photo.png", "image/png", 1024, "final_report")
    assert "Invalid file type" in exc.value.message


def test_upload_rejects_extension_mismatch():
    with pytest.raises(ValidationError) as exc:
        validate_booking_document_upload("report.docx", "application/pdf", 1024, "final_report")
    assert "does not match" in exc.value.message


def test_upload_rejects_empty_and_oversized(monkeypatch):
    with pytest.raises(ValidationError):
        validate_booking_document_upload("a.pdf", "application/pdf", 0, "consent_form")
    monkeypatch.setattr(config, "S3_UPLOAD_MAX_SIZE", 10)
    with pytest.raises(ValidationError):
        validate_booking_document_upload("a.pdf", "application/pdf", 11, "consent_form")


def test_parse_range_header():
    assert parse_range_header("bytes=0-99") == "bytes=0-99"
    assert parse_range_header("bytes=100-") == "bytes=100-"
    assert parse_range_header("bytes=10-5") is None
    assert parse_range_header("items=0-1") is None
    assert parse_range_header(None) is None


def test_parse_range_header_bounds_start_by_size():
    assert parse_range_header("bytes=99-200", size=100) == "bytes=99-200"
    with pytest.raises(RangeNotSatisfiableError) as exc:
        parse_range_header("bytes=100-", size=100)
    assert exc.value.status_code == 416
    assert exc.value.headers == {"Content-Range": "bytes */100"}


def test_parse_datetime_normalises_to_naive_utc():
    assert parse_datetime("2026-11-20T10:00:00Z") == datetime(2026, 11, 20, 10, 0)
    assert parse_datetime("2026-11-20T21:00:00+1100") == datetime(2026, 11, 20, 10, 0)
    assert parse_datetime("2026-11-20T10:00:00") == datetime(2026, 11, 20, 10, 0)
    with pytest.raises(ValueError):
        parse_datetime("next tuesday")


def test_small_validators():
    assert validate_email("  Jane@Example.COM ") == "jane@example.com"
    with pytest.raises(ValueError):
        validate_email("not-an-email")
    assert validate_uuid("0b7e6f4e-8c43-4f2b-9d0a-3f1f2e4d5c6b")
    assert not validate_uuid("123")
    assert validate_month("2026-02")
    assert not validate_month("2026-13")
    assert slugify("  Smith & Partners Legal ") == "smith-partners-legal"
    assert isoformat(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05Z"
    assert isoformat(None) is None
