"""
Upload validation for booking documents: file names, sizes and per-category MIME types.
"""

import os
import re

from ... import config
from ...errors import ValidationError

PDF = "application/pdf"
DOC = "application/msword"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

AUDIO_MIME_TYPES = (
    "audio/mpeg",
    "audio/wav",
    "audio/mp4",
    "audio/webm",
    "audio/ogg",
    "audio/x-m4a",
)

ALLOWED_MIME_TYPES: dict[str, tuple[str, ...]] = {
    "consent_form": (PDF, DOCX, DOC, "image/jpeg", "image/jpg", "image/png"),
    "document_brief": (PDF, DOCX, DOC, "video/mp4"),
    "dictation": AUDIO_MIME_TYPES + (PDF, DOCX),
    "draft_report": (PDF, DOCX, DOC),
    "final_report": (PDF, DOCX, DOC),
}

MIME_EXTENSIONS: dict[str, tuple[str, ...]] = {
    PDF: (".pdf",),
    DOC: (".doc",),
    DOCX: (".docx",),
    "image/jpeg": (".jpg", ".jpeg"),
    "image/jpg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "video/mp4": (".mp4",),
    "audio/mpeg": (".mp3", ".mpeg"),
    "audio/wav": (".wav",),
    "audio/mp4": (".m4a", ".mp4"),
    "audio/webm": (".webm",),
    "audio/ogg": (".ogg", ".oga"),
    "audio/x-m4a": (".m4a",),
}

MAX_FILE_NAME_LENGTH = 255

_RESERVED_NAME = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def is_audio(mime_type: str) -> bool:
    return mime_type in AUDIO_MIME_TYPES


def sanitize_file_name(file_name: str) -> str:
    """Make a client-supplied name safe for storage keys and headers"""
    name = re.split(r"[\\/]", file_name or "")[-1]
    name = _UNSAFE_CHARS.sub("_", name)
    name = re.sub(r"_+", "_", name)
    name = re.sub(r"\.{2,}", ".", name).lstrip(".")
    if not name:
        name = "file"

    if len(name) > MAX_FILE_NAME_LENGTH:
        stem, ext = os.path.splitext(name)
        name = stem[: MAX_FILE_NAME_LENGTH - len(ext)] + ext
    return name


def validate_file_name(file_name: str) -> None:
    if not file_name:
        raise ValidationError("File name cannot be empty")
    if len(file_name) > MAX_FILE_NAME_LENGTH:
        raise ValidationError(f"File name must be under {MAX_FILE_NAME_LENGTH} characters")
    if ".." in file_name or "/" in file_name or "\\" in file_name:
        raise ValidationError("File name cannot contain path characters")
    if _CONTROL_CHARS.search(file_name):
        raise ValidationError("File name contains invalid characters")
    if _RESERVED_NAME.match(file_name):
        raise ValidationError("Invalid file name")


def validate_booking_document_upload(file_name: str, mime_type: str, size: int, category: str) -> None:
    if category not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"Invalid document category: {category}")

    if size <= 0:
        raise ValidationError("File is empty")
    if size > config.S3_UPLOAD_MAX_SIZE:
        raise ValidationError(
            f"File size exceeds maximum allowed size of {config.S3_UPLOAD_MAX_SIZE} bytes"
        )

    allowed = ALLOWED_MIME_TYPES[category]
    if mime_type not in allowed:
        raise ValidationError(
            f"Invalid file type for {category}. Allowed types: {', '.join(allowed)}",
            details={"mimeType": mime_type},
        )

    validate_file_name(file_name)

    extension = os.path.splitext(file_name)[1].lower()
    if extension not in MIME_EXTENSIONS.get(mime_type, ()):
        raise ValidationError(
            f"File extension {extension or '(none)'} does not match file type {mime_type}"
        )
