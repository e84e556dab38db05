"""Document service - Upload, download and access control for booking documents"""

import asyncio
import logging
import re
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import Session

from ... import config
from ...auth import UserContext
from ...email_service import send_document_uploaded
from ...errors import ForbiddenError, NotFoundError, RangeNotSatisfiableError, ValidationError
from ...models import Booking, Document
from ...services import storage_service
from ...services.audit_service import AuditService
from ...shared.validators import validate_uuid
from ..bookings.repository import BookingRepository
from ..bookings.service import can_access_booking
from . import permissions
from .repository import DocumentRepository
from .schemas import DocumentResponse
from .validation import is_audio, sanitize_file_name, validate_booking_document_upload

logger = logging.getLogger(__name__)

RANGE_PATTERN = re.compile(r"^bytes=(\d+)-(\d*)$")


def to_response(document: Document, download_format: Optional[str] = None) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        bookingId=document.booking_id,
        uploadedById=document.uploaded_by_id,
        section=document.section,
        category=document.category,
        fileName=document.file_name,
        fileSize=document.file_size,
        mimeType=document.mime_type,
        description=document.description,
        createdAt=document.created_at,
        downloadFormat=download_format,
    )


def parse_range_header(value: Optional[str], size: Optional[int] = None) -> Optional[str]:
    """
    Accept a single "bytes=a-b" range; anything else downloads the whole object.

    Raises:
        RangeNotSatisfiableError: If the range starts at or past the end of an object of `size` bytes
    """
    if not value:
        return None
    match = RANGE_PATTERN.match(value.strip())
    if not match:
        return None
    start, end = match.group(1), match.group(2)
    if end and int(end) < int(start):
        return None
    if size is not None and int(start) >= size:
        raise RangeNotSatisfiableError(
            "Requested range not satisfiable", headers={"Content-Range": f"bytes */{size}"}
        )
    return f"bytes={start}-{end}"


class DocumentService:
    """Service layer for booking documents"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = DocumentRepository()
        self.bookings = BookingRepository()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def permission_role(self, ctx: UserContext) -> str:
        return permissions.get_user_role(ctx.document_role)

    def can_access_booking(self, ctx: UserContext, booking: Booking) -> bool:
        if can_access_booking(self.db, ctx, booking):
            return True
        return self.repo.is_team_lead_for(self.db, ctx.user_id, booking.organization_id, booking.team_id)

    def verify_access(self, ctx: UserContext, document: Document, booking: Booking) -> bool:
        if document.uploaded_by_id == ctx.user_id:
            return True
        return self.can_access_booking(ctx, booking)

    def _load_accessible_booking(self, booking_id: str, ctx: UserContext) -> Booking:
        if not validate_uuid(booking_id):
            raise ValidationError("Invalid booking ID format")
        booking = self.bookings.get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking")
        if not self.can_access_booking(ctx, booking):
            raise ForbiddenError("Access denied")
        return booking

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        ctx: UserContext,
        request: Request,
        booking_id: str,
        section: str,
        category: str,
        file_name: str,
        mime_type: str,
        content: bytes,
        description: Optional[str] = None,
    ) -> Document:
        if section not in permissions.SECTIONS:
            raise ValidationError(f"Invalid document section: {section}")
        if category not in permissions.CATEGORIES:
            raise ValidationError(f"Invalid document category: {category}")

        booking = self._load_accessible_booking(booking_id, ctx)

        mime_type = (mime_type or "application/octet-stream").lower()
        if is_audio(mime_type):
            category = "dictation"

        validate_booking_document_upload(file_name, mime_type, len(content), category)

        role = self.permission_role(ctx)
        if not permissions.has_permission(role, category, "upload"):
            logger.warning(f"🚫 {role} {ctx.user_id} may not upload {category}")
            raise ForbiddenError("You do not have permission to upload this document type")

        s3_key = storage_service.generate_s3_key(booking.id, file_name, ctx.user_id)
        await asyncio.to_thread(
            storage_service.upload_object,
            s3_key,
            content,
            mime_type,
            metadata={"phi-data": "true", "booking-id": booking.id, "uploaded-by": ctx.user_id},
        )

        try:
            document = self.repo.create_document(
                self.db,
                booking_id=booking.id,
                uploaded_by_id=ctx.user_id,
                section=section,
                category=category,
                s3_key=s3_key,
                s3_bucket=config.STORAGE_BUCKET,
                file_name=file_name,
                file_size=len(content),
                mime_type=mime_type,
                description=description,
            )
        except Exception:
            self.db.rollback()
            logger.error(f"❌ Failed to save document for booking {booking.id}, removing stored object")
            try:
                await asyncio.to_thread(storage_service.delete_object, s3_key)
            except Exception as cleanup_error:
                logger.error(f"❌ Failed to clean up stored object: {cleanup_error}")
            raise

        logger.info(f"✅ Document {document.id} uploaded to booking {booking.id} ({category})")
        AuditService.log_request(
            self.db,
            request,
            ctx.user_id,
            "document.uploaded",
            "document",
            document.id,
            {
                "bookingId": booking.id,
                "fileSize": document.file_size,
                "section": section,
                "category": category,
            },
        )

        await self._notify_upload(ctx, booking, category)
        return document

    async def _notify_upload(self, ctx: UserContext, booking: Booking, category: str) -> None:
        specialist = booking.specialist
        referrer = booking.referrer
        examinee = booking.examinee
        examinee_name = f"{examinee.first_name} {examinee.last_name}" if examinee else ""
        uploader_name = ctx.user.name or "A team member"

        if specialist is not None and specialist.user_id == ctx.user_id:
            if referrer is None or not referrer.email:
                return
            to, recipient_name = referrer.email, f"{referrer.first_name} {referrer.last_name}".strip()
        else:
            if specialist is None or specialist.user is None:
                return
            to, recipient_name = specialist.user.email, specialist.name

        try:
            await send_document_uploaded(to, recipient_name, uploader_name, examinee_name, category, booking.id)
        except Exception as e:
            logger.warning(f"⚠️ Document upload notification failed for booking {booking.id}: {e}")

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def download(self, document_id: str, ctx: UserContext, request: Request) -> tuple[Document, dict]:
        def audit(action: str, metadata: dict) -> None:
            AuditService.log_request(self.db, request, ctx.user_id, action, "document", document_id, metadata)

        audit("document.accessed", {"attempt": True})

        document = self.repo.get_document(self.db, document_id) if validate_uuid(document_id) else None
        if not document:
            audit("document.access_denied", {"reason": "Document not found"})
            raise NotFoundError("Document")

        booking = self.bookings.get_booking(self.db, document.booking_id)
        if booking is None or not self.verify_access(ctx, document, booking):
            audit("document.access_denied", {"reason": "No booking access"})
            raise ForbiddenError("Access denied")

        role = self.permission_role(ctx)
        if not permissions.has_permission(role, document.category, "download"):
            audit("document.access_denied", {"reason": "Category not permitted", "category": document.category})
            raise ForbiddenError("You do not have permission to download this document type")

        if permissions.get_download_format(role, document.category) == "pdf_only" and document.mime_type != "application/pdf":
            audit("document.access_denied", {"reason": "PDF only"})
            raise ForbiddenError("PDF only: this report is not yet available as a PDF")

        try:
            byte_range = parse_range_header(request.headers.get("Range"), document.file_size)
        except RangeNotSatisfiableError:
            audit("document.download_failed", {"reason": "Range not satisfiable"})
            raise
        try:
            obj = storage_service.download_object(document.s3_key, byte_range)
        except Exception as e:
            audit("document.download_failed", {"error": str(e)})
            raise

        audit(
            "document.downloaded",
            {"bookingId": document.booking_id, "fileSize": document.file_size, "range": byte_range},
        )
        return document, obj

    # ------------------------------------------------------------------
    # Delete / list
    # ------------------------------------------------------------------

    def delete(self, document_id: str, ctx: UserContext, request: Request) -> None:
        if not validate_uuid(document_id):
            raise ValidationError("Invalid document ID format")
        document = self.repo.get_document(self.db, document_id)
        if not document:
            raise NotFoundError("Document")

        booking = self.bookings.get_booking(self.db, document.booking_id)
        if booking is None or not self.verify_access(ctx, document, booking):
            raise ForbiddenError("Access denied")

        role = self.permission_role(ctx)
        if not permissions.has_permission(role, document.category, "delete"):
            raise ForbiddenError("You do not have permission to delete this document type")

        self.repo.soft_delete(self.db, document)
        try:
            storage_service.delete_object(document.s3_key)
        except Exception as e:
            logger.error(f"❌ Document {document.id} marked deleted but stored object removal failed: {e}")

        logger.info(f"🗑️ Document {document.id} deleted by {ctx.user_id}")
        AuditService.log_request(
            self.db,
            request,
            ctx.user_id,
            "document.deleted",
            "document",
            document.id,
            {"bookingId": document.booking_id, "category": document.category},
        )

    def list_for_booking(
        self,
        booking_id: str,
        ctx: UserContext,
        section: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[DocumentResponse]:
        booking = self._load_accessible_booking(booking_id, ctx)
        role = self.permission_role(ctx)
        return [
            to_response(doc, permissions.get_download_format(role, doc.category))
            for doc in self.repo.list_for_booking(self.db, booking.id, section, category)
            if permissions.has_permission(role, doc.category, "download")
        ]

    def get_permissions(self, ctx: UserContext) -> dict:
        role = self.permission_role(ctx)
        return {
            "role": ctx.document_role,
            "effectiveRole": role,
            "sections": {
                section: {
                    permission: permissions.get_available_categories_for_section(section, role, permission)
                    for permission in permissions.PERMISSIONS
                }
                for section in permissions.SECTIONS
            },
        }


def attachment_headers(document: Document, obj: dict) -> dict[str, str]:
    headers = {
        "Content-Disposition": f'attachment; filename="{sanitize_file_name(document.file_name)}"',
        "Cache-Control": "no-store, no-cache, must-revalidate, private",
        "X-Content-Type-Options": "nosniff",
        "Accept-Ranges": obj.get("accept_ranges") or "bytes",
    }
    if obj.get("content_length") is not None:
        headers["Content-Length"] = str(obj["content_length"])
    if obj.get("content_range"):
        headers["Content-Range"] = obj["content_range"]
    return headers
