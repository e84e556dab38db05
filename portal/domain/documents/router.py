"""Document router - FastAPI endpoints for booking documents"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ...auth import UserContext, get_current_user_context
from ...database import get_db
from ...rate_limiter import document_download_rate_limit, document_upload_rate_limit
from .schemas import DocumentResponse, PermissionsResponse
from .service import DocumentService, attachment_headers, to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["Documents"])


def get_document_service(db: Session = Depends(get_db)) -> DocumentService:
    """Dependency injection for DocumentService"""
    return DocumentService(db)


def _iter_body(body, chunk_size: int = 64 * 1024):
    if hasattr(body, "iter_chunks"):
        yield from body.iter_chunks(chunk_size)
    else:
        yield body.read()


@router.post("", status_code=201, response_model=DocumentResponse)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    bookingId: str = Form(...),
    section: str = Form(...),
    category: str = Form(...),
    description: Optional[str] = Form(None),
    _: None = Depends(document_upload_rate_limit),
    ctx: UserContext = Depends(get_current_user_context),
    service: DocumentService = Depends(get_document_service),
):
    """Upload a document to a booking"""
    content = await file.read()
    document = await service.upload(
        ctx,
        request,
        booking_id=bookingId,
        section=section,
        category=category,
        file_name=file.filename or "",
        mime_type=file.content_type or "",
        content=content,
        description=description,
    )
    return to_response(document)


@router.get("/permissions", response_model=PermissionsResponse)
async def get_document_permissions(
    ctx: UserContext = Depends(get_current_user_context),
    service: DocumentService = Depends(get_document_service),
):
    return service.get_permissions(ctx)


@router.get("/booking/{booking_id}")
async def list_booking_documents(
    booking_id: str,
    section: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    ctx: UserContext = Depends(get_current_user_context),
    service: DocumentService = Depends(get_document_service),
):
    documents = service.list_for_booking(booking_id, ctx, section, category)
    return {"success": True, "documents": documents}


@router.get("/{document_id}")
def download_document(
    document_id: str,
    request: Request,
    _: None = Depends(document_download_rate_limit),
    ctx: UserContext = Depends(get_current_user_context),
    service: DocumentService = Depends(get_document_service),
):
    """Stream a document to the caller"""
    document, obj = service.download(document_id, ctx, request)
    return StreamingResponse(
        _iter_body(obj["body"]),
        status_code=206 if obj.get("content_range") else 200,
        media_type=document.mime_type,
        headers=attachment_headers(document, obj),
    )


@router.delete("/{document_id}")
def delete_document(
    document_id: str,
    request: Request,
    ctx: UserContext = Depends(get_current_user_context),
    service: DocumentService = Depends(get_document_service),
):
    service.delete(document_id, ctx, request)
    return {"success": True, "message": "Document deleted successfully"}
