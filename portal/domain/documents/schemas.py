"""Document domain schemas - Pydantic models for responses"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

DocumentSection = Literal["ime_documents", "supplementary_documents"]
DocumentCategory = Literal["consent_form", "document_brief", "dictation", "draft_report", "final_report"]


class DocumentResponse(BaseModel):
    """Schema for document metadata (storage location is never exposed)"""

    id: str
    bookingId: str
    uploadedById: str
    section: str
    category: str
    fileName: str
    fileSize: int
    mimeType: str
    description: Optional[str] = None
    createdAt: Optional[datetime] = None
    downloadFormat: Optional[str] = None


class SectionPermissions(BaseModel):
    upload: list[str]
    download: list[str]
    delete: list[str]


class PermissionsResponse(BaseModel):
    role: str
    effectiveRole: str
    sections: dict[str, SectionPermissions]
