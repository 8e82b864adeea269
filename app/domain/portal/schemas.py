"""Portal sync schemas - Pydantic models for outcomes and API responses"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class DocumentKind(str, Enum):
    INVOICE = "invoice"
    ESTIMATE = "estimate"
    CONTRACT = "contract"


class SyncStatus(str, Enum):
    INELIGIBLE = "ineligible"
    SKIPPED_UNCHANGED = "skipped_unchanged"
    UPLOADED = "uploaded"
    FAILED = "failed"


class SyncOutcome(BaseModel):
    """Result of one reconciliation attempt"""

    status: SyncStatus
    message: Optional[str] = None

    @classmethod
    def ineligible(cls) -> "SyncOutcome":
        return cls(status=SyncStatus.INELIGIBLE)

    @classmethod
    def skipped_unchanged(cls) -> "SyncOutcome":
        return cls(status=SyncStatus.SKIPPED_UNCHANGED)

    @classmethod
    def uploaded(cls) -> "SyncOutcome":
        return cls(status=SyncStatus.UPLOADED)

    @classmethod
    def failed(cls, message: str) -> "SyncOutcome":
        return cls(status=SyncStatus.FAILED, message=message)


class PortalSyncLabel(str, Enum):
    """What the document detail screen shows for portal sync"""

    NOT_SHARED = "not_shared"
    PENDING = "pending"
    UPLOADING = "uploading"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


class PortalSyncStateResponse(BaseModel):
    kind: DocumentKind
    id: int
    publicId: str
    label: PortalSyncLabel
    needsUpload: bool
    uploadInFlight: bool
    lastUploadedHash: Optional[str] = None
    lastUploadedBlobUrl: Optional[str] = None
    lastUploadedAtMs: Optional[int] = None
    lastUploadError: Optional[str] = None


class TouchResponse(BaseModel):
    kind: DocumentKind
    id: int
    needsUpload: bool


class EstimateSyncReport(BaseModel):
    checked: int = 0
    updated: int = 0
    failed: int = 0


class SweepReport(BaseModel):
    released: int = 0
    uploaded: int = 0
    skipped: int = 0
    ineligible: int = 0
    failed: int = 0
