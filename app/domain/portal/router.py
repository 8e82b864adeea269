"""Portal sync router - Triggers for document save/close/status-change events"""

import logging
import secrets
from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...models import Contract
from ...models_invoice import Invoice
from .backend import PortalBackend, PortalGateway
from .estimate_sync import DEFAULT_MAX_ESTIMATES, EstimateStatusSync
from .pdf_service import PortalPDFRenderer
from .schemas import (
    DocumentKind,
    EstimateSyncReport,
    PortalSyncStateResponse,
    SyncOutcome,
    TouchResponse,
)
from .service import PortalAutoSyncService
from .storage import DocumentPDFStore

logger = logging.getLogger(__name__)


def verify_sync_key(x_sync_key: Optional[str] = Header(None)) -> None:
    """Require the shared sync key on every portal sync route"""
    expected = config.PORTAL_SYNC_API_KEY or ""
    if not x_sync_key or not secrets.compare_digest(x_sync_key, expected):
        raise HTTPException(status_code=401, detail="Invalid sync key")


router = APIRouter(
    prefix="/portal-sync", tags=["Portal Sync"], dependencies=[Depends(verify_sync_key)]
)


def get_portal_backend() -> PortalGateway:
    return PortalBackend()


def get_pdf_renderer() -> PortalPDFRenderer:
    return PortalPDFRenderer()


def get_sync_service(
    db: Session = Depends(get_db),
    backend: PortalGateway = Depends(get_portal_backend),
    renderer: PortalPDFRenderer = Depends(get_pdf_renderer),
) -> PortalAutoSyncService:
    """Dependency injection for PortalAutoSyncService"""
    return PortalAutoSyncService(db, backend, renderer)


def get_pdf_store(
    db: Session = Depends(get_db),
    renderer: PortalPDFRenderer = Depends(get_pdf_renderer),
) -> DocumentPDFStore:
    return DocumentPDFStore(db, renderer)


async def enqueue_reconcile(kind: str, document_id: int) -> Optional[str]:
    """Queue a reconcile on the ARQ worker; returns the job id"""
    from arq import create_pool

    from ...worker import get_redis_settings

    pool = await create_pool(get_redis_settings())
    try:
        job = await pool.enqueue_job("reconcile_document_task", kind, document_id)
    finally:
        await pool.close()
    return job.job_id if job else None


def get_enqueuer():
    return enqueue_reconcile


def load_document(
    service: PortalAutoSyncService, kind: DocumentKind, document_id: int
) -> Union[Invoice, Contract]:
    if kind == DocumentKind.CONTRACT:
        document = service.repo.get_contract(service.db, document_id)
    else:
        document = service.repo.get_invoice(service.db, document_id)
        if document is not None and document.is_estimate != (kind == DocumentKind.ESTIMATE):
            document = None
    if document is None:
        raise HTTPException(status_code=404, detail=f"{kind.value.capitalize()} not found")
    return document


def to_state_response(
    service: PortalAutoSyncService, kind: DocumentKind, document: Union[Invoice, Contract]
) -> PortalSyncStateResponse:
    return PortalSyncStateResponse(
        kind=kind,
        id=document.id,
        publicId=document.public_id,
        label=service.sync_label(document),
        needsUpload=bool(document.portal_needs_upload),
        uploadInFlight=bool(document.portal_upload_in_flight),
        lastUploadedHash=document.portal_last_uploaded_hash,
        lastUploadedBlobUrl=document.portal_last_uploaded_blob_url,
        lastUploadedAtMs=document.portal_last_uploaded_at_ms,
        lastUploadError=document.portal_last_upload_error,
    )


@router.post("/estimates/sync-status", response_model=EstimateSyncReport)
async def sync_estimate_statuses(
    max_count: int = Query(DEFAULT_MAX_ESTIMATES, ge=1, le=200),
    service: PortalAutoSyncService = Depends(get_sync_service),
):
    """Pull accept/decline decisions made in the portal onto local estimates"""
    return await EstimateStatusSync(service.db, service.backend, service).sync(max_count)


@router.get("/{kind}/{document_id}", response_model=PortalSyncStateResponse)
async def get_sync_state(
    kind: DocumentKind,
    document_id: int,
    service: PortalAutoSyncService = Depends(get_sync_service),
):
    """Sync state for the document detail screen"""
    document = load_document(service, kind, document_id)
    return to_state_response(service, kind, document)


@router.post("/{kind}/{document_id}/touch", response_model=TouchResponse)
async def touch_document(
    kind: DocumentKind,
    document_id: int,
    service: PortalAutoSyncService = Depends(get_sync_service),
):
    """Called after a save; flags the document when its portal copy is stale"""
    document = load_document(service, kind, document_id)
    if isinstance(document, Contract):
        needs_upload = service.mark_contract_needs_upload_if_changed(document)
    else:
        needs_upload = service.mark_invoice_needs_upload_if_changed(document)
    service.db.commit()
    return TouchResponse(kind=kind, id=document_id, needsUpload=needs_upload)


@router.post("/{kind}/{document_id}/reconcile", response_model=SyncOutcome)
async def reconcile_document(
    kind: DocumentKind,
    document_id: int,
    service: PortalAutoSyncService = Depends(get_sync_service),
):
    """Run a reconcile inline and return its outcome"""
    outcome = await service.reconcile(kind, document_id)
    logger.info(f"🔄 Reconcile {kind.value} {document_id}: {outcome.status.value}")
    return outcome


@router.post("/{kind}/{document_id}/enqueue")
async def enqueue_document(
    kind: DocumentKind,
    document_id: int,
    enqueue=Depends(get_enqueuer),
):
    """Queue a reconcile on the background worker"""
    try:
        job_id = await enqueue(kind.value, document_id)
    except Exception as e:
        logger.error(f"❌ Failed to queue reconcile for {kind.value} {document_id}: {e}")
        raise HTTPException(status_code=503, detail="Background queue unavailable")
    return {"jobId": job_id, "status": "queued"}


@router.post("/{kind}/{document_id}/store-pdf")
async def store_document_pdf(
    kind: DocumentKind,
    document_id: int,
    service: PortalAutoSyncService = Depends(get_sync_service),
    store: DocumentPDFStore = Depends(get_pdf_store),
):
    """Persist the rendered PDF to R2 and flag the portal copy if the key moved"""
    document = load_document(service, kind, document_id)
    try:
        if isinstance(document, Contract):
            pdf_key = store.persist_contract_pdf(document)
            needs_upload = service.mark_contract_needs_upload_if_changed(document)
        else:
            pdf_key = store.persist_invoice_pdf(document)
            needs_upload = service.mark_invoice_needs_upload_if_changed(document)
    except Exception as e:
        logger.error(f"❌ Failed to store PDF for {kind.value} {document_id}: {e}")
        service.db.rollback()
        raise HTTPException(status_code=502, detail="Failed to store PDF")
    service.db.commit()
    return {"pdfKey": pdf_key, "needsUpload": needs_upload}
