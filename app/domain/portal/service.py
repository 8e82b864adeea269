"""
Portal auto-sync service

Decides, per invoice/estimate/contract, whether the copy shown in the client
portal is stale, and if so renders the PDF, uploads it and re-indexes the
document. Sync state lives on the document itself (see PortalSyncMixin).

Reconciles of the same document are serialized inside one process by a
per-document asyncio lock. Across processes the persisted in-flight flag is a
best-effort guard only: a flag younger than the staleness window makes other
callers back off, an older one is treated as left behind by a dead worker.
"""

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import PORTAL_IN_FLIGHT_STALE_MINUTES
from ...models import Business, Contract
from ...models_invoice import Invoice
from .backend import PortalGateway, UploadedBlob, now_ms
from .eligibility import is_eligible, reset_ineligible_state
from .errors import format_sync_error
from .fingerprint import TemplateResolver, contract_fingerprint, invoice_fingerprint
from .repository import PortalSyncRepository
from .schemas import DocumentKind, PortalSyncLabel, SyncOutcome
from .templates import effective_invoice_template_key

logger = logging.getLogger(__name__)

IN_PROGRESS_MESSAGE = "Upload already in progress"

UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')

PortalDocument = Union[Invoice, Contract]


def portal_file_name(prefix: str, name: Optional[str], fallback: str) -> str:
    """``<prefix>-<name>.pdf`` with path-unsafe characters replaced"""
    trimmed = (name or "").strip()
    part = trimmed if trimmed else fallback
    return UNSAFE_FILENAME_CHARS.sub("-", f"{prefix}-{part}") + ".pdf"


def invoice_file_name(invoice: Invoice) -> str:
    prefix = "Estimate" if invoice.is_estimate else "Invoice"
    return portal_file_name(prefix, invoice.invoice_number, invoice.public_id[-8:])


def contract_file_name(contract: Contract) -> str:
    return portal_file_name("Contract", contract.title, contract.public_id[:8])


class DocumentLockRegistry:
    """Per-document asyncio locks; entries are dropped once nobody holds or waits"""

    def __init__(self):
        self._locks: dict[tuple[str, int], asyncio.Lock] = {}
        self._holders: dict[tuple[str, int], int] = {}

    @asynccontextmanager
    async def hold(self, key: tuple[str, int]):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


document_locks = DocumentLockRegistry()


class PortalAutoSyncService:
    """Reconciles local documents with their client portal copies"""

    def __init__(
        self,
        db: Session,
        backend: PortalGateway,
        renderer,
        clock: Callable[[], int] = now_ms,
        locks: Optional[DocumentLockRegistry] = None,
        stale_after_minutes: int = PORTAL_IN_FLIGHT_STALE_MINUTES,
        template_resolver: TemplateResolver = effective_invoice_template_key,
    ):
        self.db = db
        self.repo = PortalSyncRepository()
        self.backend = backend
        self.renderer = renderer
        self.clock = clock
        self.locks = locks if locks is not None else document_locks
        self.stale_after_ms = stale_after_minutes * 60 * 1000
        self.template_resolver = template_resolver

    # ------------------------------------------------------------------
    # Fingerprints and dirty marking
    # ------------------------------------------------------------------

    def invoice_hash(self, invoice: Invoice) -> str:
        business = self.repo.get_business(self.db, invoice.business_id)
        return invoice_fingerprint(invoice, business, self.template_resolver)

    def contract_hash(self, contract: Contract) -> str:
        return contract_fingerprint(contract)

    def mark_invoice_needs_upload_if_changed(
        self, invoice: Invoice, business: Optional[Business] = None
    ) -> bool:
        """Flag the invoice dirty when its content no longer matches the last upload.

        Does not commit; callers persist as part of their own save.
        """
        if not is_eligible(invoice):
            reset_ineligible_state(invoice)
            return False
        if business is None:
            business = self.repo.get_business(self.db, invoice.business_id)
        current_hash = invoice_fingerprint(invoice, business, self.template_resolver)
        if invoice.portal_last_uploaded_hash != current_hash:
            invoice.portal_needs_upload = True
        return bool(invoice.portal_needs_upload)

    def mark_contract_needs_upload_if_changed(self, contract: Contract) -> bool:
        """Contract counterpart of mark_invoice_needs_upload_if_changed"""
        if not is_eligible(contract):
            reset_ineligible_state(contract)
            return False
        if contract.portal_last_uploaded_hash != self.contract_hash(contract):
            contract.portal_needs_upload = True
        return bool(contract.portal_needs_upload)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, kind: DocumentKind, document_id: int) -> SyncOutcome:
        if kind == DocumentKind.CONTRACT:
            return await self.reconcile_contract(document_id)
        if kind == DocumentKind.ESTIMATE:
            return await self.reconcile_estimate(document_id)
        return await self.reconcile_invoice(document_id)

    async def reconcile_invoice(self, invoice_id: int) -> SyncOutcome:
        return await self._guarded("invoice", invoice_id, self._reconcile_invoice)

    async def reconcile_estimate(self, estimate_id: int) -> SyncOutcome:
        # Estimates are Invoice rows with document_type == "estimate"
        return await self.reconcile_invoice(estimate_id)

    async def reconcile_contract(self, contract_id: int) -> SyncOutcome:
        return await self._guarded("contract", contract_id, self._reconcile_contract)

    async def _guarded(
        self, table: str, document_id: int, run: Callable[[int], Awaitable[SyncOutcome]]
    ) -> SyncOutcome:
        async with self.locks.hold((table, document_id)):
            try:
                return await run(document_id)
            except Exception as e:
                # Fetch/persist failures outside the upload attempt itself
                logger.exception(f"❌ Portal sync for {table} {document_id} aborted: {e}")
                self._rollback()
                return SyncOutcome.failed(format_sync_error(e))

    async def _reconcile_invoice(self, invoice_id: int) -> SyncOutcome:
        invoice = self.repo.get_invoice(self.db, invoice_id)
        if invoice is None:
            logger.info(f"⏭️ Invoice {invoice_id} not found, nothing to sync")
            return SyncOutcome.ineligible()

        business = invoice.business

        async def upload() -> UploadedBlob:
            pdf_bytes = self.renderer.render_invoice(invoice, business)
            return await self.backend.upload_invoice_pdf(
                business_id=business.public_id,
                invoice_id=invoice.public_id,
                file_name=invoice_file_name(invoice),
                pdf_bytes=pdf_bytes,
            )

        async def index() -> None:
            if invoice.is_estimate:
                await self.backend.index_estimate(invoice)
            else:
                await self.backend.index_invoice(invoice)

        return await self._reconcile_document(
            label=f"{invoice.document_type or 'invoice'} {invoice.public_id}",
            document=invoice,
            compute_hash=lambda: invoice_fingerprint(invoice, business, self.template_resolver),
            upload=upload,
            index=index,
        )

    async def _reconcile_contract(self, contract_id: int) -> SyncOutcome:
        contract = self.repo.get_contract(self.db, contract_id)
        if contract is None:
            logger.info(f"⏭️ Contract {contract_id} not found, nothing to sync")
            return SyncOutcome.ineligible()

        async def upload() -> UploadedBlob:
            business = contract.business
            pdf_bytes = self.renderer.render_contract(contract, business)
            return await self.backend.upload_contract_pdf(
                business_id=business.public_id,
                contract_id=contract.public_id,
                file_name=contract_file_name(contract),
                pdf_bytes=pdf_bytes,
            )

        async def index() -> None:
            await self.backend.index_contract(contract)

        return await self._reconcile_document(
            label=f"contract {contract.public_id}",
            document=contract,
            compute_hash=lambda: contract_fingerprint(contract),
            upload=upload,
            index=index,
        )

    async def _reconcile_document(
        self,
        label: str,
        document: PortalDocument,
        compute_hash: Callable[[], str],
        upload: Callable[[], Awaitable[UploadedBlob]],
        index: Callable[[], Awaitable[None]],
    ) -> SyncOutcome:
        if not is_eligible(document):
            reset_ineligible_state(document)
            self.repo.save(self.db)
            logger.info(f"⏭️ {label} is not shared to the portal")
            return SyncOutcome.ineligible()

        if self._in_flight_elsewhere(document):
            logger.warning(f"⏳ {label} is already being uploaded by another worker")
            return SyncOutcome.failed(IN_PROGRESS_MESSAGE)

        current_hash = compute_hash()
        if document.portal_last_uploaded_hash == current_hash and not document.portal_needs_upload:
            document.portal_upload_in_flight = False
            document.portal_upload_started_at_ms = None
            document.portal_last_upload_error = None
            self.repo.save(self.db)
            logger.info(f"✅ {label} unchanged since last upload")
            return SyncOutcome.skipped_unchanged()

        # In-flight is persisted before any network call
        document.portal_upload_in_flight = True
        document.portal_upload_started_at_ms = self.clock()
        document.portal_last_upload_error = None
        self.repo.save(self.db)

        try:
            can_reuse_blob = bool(document.portal_last_uploaded_blob_url) and (
                document.portal_last_uploaded_hash == current_hash
            )
            if can_reuse_blob:
                logger.info(f"♻️ Reusing uploaded PDF for {label}")
            else:
                blob = await upload()
                # Recorded before indexing so an index-only retry can reuse the blob
                document.portal_last_uploaded_blob_url = blob.url
                document.portal_last_uploaded_hash = current_hash

            await index()

            document.portal_needs_upload = False
            document.portal_upload_in_flight = False
            document.portal_upload_started_at_ms = None
            document.portal_last_uploaded_at_ms = self.clock()
            document.portal_last_uploaded_hash = current_hash
            document.portal_last_upload_error = None
            self.repo.save(self.db)
        except asyncio.CancelledError:
            logger.warning(f"🛑 Portal upload for {label} was cancelled")
            self._record_failure(document, None)
            raise
        except Exception as e:
            message = format_sync_error(e)
            logger.error(f"❌ Portal upload failed for {label}: {message}")
            self._record_failure(document, message)
            return SyncOutcome.failed(message)

        logger.info(f"✅ Portal copy of {label} is up to date")
        return SyncOutcome.uploaded()

    def _in_flight_elsewhere(self, document: PortalDocument) -> bool:
        """True when another process holds a fresh in-flight flag on the document"""
        if not document.portal_upload_in_flight:
            return False
        started = document.portal_upload_started_at_ms
        if started is None:
            return False
        return self.clock() - started < self.stale_after_ms

    def _record_failure(self, document: PortalDocument, message: Optional[str]) -> None:
        document.portal_upload_in_flight = False
        document.portal_upload_started_at_ms = None
        document.portal_needs_upload = True
        document.portal_last_upload_error = message
        try:
            self.repo.save(self.db)
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to persist portal sync failure: {e}")
            self._rollback()

    def _rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"❌ Rollback failed: {e}")

    # ------------------------------------------------------------------
    # Maintenance and display
    # ------------------------------------------------------------------

    def release_abandoned_uploads(self) -> int:
        """Clear in-flight flags left behind by workers that died mid-upload"""
        released = 0
        now = self.clock()
        documents = self.repo.get_in_flight_invoices(self.db) + self.repo.get_in_flight_contracts(
            self.db
        )
        for document in documents:
            started = document.portal_upload_started_at_ms
            if started is not None and now - started < self.stale_after_ms:
                continue
            document.portal_upload_in_flight = False
            document.portal_upload_started_at_ms = None
            document.portal_needs_upload = True
            released += 1
        if released:
            self.repo.save(self.db)
            logger.info(f"🧹 Released {released} abandoned portal uploads")
        return released

    def sync_label(self, document: PortalDocument) -> PortalSyncLabel:
        if not is_eligible(document):
            return PortalSyncLabel.NOT_SHARED
        if document.portal_upload_in_flight:
            return PortalSyncLabel.UPLOADING
        if document.portal_last_upload_error:
            return PortalSyncLabel.FAILED
        if document.portal_needs_upload or not document.portal_last_uploaded_hash:
            return PortalSyncLabel.PENDING
        if isinstance(document, Contract):
            current_hash = self.contract_hash(document)
        else:
            current_hash = self.invoice_hash(document)
        if current_hash != document.portal_last_uploaded_hash:
            return PortalSyncLabel.PENDING
        return PortalSyncLabel.UP_TO_DATE

