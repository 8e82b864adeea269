"""
Estimate decision pull

Clients accept or decline estimates in the portal. This pulls those decisions
back onto the local estimates. Offline or transient failures never mutate local
state; they are only counted.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models_invoice import Invoice
from .backend import PortalGateway
from .repository import PortalSyncRepository
from .schemas import EstimateSyncReport
from .service import PortalAutoSyncService

logger = logging.getLogger(__name__)

DEFAULT_MAX_ESTIMATES = 40
DECISION_STATUSES = ("accepted", "declined")


def normalize_decision(status: Optional[str]) -> Optional[str]:
    normalized = (status or "").strip().lower()
    return normalized if normalized in DECISION_STATUSES else None


def apply_estimate_decision(estimate: Invoice, status: str, decided_at: Optional[datetime]) -> None:
    estimate.estimate_status = status
    if status == "accepted":
        estimate.estimate_accepted_at = decided_at or datetime.utcnow()
    else:
        estimate.estimate_accepted_at = None


class EstimateStatusSync:
    """Applies client decisions recorded in the portal to local estimates"""

    def __init__(self, db: Session, backend: PortalGateway, sync_service: PortalAutoSyncService):
        self.db = db
        self.repo = PortalSyncRepository()
        self.backend = backend
        self.sync_service = sync_service

    async def sync(self, max_count: int = DEFAULT_MAX_ESTIMATES) -> EstimateSyncReport:
        report = EstimateSyncReport()
        estimates = self.repo.get_open_portal_estimates(self.db, max_count)

        for estimate in estimates:
            report.checked += 1
            try:
                remote = await self.backend.fetch_estimate_status(
                    business_id=estimate.business.public_id,
                    estimate_id=estimate.public_id,
                )
            except Exception as e:
                report.failed += 1
                logger.debug(f"Estimate status fetch failed id={estimate.public_id} err={e}")
                continue

            decision = normalize_decision(remote.status)
            local = (estimate.estimate_status or "").strip().lower()
            if decision is None or decision == local:
                continue

            apply_estimate_decision(estimate, decision, remote.decided_at)
            # Status is part of the fingerprint; the portal copy needs a refresh
            self.sync_service.mark_invoice_needs_upload_if_changed(estimate)
            self.repo.save(self.db)
            report.updated += 1
            logger.info(f"📬 Estimate {estimate.public_id} marked {decision} from portal")

        if report.updated or report.failed:
            logger.info(
                f"Estimate sync checked={report.checked} updated={report.updated} failed={report.failed}"
            )
        return report
