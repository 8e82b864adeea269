"""Portal sync repository - Database operations for syncable documents"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Business, Client, Contract
from ...models_invoice import Invoice


class PortalSyncRepository:
    """Repository for portal sync database operations"""

    @staticmethod
    def get_invoice(db: Session, invoice_id: int) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.id == invoice_id).first()

    @staticmethod
    def get_contract(db: Session, contract_id: int) -> Optional[Contract]:
        return db.query(Contract).filter(Contract.id == contract_id).first()

    @staticmethod
    def get_business(db: Session, business_id: Optional[int]) -> Optional[Business]:
        if business_id is None:
            return None
        return db.query(Business).filter(Business.id == business_id).first()

    @staticmethod
    def get_pending_invoice_ids(db: Session, limit: int) -> list[int]:
        """Invoices and estimates flagged for upload, oldest first"""
        rows = (
            db.query(Invoice.id)
            .filter(Invoice.portal_needs_upload.is_(True))
            .order_by(Invoice.id.asc())
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]

    @staticmethod
    def get_pending_contract_ids(db: Session, limit: int) -> list[int]:
        rows = (
            db.query(Contract.id)
            .filter(Contract.portal_needs_upload.is_(True))
            .order_by(Contract.id.asc())
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]

    @staticmethod
    def get_in_flight_invoices(db: Session) -> list[Invoice]:
        return db.query(Invoice).filter(Invoice.portal_upload_in_flight.is_(True)).all()

    @staticmethod
    def get_in_flight_contracts(db: Session) -> list[Contract]:
        return db.query(Contract).filter(Contract.portal_upload_in_flight.is_(True)).all()

    @staticmethod
    def get_open_portal_estimates(db: Session, limit: int) -> list[Invoice]:
        """Newest draft/sent estimates whose client has portal access"""
        return (
            db.query(Invoice)
            .join(Client, Invoice.client_id == Client.id)
            .filter(
                Invoice.document_type == "estimate",
                Client.portal_enabled.is_(True),
                func.lower(func.trim(Invoice.estimate_status)).in_(("draft", "sent")),
            )
            .order_by(Invoice.issue_date.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def save(db: Session) -> None:
        db.commit()
