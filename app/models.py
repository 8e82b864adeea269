import uuid

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class PortalSyncMixin:
    """Sync-state columns shared by every document mirrored to the client portal"""

    portal_needs_upload = Column(Boolean, nullable=False, default=False)
    portal_upload_in_flight = Column(Boolean, nullable=False, default=False)
    portal_upload_started_at_ms = Column(BigInteger, nullable=True)
    portal_last_uploaded_hash = Column(String(64), nullable=True)
    portal_last_uploaded_blob_url = Column(String(1000), nullable=True)
    portal_last_uploaded_at_ms = Column(BigInteger, nullable=True)
    portal_last_upload_error = Column(String(240), nullable=True)


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    # Applies to invoices without their own template override
    default_invoice_template_key = Column(String(50), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    clients = relationship("Client", back_populates="business", cascade="all, delete-orphan")


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    portal_enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    business = relationship("Business", back_populates="clients")
    invoices = relationship("Invoice", back_populates="client")
    contracts = relationship("Contract", back_populates="client")


class Contract(PortalSyncMixin, Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    # Estimate the contract was generated from (an Invoice row with document_type="estimate")
    estimate_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)

    title = Column(String(255), nullable=False, default="")
    template_name = Column(String(255), nullable=False, default="")
    template_category = Column(String(100), nullable=False, default="")
    rendered_body = Column(Text, nullable=False, default="")
    pdf_key = Column(String(500), nullable=True)  # R2 key for persisted contract PDF

    status = Column(String(50), nullable=False, default="draft")  # draft, sent, signed, cancelled
    signed_at = Column(DateTime, nullable=True)
    signed_by_name = Column(String(255), nullable=False, default="")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    business = relationship("Business")
    client = relationship("Client", back_populates="contracts")
    invoice = relationship("Invoice", foreign_keys=[invoice_id])
    estimate = relationship("Invoice", foreign_keys=[estimate_id])

    @property
    def resolved_client(self):
        """Direct client, falling back to the linked invoice's or estimate's client"""
        if self.client is not None:
            return self.client
        if self.invoice is not None and self.invoice.client is not None:
            return self.invoice.client
        if self.estimate is not None and self.estimate.client is not None:
            return self.estimate.client
        return None
