"""
Invoice, Estimate and Line Item Models
"""

from datetime import datetime, timedelta

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import PortalSyncMixin, generate_public_id


def default_due_date():
    return datetime.utcnow() + timedelta(days=14)


class Invoice(PortalSyncMixin, Base):
    """Invoice model; estimates are stored here with document_type="estimate" """

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)

    document_type = Column(String(20), nullable=False, default="invoice")  # invoice, estimate
    invoice_number = Column(String(50), nullable=False, default="")

    # Dates
    issue_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    due_date = Column(DateTime, nullable=False, default=default_due_date)

    # Text blocks
    payment_terms = Column(String(255), nullable=False, default="Net 14")
    notes = Column(Text, nullable=False, default="")
    thank_you = Column(Text, nullable=False, default="")
    terms_conditions = Column(Text, nullable=False, default="")

    # Pricing
    tax_rate = Column(Float, nullable=False, default=0.0)  # Fraction, e.g. 0.08
    discount_amount = Column(Float, nullable=False, default=0.0)
    is_paid = Column(Boolean, nullable=False, default=False)

    # Estimate workflow
    estimate_status = Column(String(50), nullable=False, default="draft")  # draft, sent, accepted, declined
    estimate_accepted_at = Column(DateTime, nullable=True)

    invoice_template_key_override = Column(String(50), nullable=True)

    # PDF
    pdf_key = Column(String(500), nullable=True)  # R2 key for persisted invoice PDF

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    business = relationship("Business")
    client = relationship("Client", back_populates="invoices")
    items = relationship(
        "LineItem",
        back_populates="invoice",
        order_by="LineItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def is_estimate(self) -> bool:
        return self.document_type == "estimate"

    @property
    def subtotal(self) -> float:
        return sum(item.line_total for item in self.items)

    @property
    def discounted_subtotal(self) -> float:
        return max(0.0, self.subtotal - (self.discount_amount or 0.0))

    @property
    def tax_amount(self) -> float:
        return self.discounted_subtotal * (self.tax_rate or 0.0)

    @property
    def total(self) -> float:
        return self.discounted_subtotal + self.tax_amount


class LineItem(Base):
    """A billable row on an invoice or estimate"""

    __tablename__ = "line_items"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), nullable=False, default=generate_public_id)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # Display order on the document

    item_description = Column(String(1000), nullable=False, default="")
    quantity = Column(Float, nullable=False, default=1.0)
    unit_price = Column(Float, nullable=False, default=0.0)

    invoice = relationship("Invoice", back_populates="items")

    @property
    def line_total(self) -> float:
        return (self.quantity or 0.0) * (self.unit_price or 0.0)
