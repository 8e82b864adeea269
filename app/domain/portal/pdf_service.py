"""
Portal PDF Renderer
Renders invoices, estimates and contracts to PDF bytes with ReportLab
"""

import io
import logging
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ...models import Business, Contract
from ...models_invoice import Invoice
from .errors import PortalRenderError
from .templates import TEMPLATE_ACCENTS, InvoiceTemplateKey, effective_invoice_template_key

logger = logging.getLogger(__name__)

# Contracts always use the classic palette
CONTRACT_ACCENT = TEMPLATE_ACCENTS[InvoiceTemplateKey.CLASSIC_BUSINESS]


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _para(text: Optional[str], style) -> Paragraph:
    # Paragraph parses markup; user text must be escaped and keep its line breaks
    return Paragraph(escape(text or "").replace("\n", "<br/>"), style)


class PortalPDFRenderer:
    """Render portal-visible documents to PDF"""

    def __init__(self):
        self.margin = 0.75 * inch
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    def _styles(self, accent):
        styles = getSampleStyleSheet()
        return {
            "title": ParagraphStyle(
                "DocTitle",
                parent=styles["Heading1"],
                fontSize=22,
                textColor=accent,
                spaceAfter=8,
            ),
            "heading": ParagraphStyle(
                "DocHeading",
                parent=styles["Heading2"],
                fontSize=12,
                textColor=self.dark_gray,
                spaceBefore=14,
                spaceAfter=6,
            ),
            "body": ParagraphStyle(
                "DocBody",
                parent=styles["Normal"],
                fontSize=10,
                textColor=self.dark_gray,
                spaceAfter=4,
                leading=14,
            ),
        }

    def _build(self, story: list, title: str) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=title,
        )
        doc.build(story)
        return buffer.getvalue()

    def render_invoice(self, invoice: Invoice, business: Optional[Business]) -> bytes:
        """Render an invoice or estimate; colors follow the effective template"""
        try:
            template_key = effective_invoice_template_key(invoice, business)
            accent = colors.HexColor(TEMPLATE_ACCENTS[template_key])
            styles = self._styles(accent)
            label = "Estimate" if invoice.is_estimate else "Invoice"
            number = (invoice.invoice_number or "").strip()

            story = [_para(f"{label} {number}".strip(), styles["title"])]

            if business is not None:
                for line in (business.name, business.address, business.phone, business.email):
                    if line:
                        story.append(_para(line, styles["body"]))

            story.append(_para("Bill To", styles["heading"]))
            client = invoice.client
            if client is not None:
                for line in (client.name, client.address, client.email, client.phone):
                    if line:
                        story.append(_para(line, styles["body"]))

            dates = f"Issued {invoice.issue_date:%Y-%m-%d}"
            if not invoice.is_estimate:
                dates += f"  |  Due {invoice.due_date:%Y-%m-%d}  |  {invoice.payment_terms or ''}"
            story.append(Spacer(1, 6))
            story.append(_para(dates, styles["body"]))
            story.append(Spacer(1, 12))

            rows = [["Description", "Qty", "Unit Price", "Amount"]]
            for item in invoice.items:
                rows.append(
                    [
                        _para(item.item_description, styles["body"]),
                        f"{item.quantity:g}",
                        _money(item.unit_price),
                        _money(item.line_total),
                    ]
                )
            table = Table(rows, colWidths=[3.6 * inch, 0.7 * inch, 1.1 * inch, 1.1 * inch])
            table.setStyle(
                TableStyle(
                    [
                        ("BACKGROUND", (0, 0), (-1, 0), accent),
                        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                        ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                        ("VALIGN", (0, 0), (-1, -1), "TOP"),
                        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, self.light_gray]),
                    ]
                )
            )
            story.append(table)
            story.append(Spacer(1, 12))

            totals = [["Subtotal", _money(invoice.subtotal)]]
            if (invoice.discount_amount or 0) > 0:
                totals.append(["Discount", f"-{_money(invoice.discount_amount)}"])
            totals.append([f"Tax ({(invoice.tax_rate or 0) * 100:g}%)", _money(invoice.tax_amount)])
            totals.append(["Total", _money(invoice.total)])
            if invoice.is_paid and not invoice.is_estimate:
                totals.append(["Status", "PAID"])
            totals_table = Table(totals, colWidths=[5.4 * inch, 1.1 * inch])
            totals_table.setStyle(
                TableStyle(
                    [
                        ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
                        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                        ("LINEABOVE", (0, -1), (-1, -1), 1, accent),
                    ]
                )
            )
            story.append(totals_table)

            for heading, text in (
                ("Notes", invoice.notes),
                ("Terms & Conditions", invoice.terms_conditions),
            ):
                if text and text.strip():
                    story.append(_para(heading, styles["heading"]))
                    story.append(_para(text, styles["body"]))
            if invoice.thank_you and invoice.thank_you.strip():
                story.append(Spacer(1, 12))
                story.append(_para(invoice.thank_you, styles["body"]))

            pdf_bytes = self._build(story, f"{label} {number}".strip())
        except Exception as e:
            logger.error(f"❌ Invoice PDF rendering failed for {invoice.public_id}: {e}")
            raise PortalRenderError(str(e)) from e

        logger.info(f"📄 Rendered {label.lower()} PDF {invoice.public_id} ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def render_contract(self, contract: Contract, business: Optional[Business]) -> bytes:
        """Render a contract with its body and signature block"""
        try:
            styles = self._styles(colors.HexColor(CONTRACT_ACCENT))
            title = (contract.title or "").strip() or "Contract"
            story = [_para(title, styles["title"])]

            client = contract.resolved_client
            parties = []
            if business is not None and business.name:
                parties.append(f"Provider: {business.name}")
            if client is not None and client.name:
                parties.append(f"Client: {client.name}")
            for line in parties:
                story.append(_para(line, styles["body"]))
            story.append(Spacer(1, 12))

            for block in (contract.rendered_body or "").split("\n\n"):
                if block.strip():
                    story.append(_para(block.strip(), styles["body"]))
                    story.append(Spacer(1, 6))

            story.append(_para("Signature", styles["heading"]))
            if contract.signed_at is not None:
                signer = contract.signed_by_name or "Client"
                story.append(
                    _para(f"Signed by {signer} on {contract.signed_at:%Y-%m-%d}", styles["body"])
                )
            else:
                story.append(_para("Not yet signed", styles["body"]))

            pdf_bytes = self._build(story, title)
        except Exception as e:
            logger.error(f"❌ Contract PDF rendering failed for {contract.public_id}: {e}")
            raise PortalRenderError(str(e)) from e

        logger.info(f"📄 Rendered contract PDF {contract.public_id} ({len(pdf_bytes)} bytes)")
        return pdf_bytes
