"""
Content fingerprints for portal-visible documents.

A fingerprint is a SHA-256 over an explicitly ordered list of ``key=value`` lines
covering every field that shows up in the rendered artifact. The field set is
versioned per document kind: the version string is the first hashed line, so a
change to the field set invalidates every stored hash exactly once.
"""

import hashlib
from datetime import datetime, timezone
from typing import Callable, Optional

from ...models import Business, Contract
from ...models_invoice import Invoice
from .templates import InvoiceTemplateKey, effective_invoice_template_key

INVOICE_FINGERPRINT_VERSION = "invoice-v2"
CONTRACT_FINGERPRINT_VERSION = "contract-v2"

TemplateResolver = Callable[[Invoice, Optional[Business]], InvoiceTemplateKey]


def to_epoch_ms(value: Optional[datetime]) -> int:
    """Milliseconds since the epoch; naive datetimes are read as UTC"""
    if value is None:
        return 0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


def _num(value) -> str:
    return repr(float(value or 0.0))


def _flag(value) -> str:
    return "true" if value else "false"


def _text(value) -> str:
    return value if value is not None else ""


def digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def invoice_fingerprint_lines(
    invoice: Invoice,
    business: Optional[Business],
    template_resolver: TemplateResolver = effective_invoice_template_key,
) -> list[str]:
    client = invoice.client
    effective_template = template_resolver(invoice, business)

    pieces = [
        f"version={INVOICE_FINGERPRINT_VERSION}",
        f"type={_text(invoice.document_type) or 'invoice'}",
        f"number={_text(invoice.invoice_number)}",
        f"issueMs={to_epoch_ms(invoice.issue_date)}",
        f"dueMs={to_epoch_ms(invoice.due_date)}",
        f"client={client.public_id if client is not None else ''}",
        f"subtotal={_num(invoice.subtotal)}",
        f"discount={_num(invoice.discount_amount)}",
        f"taxRate={_num(invoice.tax_rate)}",
        f"taxAmount={_num(invoice.tax_amount)}",
        f"total={_num(invoice.total)}",
        f"paid={_flag(invoice.is_paid)}",
        f"status={_text(invoice.estimate_status) or 'draft'}",
        f"notes={_text(invoice.notes)}",
        f"thankYou={_text(invoice.thank_you)}",
        f"terms={_text(invoice.terms_conditions)}",
        f"paymentTerms={_text(invoice.payment_terms)}",
        f"templateOverride={_text(invoice.invoice_template_key_override)}",
        f"effectiveTemplate={effective_template.value}",
        f"pdfKey={_text(invoice.pdf_key)}",
    ]

    # Row order is visible on the document, so it is part of the hash
    for index, item in enumerate(invoice.items):
        pieces.append(
            f"{index}|{_text(item.item_description)}|{_num(item.quantity)}"
            f"|{_num(item.unit_price)}|{_num(item.line_total)}"
        )
    return pieces


def invoice_fingerprint(
    invoice: Invoice,
    business: Optional[Business],
    template_resolver: TemplateResolver = effective_invoice_template_key,
) -> str:
    """Fingerprint of an invoice or estimate as the portal would render it"""
    return digest("\n".join(invoice_fingerprint_lines(invoice, business, template_resolver)))


def contract_fingerprint_lines(contract: Contract) -> list[str]:
    client = contract.resolved_client
    return [
        f"version={CONTRACT_FINGERPRINT_VERSION}",
        f"title={_text(contract.title)}",
        f"body={_text(contract.rendered_body)}",
        f"status={_text(contract.status) or 'draft'}",
        f"client={client.public_id if client is not None else ''}",
        f"signedAtMs={to_epoch_ms(contract.signed_at)}",
        f"signedBy={_text(contract.signed_by_name)}",
        f"template={_text(contract.template_name)}",
        f"templateCategory={_text(contract.template_category)}",
        f"pdfKey={_text(contract.pdf_key)}",
    ]


def contract_fingerprint(contract: Contract) -> str:
    """Fingerprint of a contract as the portal would render it"""
    return digest("\n".join(contract_fingerprint_lines(contract)))
