"""Invoice template keys and business-level template resolution"""

from enum import Enum
from typing import Optional

from ...models import Business
from ...models_invoice import Invoice


class InvoiceTemplateKey(str, Enum):
    CLASSIC_BUSINESS = "classic_business"
    MODERN_CLEAN = "modern_clean"
    BOLD_HEADER = "bold_header"
    MINIMAL_COMPACT = "minimal_compact"
    CREATIVE_STUDIO = "creative_studio"
    CONTRACTOR_TRADES = "contractor_trades"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["InvoiceTemplateKey"]:
        """Return the key for a stored value, or None when blank or unknown"""
        if raw is None or not raw.strip():
            return None
        try:
            return cls(raw)
        except ValueError:
            return None


DEFAULT_TEMPLATE_KEY = InvoiceTemplateKey.MODERN_CLEAN

# Accent colors used by the PDF renderer, one per template
TEMPLATE_ACCENTS = {
    InvoiceTemplateKey.CLASSIC_BUSINESS: "#1f2937",
    InvoiceTemplateKey.MODERN_CLEAN: "#14b8a6",
    InvoiceTemplateKey.BOLD_HEADER: "#b91c1c",
    InvoiceTemplateKey.MINIMAL_COMPACT: "#475569",
    InvoiceTemplateKey.CREATIVE_STUDIO: "#7c3aed",
    InvoiceTemplateKey.CONTRACTOR_TRADES: "#d97706",
}


def effective_invoice_template_key(
    invoice: Invoice, business: Optional[Business]
) -> InvoiceTemplateKey:
    """Invoice override wins, then the business default, then modern_clean"""
    override = InvoiceTemplateKey.parse(invoice.invoice_template_key_override)
    if override is not None:
        return override
    if business is not None:
        business_default = InvoiceTemplateKey.parse(business.default_invoice_template_key)
        if business_default is not None:
            return business_default
    return DEFAULT_TEMPLATE_KEY
