"""
Persisted PDF copies in Cloudflare R2.

Writing a copy sets the document's ``pdf_key``. The key is part of the content
fingerprint, so moving a document's stored PDF invalidates its portal copy.
"""

import logging
from typing import Optional

import boto3
from botocore.config import Config
from sqlalchemy.orm import Session

from ...config import R2_ACCESS_KEY_ID, R2_ACCOUNT_ID, R2_BUCKET_NAME, R2_SECRET_ACCESS_KEY
from ...models import Business, Contract
from ...models_invoice import Invoice

logger = logging.getLogger(__name__)


def get_r2_client():
    """Create and return an R2 client."""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


def invoice_pdf_key(invoice: Invoice) -> str:
    folder = "estimates" if invoice.is_estimate else "invoices"
    return f"{folder}/{invoice.business.public_id}/{invoice.public_id}.pdf"


def contract_pdf_key(contract: Contract) -> str:
    return f"contracts/{contract.business.public_id}/{contract.public_id}.pdf"


class DocumentPDFStore:
    """Writes rendered document PDFs to R2 and records their keys"""

    def __init__(self, db: Session, renderer, r2_client=None, bucket: str = R2_BUCKET_NAME):
        self.db = db
        self.renderer = renderer
        self.r2 = r2_client if r2_client is not None else get_r2_client()
        self.bucket = bucket

    def _put(self, key: str, pdf_bytes: bytes) -> None:
        try:
            self.r2.put_object(
                Bucket=self.bucket, Key=key, Body=pdf_bytes, ContentType="application/pdf"
            )
        except Exception as e:
            logger.error(f"❌ R2 upload failed for {key}: {e}")
            raise
        logger.info(f"✅ PDF stored in R2: {key}")

    def persist_invoice_pdf(self, invoice: Invoice, business: Optional[Business] = None) -> str:
        """Render and store an invoice/estimate PDF; returns the R2 key"""
        pdf_bytes = self.renderer.render_invoice(invoice, business or invoice.business)
        key = invoice_pdf_key(invoice)
        self._put(key, pdf_bytes)
        if invoice.pdf_key != key:
            invoice.pdf_key = key
        self.db.commit()
        return key

    def persist_contract_pdf(self, contract: Contract, business: Optional[Business] = None) -> str:
        """Render and store a contract PDF; returns the R2 key"""
        pdf_bytes = self.renderer.render_contract(contract, business or contract.business)
        key = contract_pdf_key(contract)
        self._put(key, pdf_bytes)
        if contract.pdf_key != key:
            contract.pdf_key = key
        self.db.commit()
        return key
