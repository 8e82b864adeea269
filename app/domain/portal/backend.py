"""
Portal backend client

Talks to the client-facing portal backend: PDF blob uploads, directory indexing
(via the portal-session seed route) and estimate decision lookups. Every request
is authenticated with the admin key in the ``x-portal-admin`` header.
"""

import base64
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx

from ...config import PORTAL_ADMIN_KEY, PORTAL_BACKEND_URL, PORTAL_HTTP_TIMEOUT_SECONDS
from ...models import Contract
from ...models_invoice import Invoice
from .errors import (
    MissingAdminKeyError,
    PortalDecodeError,
    PortalHTTPError,
    PortalNotLinkedError,
    PortalTransportError,
)

logger = logging.getLogger(__name__)

INDEXABLE_ESTIMATE_STATUSES = ("sent", "accepted", "declined")


@dataclass(frozen=True)
class UploadedBlob:
    url: str
    file_name: str


@dataclass(frozen=True)
class EstimateStatus:
    status: str
    decided_at: Optional[datetime]


class PortalGateway(Protocol):
    """Backend surface the sync orchestrator depends on"""

    async def upload_invoice_pdf(
        self, business_id: str, invoice_id: str, file_name: str, pdf_bytes: bytes
    ) -> UploadedBlob: ...

    async def upload_contract_pdf(
        self, business_id: str, contract_id: str, file_name: str, pdf_bytes: bytes
    ) -> UploadedBlob: ...

    async def index_invoice(self, invoice: Invoice) -> None: ...

    async def index_estimate(self, estimate: Invoice) -> None: ...

    async def index_contract(self, contract: Contract) -> None: ...

    async def fetch_estimate_status(self, business_id: str, estimate_id: str) -> EstimateStatus: ...


def to_cents(dollars: float) -> int:
    return int(round((dollars or 0.0) * 100))


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_portal_date(raw: Optional[str]) -> Optional[datetime]:
    """Parse epoch seconds, epoch milliseconds or ISO-8601 into a naive UTC datetime"""
    if raw is None:
        return None
    trimmed = str(raw).strip()
    if not trimmed:
        return None

    try:
        value = float(trimmed)
    except ValueError:
        value = None
    if value is not None:
        if value > 1_000_000_000_000:
            value = value / 1000.0
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)

    try:
        parsed = datetime.fromisoformat(trimmed.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def build_portal_line_items(invoice: Invoice) -> list[dict[str, Any]]:
    """Line items as the portal stores them; a discount becomes its own negative row"""
    out = []
    for item in invoice.items:
        out.append(
            {
                "id": item.public_id,
                "name": item.item_description or "Item",
                "description": "",
                "quantity": item.quantity,
                "unitAmountCents": to_cents(item.unit_price),
                "amountCents": to_cents(item.line_total),
            }
        )

    if (invoice.discount_amount or 0) > 0:
        discount_cents = to_cents(invoice.discount_amount)
        out.append(
            {
                "id": "discount",
                "name": "Discount",
                "description": "",
                "quantity": 1,
                "unitAmountCents": -discount_cents,
                "amountCents": -discount_cents,
            }
        )
    return out


class PortalBackend:
    """HTTP client for the portal backend"""

    SEED_PATH = "/api/portal-session/seed"
    INVOICE_UPLOAD_PATH = "/api/portal/invoice/pdf-upload"
    CONTRACT_UPLOAD_PATH = "/api/portal/contract/pdf-upload"
    ESTIMATE_STATUS_PATH = "/api/portal/estimate/status"

    def __init__(
        self,
        base_url: str = PORTAL_BACKEND_URL,
        admin_key: Optional[str] = PORTAL_ADMIN_KEY,
        timeout: float = PORTAL_HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.admin_key = admin_key
        self.timeout = timeout
        self.transport = transport

    def _require_admin_key(self) -> str:
        key = (self.admin_key or "").strip()
        if not key:
            raise MissingAdminKeyError()
        return key

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        admin_key = self._require_admin_key()
        headers = {"x-portal-admin": admin_key}

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as http_client:
                response = await http_client.request(
                    method, path, json=json_body, params=params, headers=headers
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Portal backend {method} {path} failed: {e}")
            raise PortalTransportError(str(e)) from e

        raw = response.text
        if not 200 <= response.status_code < 300:
            logger.error(f"❌ Portal backend {method} {path} returned {response.status_code}")
            raise PortalHTTPError(response.status_code, raw)

        try:
            payload = response.json()
        except ValueError as e:
            raise PortalDecodeError(raw) from e
        if not isinstance(payload, dict):
            raise PortalDecodeError(raw)
        return payload

    async def seed_token(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Calls the portal-session seed route, which also indexes document metadata"""
        return await self._request("POST", self.SEED_PATH, json_body=payload)

    async def _upload_pdf(
        self, path: str, id_field: str, business_id: str, document_id: str, file_name: str, pdf_bytes: bytes
    ) -> UploadedBlob:
        logger.info(
            f"⬆️ Uploading PDF {file_name} for {id_field}={document_id} ({len(pdf_bytes)} bytes)"
        )
        payload = {
            "businessId": business_id,
            id_field: document_id,
            "fileName": file_name,
            "pdfBase64": base64.b64encode(pdf_bytes).decode("ascii"),
        }
        decoded = await self._request("POST", path, json_body=payload)

        error = decoded.get("error")
        if error:
            raise PortalHTTPError(200, str(error))
        url = decoded.get("url")
        if not url:
            raise PortalDecodeError(str(decoded))

        logger.info(f"✅ Uploaded PDF: {url}")
        return UploadedBlob(url=url, file_name=decoded.get("fileName") or file_name)

    async def upload_invoice_pdf(
        self, business_id: str, invoice_id: str, file_name: str, pdf_bytes: bytes
    ) -> UploadedBlob:
        return await self._upload_pdf(
            self.INVOICE_UPLOAD_PATH, "invoiceId", business_id, invoice_id, file_name, pdf_bytes
        )

    async def upload_contract_pdf(
        self, business_id: str, contract_id: str, file_name: str, pdf_bytes: bytes
    ) -> UploadedBlob:
        return await self._upload_pdf(
            self.CONTRACT_UPLOAD_PATH, "contractId", business_id, contract_id, file_name, pdf_bytes
        )

    async def index_invoice(self, invoice: Invoice) -> None:
        client = invoice.client
        if client is None:
            raise PortalNotLinkedError("invoice")
        if not client.portal_enabled:
            return

        line_items = build_portal_line_items(invoice)
        body = {
            "businessId": invoice.business.public_id,
            "clientId": client.public_id,
            "scope": "invoice",
            "mode": "live",
            "invoiceId": invoice.public_id,
            "invoiceNumber": invoice.invoice_number,
            "amountCents": to_cents(invoice.total),
            "subtotalCents": sum(row["amountCents"] for row in line_items),
            "taxCents": to_cents(invoice.tax_amount),
            "lineItems": line_items,
            "currency": "usd",
            "status": "paid" if invoice.is_paid else "unpaid",
            "title": f"Invoice {invoice.invoice_number}",
            "updatedAtMs": now_ms(),
            "clientPortalEnabled": client.portal_enabled,
        }
        await self.seed_token(body)

    async def index_estimate(self, estimate: Invoice) -> None:
        if not estimate.is_estimate:
            return
        client = estimate.client
        if client is None:
            raise PortalNotLinkedError("estimate")
        if not client.portal_enabled:
            return

        status = (estimate.estimate_status or "").strip().lower()
        if status not in INDEXABLE_ESTIMATE_STATUSES:
            logger.info(f"⏭️ Estimate {estimate.public_id} not indexed (status: {status or 'draft'})")
            return

        line_items = build_portal_line_items(estimate)
        body = {
            "businessId": estimate.business.public_id,
            "clientId": client.public_id,
            "scope": "directory",
            "mode": "live",
            "documentType": "estimate",
            "estimateId": estimate.public_id,
            "invoiceId": estimate.public_id,
            "invoiceNumber": estimate.invoice_number,
            "amountCents": to_cents(estimate.total),
            "subtotalCents": sum(row["amountCents"] for row in line_items),
            "taxCents": to_cents(estimate.tax_amount),
            "lineItems": line_items,
            "currency": "usd",
            "status": status,
            "title": f"Estimate {estimate.invoice_number}",
            "updatedAtMs": now_ms(),
            "clientPortalEnabled": client.portal_enabled,
        }
        await self.seed_token(body)

    async def index_contract(self, contract: Contract) -> None:
        # scope=directory so the contract shows up in the client's directory list
        client = contract.resolved_client
        if client is None:
            raise PortalNotLinkedError("contract")
        if not client.portal_enabled:
            return

        body = {
            "businessId": contract.business.public_id,
            "clientId": client.public_id,
            "scope": "directory",
            "mode": "live",
            "contractId": contract.public_id,
            "contractTitle": contract.title,
            "status": contract.status,
            "title": contract.title,
            "updatedAtMs": now_ms(),
            "contractBody": contract.rendered_body,
            "clientPortalEnabled": client.portal_enabled,
        }
        await self.seed_token(body)

    async def fetch_estimate_status(self, business_id: str, estimate_id: str) -> EstimateStatus:
        decoded = await self._request(
            "GET",
            self.ESTIMATE_STATUS_PATH,
            params={"businessId": business_id, "estimateId": estimate_id},
        )
        status = (decoded.get("status") or "draft").strip().lower() or "draft"

        decided_at = None
        for field in ("decidedAt", "acceptedAt", "declinedAt", "updatedAt"):
            decided_at = parse_portal_date(decoded.get(field))
            if decided_at is not None:
                break
        return EstimateStatus(status=status, decided_at=decided_at)
