"""Shared fixtures: in-memory database, fake portal backend and renderer, factories."""

import asyncio
import os
from datetime import datetime

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")
os.environ.setdefault("PORTAL_SYNC_API_KEY", "test-sync-key")
os.environ.setdefault("PORTAL_ADMIN_KEY", "test-admin-key")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models_invoice  # noqa: F401 - registers Invoice/LineItem
from app.database import Base
from app.domain.portal.backend import EstimateStatus, UploadedBlob
from app.domain.portal.service import DocumentLockRegistry, PortalAutoSyncService
from app.models import Business, Client, Contract
from app.models_invoice import Invoice, LineItem

FIXED_ISSUE = datetime(2024, 3, 1, 9, 30)
FIXED_DUE = datetime(2024, 3, 15, 9, 30)


class FakePortalBackend:
    """Records every call; failures are injected per operation"""

    def __init__(self):
        self.calls = []
        self.upload_error = None
        self.index_error = None
        self.estimate_statuses = {}
        self.status_errors = {}
        self.upload_delay = 0
        self.upload_business_ids = []

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    @property
    def upload_count(self):
        return self.count("upload_invoice_pdf") + self.count("upload_contract_pdf")

    @property
    def index_count(self):
        return (
            self.count("index_invoice") + self.count("index_estimate") + self.count("index_contract")
        )

    async def _upload(self, name, business_id, document_id, file_name, pdf_bytes):
        self.calls.append((name, document_id, file_name))
        self.upload_business_ids.append(business_id)
        await asyncio.sleep(self.upload_delay)
        if self.upload_error is not None:
            raise self.upload_error
        return UploadedBlob(
            url=f"https://blob.test/{business_id}/{document_id}/{file_name}?v={len(self.calls)}",
            file_name=file_name,
        )

    async def upload_invoice_pdf(self, business_id, invoice_id, file_name, pdf_bytes):
        return await self._upload("upload_invoice_pdf", business_id, invoice_id, file_name, pdf_bytes)

    async def upload_contract_pdf(self, business_id, contract_id, file_name, pdf_bytes):
        return await self._upload(
            "upload_contract_pdf", business_id, contract_id, file_name, pdf_bytes
        )

    async def _index(self, name, document):
        self.calls.append((name, document.public_id))
        if self.index_error is not None:
            raise self.index_error

    async def index_invoice(self, invoice):
        await self._index("index_invoice", invoice)

    async def index_estimate(self, estimate):
        await self._index("index_estimate", estimate)

    async def index_contract(self, contract):
        await self._index("index_contract", contract)

    async def fetch_estimate_status(self, business_id, estimate_id):
        self.calls.append(("fetch_estimate_status", estimate_id))
        if estimate_id in self.status_errors:
            raise self.status_errors[estimate_id]
        return self.estimate_statuses.get(estimate_id, EstimateStatus(status="draft", decided_at=None))


class FakeRenderer:
    def __init__(self):
        self.rendered = []
        self.error = None

    def render_invoice(self, invoice, business):
        self.rendered.append(("invoice", invoice.public_id))
        if self.error is not None:
            raise self.error
        return b"%PDF-1.4 invoice"

    def render_contract(self, contract, business):
        self.rendered.append(("contract", contract.public_id))
        if self.error is not None:
            raise self.error
        return b"%PDF-1.4 contract"


class FakeClock:
    def __init__(self, now_ms=1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms

    def advance_minutes(self, minutes):
        self.now_ms += minutes * 60 * 1000


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def backend():
    return FakePortalBackend()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(db, backend, renderer, clock):
    return PortalAutoSyncService(db, backend, renderer, clock=clock, locks=DocumentLockRegistry())


@pytest.fixture
def business(db):
    business = Business(name="Acme Plumbing", email="office@acme.test")
    db.add(business)
    db.commit()
    return business


@pytest.fixture
def make_client(db, business):
    def _make(portal_enabled=True, name="Jane Client"):
        client = Client(business_id=business.id, name=name, portal_enabled=portal_enabled)
        db.add(client)
        db.commit()
        return client

    return _make


@pytest.fixture
def client_record(make_client):
    return make_client()


@pytest.fixture
def make_invoice(db, business):
    def _make(
        client=None,
        items=(("Labor", 2, 50.0),),
        document_type="invoice",
        invoice_number="SI-2024-001",
        **fields,
    ):
        invoice = Invoice(
            business_id=business.id,
            client_id=client.id if client is not None else None,
            document_type=document_type,
            invoice_number=invoice_number,
            issue_date=FIXED_ISSUE,
            due_date=FIXED_DUE,
            **fields,
        )
        for position, (description, quantity, unit_price) in enumerate(items):
            invoice.items.append(
                LineItem(
                    position=position,
                    item_description=description,
                    quantity=quantity,
                    unit_price=unit_price,
                )
            )
        db.add(invoice)
        db.commit()
        return invoice

    return _make


@pytest.fixture
def make_contract(db, business):
    def _make(client=None, invoice=None, **fields):
        values = {
            "title": "Service Agreement",
            "rendered_body": "The provider will fix the sink.\n\nPayment due on completion.",
            "template_name": "Standard Service",
            "template_category": "General",
        }
        values.update(fields)
        contract = Contract(
            business_id=business.id,
            client_id=client.id if client is not None else None,
            invoice_id=invoice.id if invoice is not None else None,
            **values,
        )
        db.add(contract)
        db.commit()
        return contract

    return _make
