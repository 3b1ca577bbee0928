"""
Fixtures compartidas de pytest

El entorno se fija antes de importar la aplicación para que ``settings``
use una base de datos SQLite en memoria y no cree tablas al arrancar.
"""
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEBUG"] = "false"

from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from facturasimple.common.audit import AuditTrail
from facturasimple.core.clock import FixedClock, to_epoch_ms
from facturasimple.core.config import InvoicingConfig
from facturasimple.database.database import Base, build_engine
from facturasimple.modules.clients.repository import InMemoryClientRepository
from facturasimple.modules.clients.schemas import ClientCreate
from facturasimple.modules.clients.service import ClientService
from facturasimple.modules.invoices.repository import InMemoryInvoiceRepository
from facturasimple.modules.invoices.schemas import InvoiceCreate, InvoiceItemCreate
from facturasimple.modules.invoices.sequencer import SequenceLockRegistry
from facturasimple.modules.invoices.service import InvoiceLifecycleService

import facturasimple.modules.clients.models
import facturasimple.modules.invoices.models

FISCAL_TZ = "Europe/Madrid"


def madrid_ms(year, month, day, hour=0, minute=0):
    """Epoch ms de una hora local de Madrid."""
    return to_epoch_ms(datetime(year, month, day, hour, minute, tzinfo=ZoneInfo(FISCAL_TZ)))


# 15/06/2025 12:00 en Madrid
NOW = madrid_ms(2025, 6, 15, 12)


@pytest.fixture
def at():
    return madrid_ms


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def config():
    return InvoicingConfig()


@pytest.fixture
def audit(clock):
    return AuditTrail(max_size=50, clock=clock)


@pytest.fixture
def invoice_repo():
    return InMemoryInvoiceRepository()


@pytest.fixture
def client_repo():
    return InMemoryClientRepository()


@pytest.fixture
def client_service(client_repo, clock, audit):
    return ClientService(client_repo, clock, audit)


@pytest.fixture
def service(invoice_repo, config, clock, client_repo, audit):
    return InvoiceLifecycleService(
        invoice_repo,
        config=config,
        clock=clock,
        locks=SequenceLockRegistry(),
        client_repo=client_repo,
        audit=audit,
    )


@pytest.fixture
def sample_client(client_service, config):
    return client_service.create(
        ClientCreate(
            name="Acme Consultores S.L.",
            nif="B-87654321",
            address="Calle Mayor 1, 28013 Madrid",
            email="facturas@acme.es",
        ),
        config.default_tenant,
    )


@pytest.fixture
def make_candidate(sample_client, at):
    """Construye facturas candidatas válidas a 15/06/2025."""
    def _make(**overrides):
        data = {
            "client_id": sample_client.id,
            "issue_date": at(2025, 6, 10),
            "due_date": at(2025, 7, 10),
            "items": [InvoiceItemCreate(description="Consultoría", quantity=Decimal("2"), price_unit=Decimal("100"))],
            "vat_rate": Decimal("0.21"),
            "irpf_rate": Decimal("0"),
        }
        data.update(overrides)
        return InvoiceCreate(**data)
    return _make


@pytest.fixture
def db_session():
    """Sesión sobre SQLite en memoria con todas las tablas creadas."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def api_client(service, client_service):
    """TestClient con los servicios en memoria inyectados."""
    from facturasimple.main import app
    from facturasimple.modules.clients.dependencies import get_client_service
    from facturasimple.modules.invoices.dependencies import get_invoice_service

    app.dependency_overrides[get_invoice_service] = lambda: service
    app.dependency_overrides[get_client_service] = lambda: client_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
