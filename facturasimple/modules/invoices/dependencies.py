"""
Dependencias específicas para el módulo de Facturas
"""

from fastapi import Depends

from facturasimple.dependencies.configDependencies import get_audit_trail, get_clock, get_invoicing_config
from facturasimple.dependencies.dbDependencies import db_dependency
from facturasimple.dependencies.tenantDependencies import get_tenant_id
from facturasimple.modules.clients.repository import SQLAlchemyClientRepository
from facturasimple.modules.invoices.repository import SQLAlchemyInvoiceRepository
from facturasimple.modules.invoices.sequencer import SequenceLockRegistry
from facturasimple.modules.invoices.service import InvoiceLifecycleService

# Compartido por todas las peticiones del proceso
sequence_locks = SequenceLockRegistry()


def get_invoice_service(db: db_dependency, tenant_id: str = Depends(get_tenant_id)) -> InvoiceLifecycleService:
    return InvoiceLifecycleService(
        SQLAlchemyInvoiceRepository(db, tenant_id),
        config=get_invoicing_config(),
        clock=get_clock(),
        locks=sequence_locks,
        client_repo=SQLAlchemyClientRepository(db, tenant_id),
        audit=get_audit_trail(),
    )
