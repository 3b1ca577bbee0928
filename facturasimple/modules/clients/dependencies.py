"""
Dependencias específicas para el módulo de Clientes
"""

from fastapi import Depends

from facturasimple.dependencies.configDependencies import get_audit_trail, get_clock
from facturasimple.dependencies.dbDependencies import db_dependency
from facturasimple.dependencies.tenantDependencies import get_tenant_id
from facturasimple.modules.clients.repository import SQLAlchemyClientRepository
from facturasimple.modules.clients.service import ClientService


def get_client_service(db: db_dependency, tenant_id: str = Depends(get_tenant_id)) -> ClientService:
    return ClientService(
        SQLAlchemyClientRepository(db, tenant_id),
        clock=get_clock(),
        audit=get_audit_trail(),
    )
