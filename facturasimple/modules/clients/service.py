"""
Servicios de negocio para el módulo de Clientes

Implementa la lógica de negocio para:
- CRUD de clientes con validación de NIF y email
- Borrado sin cascada: las facturas emitidas conservan el nombre
  desnormalizado del cliente (obligación legal de conservación)
- Mapa nombre -> id usado por la importación CSV de facturas
"""

from typing import Dict, List, Optional
from uuid import uuid4
import logging

from facturasimple.common.audit import AuditTrail, SYSTEM_USER
from facturasimple.common.exceptions import ConflictError, NotFoundError
from facturasimple.core.clock import Clock
from facturasimple.modules.clients.repository import ClientRepository
from facturasimple.modules.clients.schemas import Client, ClientCreate, ClientUpdate

logger = logging.getLogger(__name__)


class ClientService:
    """Servicio principal para gestión de clientes"""

    def __init__(self, repo: ClientRepository, clock: Clock, audit: Optional[AuditTrail] = None):
        self.repo = repo
        self.clock = clock
        self.audit = audit

    def _tenant_clients(self, tenant_id: str) -> List[Client]:
        return [client for client in self.repo.list() if client.tenant_id == tenant_id]

    def _ensure_unique_nif(self, nif: str, tenant_id: str, exclude_id: Optional[str] = None) -> None:
        for client in self._tenant_clients(tenant_id):
            if client.nif == nif and client.id != exclude_id:
                raise ConflictError(f"Ya existe un cliente con el NIF {nif}")

    def create(self, data: ClientCreate, tenant_id: str, user_id: str = SYSTEM_USER) -> Client:
        """Crear un nuevo cliente"""
        self._ensure_unique_nif(data.nif, tenant_id)
        now = self.clock.now()
        client = Client(
            id=str(uuid4()),
            tenant_id=tenant_id,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        self.repo.save(client)
        logger.info(f"Client {client.id} created for tenant {tenant_id}")
        if self.audit is not None:
            self.audit.record("create", "client", client.id, tenant_id, user_id, {"name": client.name})
        return client

    def get(self, client_id: str, tenant_id: str) -> Client:
        client = self.repo.get_by_id(client_id)
        if client is None or client.tenant_id != tenant_id:
            raise NotFoundError("Cliente", client_id)
        return client

    def find(self, client_id: str, tenant_id: str) -> Optional[Client]:
        client = self.repo.get_by_id(client_id)
        if client is None or client.tenant_id != tenant_id:
            return None
        return client

    def list(self, tenant_id: str, search: Optional[str] = None) -> List[Client]:
        clients = self._tenant_clients(tenant_id)
        if search:
            term = search.strip().lower()
            clients = [
                c for c in clients
                if term in c.name.lower() or term in c.nif.lower() or term in c.email.lower()
            ]
        return sorted(clients, key=lambda c: c.name.lower())

    def update(self, client_id: str, data: ClientUpdate, tenant_id: str, user_id: str = SYSTEM_USER) -> Client:
        """Actualizar un cliente; las facturas existentes no se tocan"""
        client = self.get(client_id, tenant_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "nif" in changes:
            self._ensure_unique_nif(changes["nif"], tenant_id, exclude_id=client_id)
        updated = client.model_copy(update={**changes, "updated_at": self.clock.now()})
        updated = Client.model_validate(updated.model_dump())
        self.repo.save(updated)
        if self.audit is not None:
            self.audit.record("update", "client", client_id, tenant_id, user_id, {"fields": sorted(changes)})
        return updated

    def delete(self, client_id: str, tenant_id: str, user_id: str = SYSTEM_USER) -> bool:
        """Borrar un cliente. No borra sus facturas."""
        client = self.find(client_id, tenant_id)
        if client is None:
            return False
        self.repo.delete(client_id)
        logger.info(f"Client {client_id} deleted; invoices keep denormalized name '{client.name}'")
        if self.audit is not None:
            self.audit.record("delete", "client", client_id, tenant_id, user_id, {"name": client.name})
        return True

    def name_lookup(self, tenant_id: str) -> Dict[str, str]:
        """Mapa nombre -> id para la conciliación CSV."""
        return {client.name: client.id for client in self._tenant_clients(tenant_id)}
