from fastapi import APIRouter, Depends, Query, HTTPException, status
from typing import Optional

from facturasimple.dependencies.tenantDependencies import TenantId
from facturasimple.modules.clients.dependencies import get_client_service
from facturasimple.modules.clients.schemas import Client, ClientCreate, ClientList, ClientUpdate
from facturasimple.modules.clients.service import ClientService

router = APIRouter(prefix="/clients", tags=["Clients"])


@router.post("/", response_model=Client, status_code=status.HTTP_201_CREATED)
def create_client(
    client_data: ClientCreate,
    tenant_id: TenantId,
    service: ClientService = Depends(get_client_service)
):
    """
    Crear un nuevo cliente

    El NIF debe ser único dentro de la empresa.
    """
    return service.create(client_data, tenant_id)


@router.get("/", response_model=ClientList)
def list_clients(
    tenant_id: TenantId,
    search: Optional[str] = Query(None, description="Buscar por nombre, NIF o email"),
    service: ClientService = Depends(get_client_service)
):
    clients = service.list(tenant_id, search)
    return ClientList(clients=clients, total=len(clients))


@router.get("/{client_id}", response_model=Client)
def get_client(
    client_id: str,
    tenant_id: TenantId,
    service: ClientService = Depends(get_client_service)
):
    return service.get(client_id, tenant_id)


@router.patch("/{client_id}", response_model=Client)
def update_client(
    client_id: str,
    client_update: ClientUpdate,
    tenant_id: TenantId,
    service: ClientService = Depends(get_client_service)
):
    """
    Actualizar un cliente

    Las facturas ya emitidas conservan el nombre con el que se guardaron.
    """
    return service.update(client_id, client_update, tenant_id)


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(
    client_id: str,
    tenant_id: TenantId,
    service: ClientService = Depends(get_client_service)
):
    """
    Borrar un cliente

    Sus facturas no se borran (conservación legal del histórico).
    """
    if not service.delete(client_id, tenant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cliente no encontrado")
