"""
Módulo de Clientes - FacturaSimple

Clientes a los que se emiten facturas. Borrar un cliente nunca borra sus
facturas: el nombre se desnormaliza en cada factura al guardarla.

Tablas principales:
- clients: Clientes por tenant (NIF único por tenant)
"""

from .schemas import Client, ClientCreate, ClientUpdate
from .repository import ClientRepository, InMemoryClientRepository, SQLAlchemyClientRepository
from .service import ClientService

__all__ = [
    "Client", "ClientCreate", "ClientUpdate",
    "ClientRepository", "InMemoryClientRepository", "SQLAlchemyClientRepository",
    "ClientService",
]
