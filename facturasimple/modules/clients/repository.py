from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from facturasimple.modules.clients.models import ClientRecord
from facturasimple.modules.clients.schemas import Client

logger = logging.getLogger(__name__)


class ClientRepository(ABC):
    """Puerto de persistencia de clientes."""

    @abstractmethod
    def list(self) -> List[Client]:
        pass

    @abstractmethod
    def get_by_id(self, client_id: str) -> Optional[Client]:
        pass

    @abstractmethod
    def save(self, client: Client) -> None:
        pass

    @abstractmethod
    def delete(self, client_id: str) -> None:
        pass


class InMemoryClientRepository(ClientRepository):
    def __init__(self, clients: Optional[List[Client]] = None):
        self._clients: Dict[str, Client] = {}
        for client in clients or []:
            self.save(client)

    def list(self) -> List[Client]:
        return [client.model_copy() for client in self._clients.values()]

    def get_by_id(self, client_id: str) -> Optional[Client]:
        client = self._clients.get(client_id)
        return client.model_copy() if client else None

    def save(self, client: Client) -> None:
        self._clients[client.id] = client.model_copy()

    def delete(self, client_id: str) -> None:
        self._clients.pop(client_id, None)


class SQLAlchemyClientRepository(ClientRepository):
    def __init__(self, db: Session, tenant_id: Optional[str] = None):
        self.db = db
        self.tenant_id = tenant_id

    def _query(self):
        query = self.db.query(ClientRecord)
        if self.tenant_id is not None:
            query = query.filter(ClientRecord.tenant_id == self.tenant_id)
        return query

    def list(self) -> List[Client]:
        return [Client.model_validate(record) for record in self._query().order_by(ClientRecord.name).all()]

    def get_by_id(self, client_id: str) -> Optional[Client]:
        record = self._query().filter(ClientRecord.id == client_id).first()
        return Client.model_validate(record) if record else None

    def save(self, client: Client) -> None:
        try:
            record = self.db.get(ClientRecord, client.id)
            if record is None:
                record = ClientRecord(id=client.id)
                self.db.add(record)
            for key, value in client.model_dump(exclude={"id"}).items():
                setattr(record, key, value)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"Error saving client {client.id}", exc_info=True)
            raise

    def delete(self, client_id: str) -> None:
        record = self.db.get(ClientRecord, client_id)
        if record is None:
            return
        try:
            self.db.delete(record)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"Error deleting client {client_id}", exc_info=True)
            raise
