"""
Repositorio de facturas.

Contrato mínimo (listar, obtener, guardar, borrar) para que el núcleo no
dependa del almacenamiento concreto. Las implementaciones deben garantizar
lectura de las propias escrituras dentro de una sesión.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from facturasimple.common.exceptions import DuplicateInvoiceNumberError
from facturasimple.modules.invoices.models import InvoiceItemRecord, InvoiceRecord
from facturasimple.modules.invoices.schemas import Invoice

logger = logging.getLogger(__name__)


class InvoiceRepository(ABC):
    """Puerto de persistencia de facturas."""

    @abstractmethod
    def list(self) -> List[Invoice]:
        pass

    @abstractmethod
    def get_by_id(self, invoice_id: str) -> Optional[Invoice]:
        pass

    @abstractmethod
    def save(self, invoice: Invoice) -> None:
        """
        Inserta o reemplaza la factura con el mismo id.

        Raises:
            DuplicateInvoiceNumberError: el almacén ya tiene ese número
        """
        pass

    @abstractmethod
    def delete(self, invoice_id: str) -> None:
        pass


class InMemoryInvoiceRepository(InvoiceRepository):
    """Almacén en memoria; entrega copias para que nadie mute el libro."""

    def __init__(self, invoices: Optional[List[Invoice]] = None):
        self._invoices: Dict[str, Invoice] = {}
        for invoice in invoices or []:
            self.save(invoice)

    def list(self) -> List[Invoice]:
        return [invoice.model_copy(deep=True) for invoice in self._invoices.values()]

    def get_by_id(self, invoice_id: str) -> Optional[Invoice]:
        invoice = self._invoices.get(invoice_id)
        return invoice.model_copy(deep=True) if invoice else None

    def save(self, invoice: Invoice) -> None:
        self._invoices[invoice.id] = invoice.model_copy(deep=True)

    def delete(self, invoice_id: str) -> None:
        self._invoices.pop(invoice_id, None)


class SQLAlchemyInvoiceRepository(InvoiceRepository):
    def __init__(self, db: Session, tenant_id: Optional[str] = None):
        self.db = db
        self.tenant_id = tenant_id

    def _query(self):
        query = self.db.query(InvoiceRecord).options(selectinload(InvoiceRecord.items))
        if self.tenant_id is not None:
            query = query.filter(InvoiceRecord.tenant_id == self.tenant_id)
        return query

    def list(self) -> List[Invoice]:
        return [Invoice.model_validate(record) for record in self._query().all()]

    def get_by_id(self, invoice_id: str) -> Optional[Invoice]:
        record = self._query().filter(InvoiceRecord.id == invoice_id).first()
        return Invoice.model_validate(record) if record else None

    def save(self, invoice: Invoice) -> None:
        try:
            record = self.db.get(InvoiceRecord, invoice.id)
            if record is None:
                record = InvoiceRecord(id=invoice.id)
                self.db.add(record)

            data = invoice.model_dump(exclude={"id", "items"})
            for key, value in data.items():
                setattr(record, key, value)

            record.items = [
                InvoiceItemRecord(
                    id=item.id,
                    position=position,
                    description=item.description,
                    quantity=item.quantity,
                    price_unit=item.price_unit,
                    subtotal=item.subtotal,
                )
                for position, item in enumerate(invoice.items)
            ]
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning(f"Invoice number {invoice.invoice_number} rejected by the database: {exc.orig}")
            raise DuplicateInvoiceNumberError(invoice.invoice_number) from exc
        except Exception:
            self.db.rollback()
            logger.error(f"Error saving invoice {invoice.id}", exc_info=True)
            raise

    def delete(self, invoice_id: str) -> None:
        record = self.db.get(InvoiceRecord, invoice_id)
        if record is None:
            return
        try:
            self.db.delete(record)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"Error deleting invoice {invoice_id}", exc_info=True)
            raise
