"""
Errores de dominio del núcleo de facturación.

Los componentes puros (códec, calculadora, validador) reportan problemas sin
lanzar excepciones; el servicio de ciclo de vida convierte las violaciones de
reglas en estos errores, y ``main.py`` los traduce a respuestas HTTP.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class InvoicingError(Exception):
    """Base de todos los errores de negocio."""


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class InvoiceValidationError(InvoicingError):
    """Uno o varios problemas de validación, etiquetados por campo."""

    def __init__(self, issues: List[ValidationIssue]):
        self.issues = list(issues)
        summary = "; ".join(f"{i.field}: {i.message}" for i in self.issues)
        super().__init__(f"Factura inválida: {summary}")

    @property
    def fields(self) -> List[str]:
        return [issue.field for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {"errors": [issue.to_dict() for issue in self.issues]}


class ImmutableInvoiceError(InvoicingError):
    def __init__(self, invoice_id: str, status: Any):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(
            f"La factura {invoice_id} está en estado {getattr(status, 'value', status)} "
            f"y ya no puede modificarse"
        )


class InvalidStatusTransitionError(InvoicingError):
    def __init__(self, invoice_id: Optional[str], current: Any, requested: Any):
        self.invoice_id = invoice_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Transición de estado no permitida: "
            f"{getattr(current, 'value', current)} -> {getattr(requested, 'value', requested)}"
        )


class TaxConfigurationError(InvoicingError):
    def __init__(self, vat_rate: Any, irpf_rate: Any):
        self.vat_rate = vat_rate
        self.irpf_rate = irpf_rate
        super().__init__(
            f"Configuración de impuestos inválida: 1 + IVA ({vat_rate}) - IRPF ({irpf_rate}) "
            f"debe ser mayor que 0 con precios con impuestos incluidos"
        )


class NotFoundError(InvoicingError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} no encontrado")


class ConflictError(InvoicingError):
    """El recurso choca con otro existente (ej. NIF repetido)."""


class DuplicateInvoiceNumberError(ConflictError):
    """Otro proceso registró el mismo número antes de confirmar el alta."""

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"El número de factura {invoice_number} ya está registrado")
