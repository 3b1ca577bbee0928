from pydantic import BaseModel, ConfigDict, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from enum import Enum
from uuid import uuid4

from facturasimple.modules.invoices.numbering import InvoiceNumber


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


def new_id() -> str:
    return str(uuid4())


# Invoice Line Item Schemas
class InvoiceItemCreate(BaseModel):
    id: str = Field(default_factory=new_id)
    description: str = Field(..., min_length=1, description="Descripción del concepto")
    quantity: Decimal = Field(..., gt=0, description="Cantidad debe ser mayor a 0")
    price_unit: Decimal = Field(..., ge=0, description="Precio unitario")

    @field_validator('description')
    @classmethod
    def validate_description(cls, v):
        if not v.strip():
            raise ValueError('La descripción es obligatoria')
        return v.strip()


class InvoiceItem(InvoiceItemCreate):
    subtotal: Decimal = Field(..., ge=0, description="quantity * price_unit")

    model_config = ConfigDict(from_attributes=True)


# Invoice Schemas
class InvoiceCreate(BaseModel):
    """Factura candidata. Número, serie y tasas son opcionales y se resuelven al guardar."""
    invoice_number: Optional[str] = None
    series: Optional[str] = Field(None, min_length=1, pattern=r'^[A-Za-z0-9]+$')
    client_id: str = Field(..., min_length=1, description="Debes seleccionar un cliente")
    client_name: Optional[str] = None
    issue_date: int = Field(..., description="Fecha de emisión (epoch ms)")
    due_date: Optional[int] = Field(None, description="Fecha de vencimiento (epoch ms)")
    status: InvoiceStatus = InvoiceStatus.DRAFT
    items: List[InvoiceItemCreate] = Field(..., min_length=1, description="Añade al menos un concepto")
    taxes_included: bool = False
    vat_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    irpf_rate: Optional[Decimal] = Field(None, ge=0, le=1)

    @field_validator('invoice_number')
    @classmethod
    def strip_number(cls, v):
        if v is None:
            return v
        v = v.strip()
        return v or None


class InvoiceSave(InvoiceCreate):
    """Factura completa enviada por la ruta de edición."""
    id: str = Field(..., min_length=1)


class Invoice(BaseModel):
    id: str
    tenant_id: str
    invoice_number: str
    series: str
    fiscal_year: int = Field(..., ge=2000)
    sequence: int = Field(..., ge=0)
    client_id: str
    client_name: Optional[str] = None
    issue_date: int
    due_date: int
    status: InvoiceStatus
    items: List[InvoiceItem] = Field(..., min_length=1)
    taxes_included: bool = False
    base_total: Decimal
    vat_rate: Decimal = Field(..., ge=0, le=1)
    vat_amount: Decimal
    irpf_rate: Decimal = Field(..., ge=0, le=1)
    irpf_amount: Decimal
    total_amount: Decimal
    created_at: int
    updated_at: int
    status_changed_at: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def number(self) -> InvoiceNumber:
        return InvoiceNumber(self.series, self.fiscal_year, self.sequence)


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


class InvoiceFilters(BaseModel):
    status: Optional[InvoiceStatus] = None
    client_id: Optional[str] = None
    series: Optional[str] = None
    fiscal_year: Optional[int] = None
    search: Optional[str] = None


class InvoiceList(BaseModel):
    invoices: List[Invoice]
    total: int


class NextInvoiceNumber(BaseModel):
    series: str
    fiscal_year: int
    sequence: int
    invoice_number: str


class DeleteResult(BaseModel):
    deleted: bool


# CSV import schemas
class ImportResult(BaseModel):
    success: bool
    imported: int
    skipped: int
    errors: List[str] = []
    warnings: List[str] = []
    invoices: List[InvoiceCreate] = []


class ImportCommitRequest(BaseModel):
    invoices: List[InvoiceCreate] = Field(..., min_length=1)
