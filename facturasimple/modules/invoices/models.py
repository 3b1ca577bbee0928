from facturasimple.database.database import Base
from sqlalchemy import Column, Integer, BigInteger, String, Boolean, ForeignKey, Numeric, Enum, UniqueConstraint, Text
from sqlalchemy.orm import relationship
from facturasimple.common.mixins import TenantMixin, TimestampMixin
from facturasimple.modules.invoices.schemas import InvoiceStatus


class InvoiceRecord(Base, TenantMixin, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True)

    # Numeración fiscal (congelada al salir de DRAFT)
    invoice_number = Column(String(50), nullable=False, index=True)
    series = Column(String(20), nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    sequence = Column(Integer, nullable=False)

    # Sin FK: borrar un cliente no borra sus facturas (conservación legal)
    client_id = Column(String(36), nullable=False, index=True)
    client_name = Column(Text, nullable=True)

    # Fechas (epoch ms)
    issue_date = Column(BigInteger, nullable=False)
    due_date = Column(BigInteger, nullable=False)

    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT)
    status_changed_at = Column(BigInteger, nullable=True)

    # Totales (sin redondear)
    taxes_included = Column(Boolean, nullable=False, default=False)
    base_total = Column(Numeric(18, 6), nullable=False, default=0)
    vat_rate = Column(Numeric(12, 8), nullable=False, default=0)
    vat_amount = Column(Numeric(18, 6), nullable=False, default=0)
    irpf_rate = Column(Numeric(12, 8), nullable=False, default=0)
    irpf_amount = Column(Numeric(18, 6), nullable=False, default=0)
    total_amount = Column(Numeric(18, 6), nullable=False, default=0)

    items = relationship(
        "InvoiceItemRecord",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItemRecord.position"
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "series", "fiscal_year", "sequence", name="uq_invoice_tenant_series_year_sequence"),
    )


class InvoiceItemRecord(Base):
    __tablename__ = "invoice_line_items"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    description = Column(Text, nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    price_unit = Column(Numeric(18, 6), nullable=False)
    subtotal = Column(Numeric(18, 6), nullable=False)

    invoice = relationship("InvoiceRecord", back_populates="items")
