"""
Módulo de Facturas - FacturaSimple

Numeración fiscal (SERIE-AAAA-NNNN) sin huecos ni duplicados por serie y
año, validación de plazos, máquina de estados y conciliación CSV.

Tablas principales:
- invoices: Cabecera de factura con número congelado al emitir
- invoice_line_items: Conceptos de cada factura
"""

from .numbering import InvoiceNumber, build_invoice_number, parse_invoice_number
from .schemas import Invoice, InvoiceCreate, InvoiceSave, InvoiceStatus, ImportResult
from .sequencer import SequenceLockRegistry, next_invoice_number, audit_sequences
from .repository import InvoiceRepository, InMemoryInvoiceRepository, SQLAlchemyInvoiceRepository
from .service import InvoiceLifecycleService, ALLOWED_TRANSITIONS
from .csv_import import reconcile_invoices_csv, commit_import
from .csv_export import export_invoices_csv

__all__ = [
    "InvoiceNumber", "build_invoice_number", "parse_invoice_number",
    "Invoice", "InvoiceCreate", "InvoiceSave", "InvoiceStatus", "ImportResult",
    "SequenceLockRegistry", "next_invoice_number", "audit_sequences",
    "InvoiceRepository", "InMemoryInvoiceRepository", "SQLAlchemyInvoiceRepository",
    "InvoiceLifecycleService", "ALLOWED_TRANSITIONS",
    "reconcile_invoices_csv", "commit_import", "export_invoices_csv",
]
