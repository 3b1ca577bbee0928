"""
Informes sobre el libro de facturas

Funciones puras sobre una lista de facturas ya cargada:
- Resumen del panel (cobrado en el mes, pendiente, vencidas)
- Auditoría de numeración (duplicados y huecos por serie y año)
"""

from decimal import Decimal
from typing import Iterable, Optional
import logging

from facturasimple.core.clock import from_epoch_ms
from facturasimple.modules.invoices.schemas import Invoice, InvoiceStatus
from facturasimple.modules.invoices.sequencer import audit_sequences
from facturasimple.modules.reports.schemas import DashboardStats, NumberingAuditReport
from facturasimple.modules.taxes.calculator import round2

logger = logging.getLogger(__name__)


def dashboard_stats(invoices: Iterable[Invoice], now: int, tz: Optional[str] = None) -> DashboardStats:
    """
    Calcular las cifras del panel principal.

    - income_month: total de facturas PAID emitidas en el mes en curso
    - pending_amount: total de facturas PENDING
    - overdue_count: facturas PENDING u OVERDUE con vencimiento pasado
    """
    current = from_epoch_ms(now, tz)
    income_month = Decimal("0")
    pending_amount = Decimal("0")
    overdue_count = 0
    invoice_count = 0
    by_status = {s.value: 0 for s in InvoiceStatus}

    for invoice in invoices:
        invoice_count += 1
        by_status[invoice.status.value] += 1

        issued = from_epoch_ms(invoice.issue_date, tz)
        if invoice.status == InvoiceStatus.PAID and (issued.year, issued.month) == (current.year, current.month):
            income_month += invoice.total_amount
        if invoice.status == InvoiceStatus.PENDING:
            pending_amount += invoice.total_amount
        if invoice.status in (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE) and invoice.due_date < now:
            overdue_count += 1

    return DashboardStats(
        income_month=round2(income_month),
        pending_amount=round2(pending_amount),
        overdue_count=overdue_count,
        invoice_count=invoice_count,
        by_status=by_status,
    )


def numbering_audit(invoices: Iterable[Invoice]) -> NumberingAuditReport:
    """Duplicados (errores) y huecos (avisos) de numeración por serie y año."""
    audit = audit_sequences(invoice.number for invoice in invoices)
    if not audit.is_valid:
        logger.warning(f"Numbering audit found {len(audit.errors)} duplicate(s)")
    return NumberingAuditReport(
        is_valid=audit.is_valid,
        errors=audit.errors,
        warnings=audit.warnings,
        duplicates=audit.duplicates,
        gaps=audit.gaps,
    )
