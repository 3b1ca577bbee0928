from fastapi import APIRouter, Depends, Query
from typing import Optional

from facturasimple.dependencies.tenantDependencies import TenantId
from facturasimple.modules.invoices.dependencies import get_invoice_service
from facturasimple.modules.invoices.schemas import InvoiceFilters
from facturasimple.modules.invoices.service import InvoiceLifecycleService
from facturasimple.modules.reports.schemas import DashboardStats, NumberingAuditReport
from facturasimple.modules.reports.service import dashboard_stats, numbering_audit

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/dashboard", response_model=DashboardStats)
def get_dashboard(
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """Cifras del panel: cobrado este mes, pendiente de cobro y vencidas"""
    return dashboard_stats(service.list(tenant_id), service.clock.now(), service.config.timezone)


@router.get("/numbering-audit", response_model=NumberingAuditReport)
def get_numbering_audit(
    tenant_id: TenantId,
    series: Optional[str] = Query(None, description="Limitar a una serie"),
    fiscal_year: Optional[int] = Query(None, description="Limitar a un año fiscal"),
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """
    Auditoría de numeración

    Los duplicados son errores; los huecos son avisos (pueden deberse a
    borradores eliminados).
    """
    invoices = service.list(tenant_id, InvoiceFilters(series=series, fiscal_year=fiscal_year))
    return numbering_audit(invoices)
