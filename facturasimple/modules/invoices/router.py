from fastapi import APIRouter, Depends, status, Query, HTTPException, File, UploadFile
from typing import List, Optional
from datetime import date

from facturasimple.core.config import settings
from facturasimple.dependencies.tenantDependencies import TenantId
from facturasimple.modules.clients.dependencies import get_client_service
from facturasimple.modules.clients.service import ClientService
from facturasimple.modules.invoices.csv_export import create_csv_response, export_invoices_csv
from facturasimple.modules.invoices.csv_import import commit_import, reconcile_invoices_csv
from facturasimple.modules.invoices.dependencies import get_invoice_service
from facturasimple.modules.invoices.schemas import (
    DeleteResult, ImportCommitRequest, ImportResult, Invoice, InvoiceCreate, InvoiceFilters,
    InvoiceList, InvoiceSave, InvoiceStatus, InvoiceStatusUpdate, NextInvoiceNumber
)
from facturasimple.modules.invoices.service import InvoiceLifecycleService

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("/", response_model=Invoice, status_code=status.HTTP_201_CREATED)
def create_invoice(
    invoice_data: InvoiceCreate,
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """
    Crear una nueva factura

    Si no se indica número, o el indicado no corresponde a la serie y año
    de emisión o ya existe, se asigna el siguiente de la secuencia.
    """
    return service.create(invoice_data, tenant_id)


@router.get("/", response_model=InvoiceList)
def list_invoices(
    tenant_id: TenantId,
    status: Optional[InvoiceStatus] = Query(None, description="Estado de la factura"),
    client_id: Optional[str] = Query(None, description="Filtrar por cliente"),
    series: Optional[str] = Query(None, description="Filtrar por serie"),
    fiscal_year: Optional[int] = Query(None, description="Filtrar por año fiscal"),
    search: Optional[str] = Query(None, description="Buscar por número o cliente"),
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    filters = InvoiceFilters(
        status=status,
        client_id=client_id,
        series=series,
        fiscal_year=fiscal_year,
        search=search
    )
    invoices = service.list(tenant_id, filters)
    return InvoiceList(invoices=invoices, total=len(invoices))


@router.get("/next-number", response_model=NextInvoiceNumber)
def next_invoice_number(
    tenant_id: TenantId,
    series: Optional[str] = Query(None, pattern=r'^[A-Za-z0-9]+$'),
    issue_date: Optional[int] = Query(None, description="Fecha de emisión (epoch ms)"),
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """Número que recibiría la próxima factura (no lo reserva)"""
    allocated = service.preview_next_number(tenant_id, series, issue_date)
    return NextInvoiceNumber(
        series=allocated.series,
        fiscal_year=allocated.fiscal_year,
        sequence=allocated.sequence,
        invoice_number=allocated.invoice_number,
    )


@router.get("/export")
def export_invoices(
    tenant_id: TenantId,
    status: Optional[InvoiceStatus] = Query(None),
    fiscal_year: Optional[int] = Query(None),
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """Descargar las facturas en CSV (re-importable)"""
    invoices = service.list(tenant_id, InvoiceFilters(status=status, fiscal_year=fiscal_year))
    content = export_invoices_csv(invoices, service.config.timezone)
    return create_csv_response(content, f"facturas_export_{date.today().isoformat()}.csv")


@router.post("/import", response_model=ImportResult)
async def import_invoices(
    tenant_id: TenantId,
    file: UploadFile = File(...),
    strict: Optional[bool] = Query(None, description="Tratar como error las facturas ya existentes"),
    service: InvoiceLifecycleService = Depends(get_invoice_service),
    client_service: ClientService = Depends(get_client_service)
):
    """
    Conciliar un CSV de facturas

    No guarda nada: devuelve los candidatos importables, los errores por fila
    y los avisos. Para guardar, enviar los candidatos a /invoices/import/commit.
    """
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="El fichero debe estar codificado en UTF-8"
        )

    existing = [invoice.invoice_number for invoice in service.list(tenant_id)]
    return reconcile_invoices_csv(
        text,
        client_service.name_lookup(tenant_id),
        existing,
        service.config,
        service.clock,
        strict=settings.CSV_STRICT_DUPLICATES if strict is None else strict,
    )


@router.post("/import/commit", response_model=List[Invoice], status_code=status.HTTP_201_CREATED)
def commit_invoices_import(
    request: ImportCommitRequest,
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """Guardar los candidatos confirmados de una importación"""
    return commit_import(service, request.invoices, tenant_id)


@router.post("/sweep-overdue", response_model=InvoiceList)
def sweep_overdue(
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """Marcar como vencidas las facturas pendientes con vencimiento pasado"""
    invoices = service.sweep_overdue(tenant_id)
    return InvoiceList(invoices=invoices, total=len(invoices))


@router.get("/{invoice_id}", response_model=Invoice)
def get_invoice(
    invoice_id: str,
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    return service.get(invoice_id, tenant_id)


@router.put("/{invoice_id}", response_model=Invoice)
def save_invoice(
    invoice_id: str,
    invoice_data: InvoiceCreate,
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """
    Guardar una factura (solo si está en estado borrador)

    Las facturas emitidas no se pueden editar; solo cambiar de estado.
    """
    candidate = InvoiceSave(id=invoice_id, **invoice_data.model_dump())
    return service.save(candidate, tenant_id)


@router.patch("/{invoice_id}/status", response_model=Invoice)
def update_invoice_status(
    invoice_id: str,
    status_update: InvoiceStatusUpdate,
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    invoice = service.set_status(invoice_id, status_update.status, tenant_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Factura no encontrada")
    return invoice


@router.post("/{invoice_id}/cancel", response_model=Invoice)
def cancel_invoice(
    invoice_id: str,
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """
    Anular una factura

    La factura se conserva con estado CANCELLED; nunca se borra.
    """
    invoice = service.cancel(invoice_id, tenant_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Factura no encontrada")
    return invoice


@router.delete("/{invoice_id}", response_model=DeleteResult)
def delete_invoice(
    invoice_id: str,
    tenant_id: TenantId,
    service: InvoiceLifecycleService = Depends(get_invoice_service)
):
    """Borrar un borrador. Las facturas emitidas solo se pueden anular."""
    invoice = service.get(invoice_id, tenant_id)
    if not service.delete_draft(invoice_id, tenant_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Solo se pueden borrar borradores; la factura {invoice.invoice_number} está en {invoice.status.value}"
        )
    return DeleteResult(deleted=True)
