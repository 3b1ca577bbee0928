"""
Exportación de facturas a CSV

Genera el mismo formato de 9 columnas que acepta la importación, con BOM
para que Excel reconozca UTF-8.
"""

import csv
import io
from typing import Any, Dict, Iterable, List, Optional

from fastapi import Response

from facturasimple.core.clock import from_epoch_ms
from facturasimple.modules.invoices.schemas import Invoice
from facturasimple.modules.taxes.calculator import round2

UTF8_BOM = "\ufeff"
DATE_FORMAT = "%d/%m/%Y"
UNKNOWN_CLIENT = "Desconocido"

CSV_HEADERS: Dict[str, str] = {
    "invoice_number": "Número",
    "issue_date": "Fecha Emisión",
    "due_date": "Fecha Vencimiento",
    "client_name": "Cliente",
    "status": "Estado",
    "base_total": "Base Imponible",
    "vat_amount": "IVA",
    "irpf_amount": "IRPF",
    "total_amount": "Total",
}


def format_amount(value: Any) -> str:
    return f"{round2(value):.2f}"


def format_date(value: int, tz: Optional[str] = None) -> str:
    return from_epoch_ms(value, tz).strftime(DATE_FORMAT)


def invoice_to_row(invoice: Invoice, tz: Optional[str] = None) -> Dict[str, str]:
    return {
        "invoice_number": invoice.invoice_number,
        "issue_date": format_date(invoice.issue_date, tz),
        "due_date": format_date(invoice.due_date, tz),
        "client_name": invoice.client_name or UNKNOWN_CLIENT,
        "status": invoice.status.value,
        "base_total": format_amount(invoice.base_total),
        "vat_amount": format_amount(invoice.vat_amount),
        "irpf_amount": format_amount(invoice.irpf_amount),
        "total_amount": format_amount(invoice.total_amount),
    }


def export_invoices_csv(invoices: Iterable[Invoice], tz: Optional[str] = None) -> str:
    """
    Serializar facturas a CSV.

    Args:
        invoices: Facturas a exportar, en el orden recibido
        tz: Zona horaria para las fechas DD/MM/AAAA

    Returns:
        Texto CSV con BOM y fila de cabecera
    """
    output = io.StringIO()
    fieldnames: List[str] = list(CSV_HEADERS.keys())
    writer = csv.DictWriter(output, fieldnames=fieldnames, lineterminator="\n")

    writer.writerow(CSV_HEADERS)
    for invoice in invoices:
        writer.writerow(invoice_to_row(invoice, tz))

    csv_content = output.getvalue()
    output.close()
    return UTF8_BOM + csv_content


def create_csv_response(csv_content: str, filename: str) -> Response:
    """Respuesta de descarga para un CSV ya generado."""
    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            "Content-Type": "text/csv; charset=utf-8"
        }
    )
