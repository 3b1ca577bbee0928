"""
Verificar un CSV de facturas antes de importarlo.

Comprueba columnas, fechas, plazo máximo de pago, año de la numeración,
cuadre de totales, duplicados (error) y huecos (aviso) por serie y año.

Por defecto no consulta la base de datos: el libro se considera vacío y
cualquier cliente del fichero se da por conocido. Con --database se usan los
clientes y números ya registrados para el tenant indicado.

    python scripts/verify_invoices.py facturas.csv
    python scripts/verify_invoices.py facturas.csv --database --tenant public --strict

Sale con código 1 si hay errores bloqueantes.
"""

# Add project root to sys.path so `facturasimple.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse

from facturasimple.core.clock import SystemClock
from facturasimple.core.config import InvoicingConfig, settings
from facturasimple.modules.invoices.csv_import import (
    EXPECTED_COLUMNS, UTF8_BOM, MalformedCsvError, read_csv_records, reconcile_invoices_csv
)


def clients_from_file(text: str):
    """Cada valor de la columna cliente se acepta tal cual."""
    try:
        records = read_csv_records(text)[1:]
    except MalformedCsvError:
        # reconcile_invoices_csv informa del error de formato
        return {}
    names = {row[3].strip() for _, row in records if len(row) == EXPECTED_COLUMNS and row[3].strip()}
    return {name: name for name in names}


def ledger_from_database(tenant_id: str):
    from facturasimple.database.database import SessionLocal
    from facturasimple.modules.clients.repository import SQLAlchemyClientRepository
    from facturasimple.modules.invoices.repository import SQLAlchemyInvoiceRepository

    db = SessionLocal()
    try:
        clients = {c.name: c.id for c in SQLAlchemyClientRepository(db, tenant_id).list()}
        numbers = [i.invoice_number for i in SQLAlchemyInvoiceRepository(db, tenant_id).list()]
    finally:
        db.close()
    return clients, numbers


def main():
    parser = argparse.ArgumentParser(description="Verify an invoices CSV before importing it")
    parser.add_argument("csv_path", help="Ruta del fichero CSV")
    parser.add_argument("--database", action="store_true", help="Comparar con clientes y facturas de la base de datos")
    parser.add_argument("--tenant", default=settings.DEFAULT_TENANT)
    parser.add_argument(
        "--strict", action="store_true", default=settings.CSV_STRICT_DUPLICATES,
        help="Tratar como error las facturas que ya existen"
    )
    args = parser.parse_args()

    path = Path(args.csv_path).resolve()
    if not path.exists():
        print(f"CSV file not found: {path}", file=sys.stderr)
        return 1

    text = path.read_text(encoding="utf-8")
    if text.startswith(UTF8_BOM):
        text = text[len(UTF8_BOM):]

    if args.database:
        clients, existing = ledger_from_database(args.tenant)
    else:
        clients, existing = clients_from_file(text), []

    result = reconcile_invoices_csv(
        text, clients, existing, InvoicingConfig.from_settings(settings), SystemClock(), strict=args.strict
    )

    if result.errors:
        print("Verification failed:", file=sys.stderr)
        for error in result.errors:
            print(f"- {error}", file=sys.stderr)
    else:
        print(f"Verification passed: {result.imported} importable, {result.skipped} already registered.")

    if result.warnings:
        print("Warnings:")
        for warning in result.warnings:
            print(f"- {warning}")

    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
