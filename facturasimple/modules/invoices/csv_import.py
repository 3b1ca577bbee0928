"""
Conciliación de CSV de facturas

Paso de preparación puro: interpreta un CSV de 9 columnas, valida cada fila
con las mismas reglas que las facturas vivas y detecta duplicados y huecos
de numeración en el lote. Nunca escribe en el repositorio; el llamante
confirma después con ``commit_import``.

Columnas: número, fecha emisión, fecha vencimiento, cliente (nombre o id),
estado, base imponible, IVA, IRPF, total.
"""

import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from facturasimple.common.exceptions import InvoiceValidationError, ValidationIssue
from facturasimple.core.clock import Clock, to_epoch_ms
from facturasimple.core.config import InvoicingConfig
from facturasimple.modules.invoices.numbering import InvoiceNumber, is_canonical, parse_invoice_number
from facturasimple.modules.invoices.schemas import (
    ImportResult, Invoice, InvoiceCreate, InvoiceItemCreate, InvoiceStatus
)
from facturasimple.modules.invoices.sequencer import audit_sequences
from facturasimple.modules.invoices.service import can_transition
from facturasimple.modules.invoices.validator import FiscalValidator
from facturasimple.modules.taxes.calculator import TaxCalculator, round2

logger = logging.getLogger(__name__)

EXPECTED_COLUMNS = 9
DATE_FORMAT = "%d/%m/%Y"
UTF8_BOM = "\ufeff"
RATE_QUANTUM = Decimal("0.00000001")


@dataclass
class _StagedRow:
    row_number: int
    number: InvoiceNumber
    candidate: Optional[InvoiceCreate]


class MalformedCsvError(ValueError):
    """El fichero no se puede leer como CSV a partir de ``line``."""

    def __init__(self, line: int, detail: str):
        self.line = line
        self.detail = detail
        super().__init__(f"Línea {line}: {detail}")


def row_message(row_number: int, message: str) -> str:
    return f"Fila {row_number}: {message}"


def read_csv_records(text: str) -> List[Tuple[int, List[str]]]:
    """
    Leer el CSV como lista de (línea física inicial, celdas).

    Quita el BOM y acepta finales de línea CRLF, LF o CR. Un campo entre
    comillas que ocupa varias líneas conserva la línea donde empieza.

    Raises:
        MalformedCsvError: comillas sin cerrar, campo demasiado largo, etc.
    """
    if text.startswith(UTF8_BOM):
        text = text[len(UTF8_BOM):]
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    reader = csv.reader(io.StringIO(text))
    records: List[Tuple[int, List[str]]] = []
    line = 1
    try:
        for row in reader:
            records.append((line, row))
            line = reader.line_num + 1
    except csv.Error as exc:
        raise MalformedCsvError(line, str(exc)) from exc
    return records


def parse_es_date(value: str, tz: Optional[str] = None) -> int:
    """DD/MM/AAAA a epoch ms (medianoche local). Lanza ValueError si no encaja."""
    parsed = datetime.strptime(value.strip(), DATE_FORMAT).date()
    return to_epoch_ms(parsed, tz)


def parse_amount(value: str) -> Decimal:
    """Importe con punto decimal. Lanza ValueError si no es un número finito."""
    text = value.strip()
    if not text or "," in text:
        raise ValueError(value)
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValueError(value)
    if not amount.is_finite():
        raise ValueError(value)
    return amount


def resolve_client(value: str, client_lookup: Mapping[str, str]) -> Optional[Tuple[str, str]]:
    """
    Busca un cliente por nombre (sin distinguir mayúsculas) o por id.

    Returns:
        (client_id, client_name) o None si no existe
    """
    text = value.strip()
    if not text:
        return None
    if text in client_lookup:
        return client_lookup[text], text
    lowered = text.lower()
    for name, client_id in client_lookup.items():
        if name.strip().lower() == lowered:
            return client_id, name
    for name, client_id in client_lookup.items():
        if client_id == text:
            return client_id, name
    return None


def _parse_status(value: str) -> Optional[InvoiceStatus]:
    text = value.strip().upper()
    try:
        return InvoiceStatus(text)
    except ValueError:
        return None


def _derive_rate(amount: Decimal, base_total: Decimal) -> Decimal:
    if base_total == 0:
        return Decimal("0")
    return (amount / base_total).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def reconcile_invoices_csv(
    text: str,
    client_lookup: Mapping[str, str],
    existing_numbers: Iterable[str],
    config: InvoicingConfig,
    clock: Clock,
    strict: bool = False,
) -> ImportResult:
    """
    Conciliar un CSV de facturas contra el libro existente.

    Args:
        text: Contenido del CSV (UTF-8, BOM opcional, con cabecera)
        client_lookup: Mapa nombre de cliente -> id
        existing_numbers: Números ya presentes en el libro
        config: Opciones fiscales
        clock: Reloj para la regla de fecha futura
        strict: Tratar como error las filas que ya existen en el libro

    Returns:
        ImportResult; ``success`` es True solo si no hay errores
    """
    errors: List[str] = []
    warnings: List[str] = []
    staged: List[_StagedRow] = []

    validator = FiscalValidator(config, clock)
    now = clock.now()
    tz = config.timezone

    try:
        records = read_csv_records(text)
    except MalformedCsvError as exc:
        logger.warning(f"CSV reconciliation aborted: {exc}")
        errors.append(row_message(exc.line, f"CSV mal formado ({exc.detail})"))
        return ImportResult(success=False, imported=0, skipped=0, errors=errors, warnings=warnings)

    data_rows = [
        (line, row) for line, row in records[1:]
        if any(cell.strip() for cell in row)
    ]
    if not data_rows:
        errors.append("El CSV no contiene filas de facturas")
        return ImportResult(success=False, imported=0, skipped=0, errors=errors, warnings=warnings)

    for row_number, row in data_rows:
        if len(row) != EXPECTED_COLUMNS:
            errors.append(row_message(
                row_number, f"Número de columnas incorrecto (esperadas {EXPECTED_COLUMNS}, hay {len(row)})"
            ))
            continue

        raw_number, raw_issue, raw_due, raw_client, raw_status = (cell.strip() for cell in row[:5])
        row_errors: List[str] = []

        number = parse_invoice_number(raw_number, config.default_series)
        if number is None:
            row_errors.append(f"Número de factura inválido: {raw_number}")
        elif not is_canonical(raw_number):
            warnings.append(row_message(
                row_number, f"Número en formato antiguo {raw_number}; se importa como {number.build(config.sequence_padding)}"
            ))

        issue_date = due_date = None
        try:
            issue_date = parse_es_date(raw_issue, tz)
            due_date = parse_es_date(raw_due, tz)
        except ValueError:
            row_errors.append("Formato de fecha inválido (DD/MM/AAAA)")

        client = resolve_client(raw_client, client_lookup)
        if client is None:
            row_errors.append(f"Cliente desconocido: {raw_client}")

        amounts: Dict[str, Decimal] = {}
        for name, raw in zip(("base_total", "vat_amount", "irpf_amount", "total_amount"), row[5:]):
            try:
                amounts[name] = parse_amount(raw)
            except ValueError:
                row_errors.append(f"Importe inválido en {name}: {raw}")

        status = _parse_status(raw_status)
        if status is None:
            label = f"Estado desconocido '{raw_status}'" if raw_status else "Estado vacío"
            warnings.append(row_message(row_number, f"{label}; se importa como {InvoiceStatus.DRAFT.value}"))
            status = InvoiceStatus.DRAFT

        if issue_date is not None and due_date is not None:
            issues = validator.validate(
                issue_date=issue_date,
                due_date=due_date,
                invoice_number=raw_number if number is not None else None,
                now=now,
            )
            row_errors.extend(issue.message for issue in issues)

        if len(amounts) == 4:
            if any(amount < 0 for amount in amounts.values()):
                row_errors.append("Los importes no pueden ser negativos")
            elif amounts["vat_amount"] > amounts["base_total"] or amounts["irpf_amount"] > amounts["base_total"]:
                row_errors.append("IVA o IRPF superiores a la base imponible")
            if not TaxCalculator.totals_match(
                amounts["base_total"], amounts["vat_amount"], amounts["irpf_amount"], amounts["total_amount"]
            ):
                expected = round2(amounts["base_total"] + amounts["vat_amount"] - amounts["irpf_amount"])
                warnings.append(row_message(
                    row_number,
                    f"El total no cuadra: esperado {expected}, recibido {round2(amounts['total_amount'])}"
                ))

        candidate = None
        if not row_errors:
            base_total = amounts["base_total"]
            candidate = InvoiceCreate(
                invoice_number=number.build(config.sequence_padding),
                series=number.series,
                client_id=client[0],
                client_name=client[1],
                issue_date=issue_date,
                due_date=due_date,
                status=status,
                items=[InvoiceItemCreate(
                    description=f"Factura importada {raw_number}",
                    quantity=Decimal("1"),
                    price_unit=base_total,
                )],
                taxes_included=False,
                vat_rate=_derive_rate(amounts["vat_amount"], base_total),
                irpf_rate=_derive_rate(amounts["irpf_amount"], base_total),
            )
        else:
            errors.extend(row_message(row_number, message) for message in row_errors)

        # Los duplicados se buscan entre todas las filas con número legible
        if number is not None:
            staged.append(_StagedRow(row_number, number, candidate))

    numbering = audit_sequences(entry.number for entry in staged)
    errors.extend(numbering.errors)
    warnings.extend(numbering.warnings)

    duplicated: Set[InvoiceNumber] = set()
    seen: Set[InvoiceNumber] = set()
    for entry in staged:
        if entry.number in seen:
            duplicated.add(entry.number)
        seen.add(entry.number)

    ledger: Set[InvoiceNumber] = set()
    for raw in existing_numbers:
        parsed = parse_invoice_number(raw, config.default_series)
        if parsed is not None:
            ledger.add(parsed)

    invoices: List[InvoiceCreate] = []
    skipped = 0
    for entry in staged:
        if entry.candidate is None or entry.number in duplicated:
            continue
        if entry.number in ledger:
            if strict:
                errors.append(row_message(
                    entry.row_number, f"La factura {entry.candidate.invoice_number} ya existe"
                ))
            else:
                skipped += 1
            continue
        invoices.append(entry.candidate)

    logger.info(
        f"CSV reconciliation: {len(data_rows)} row(s), {len(invoices)} importable, "
        f"{skipped} skipped, {len(errors)} error(s), {len(warnings)} warning(s)"
    )
    return ImportResult(
        success=not errors,
        imported=len(invoices),
        skipped=skipped,
        errors=errors,
        warnings=warnings,
        invoices=invoices,
    )


def commit_import(
    service,
    candidates: Iterable[InvoiceCreate],
    tenant_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> List[Invoice]:
    """
    Dar de alta los candidatos confirmados a través del ciclo de vida.

    Los números del fichero son documentos ya emitidos y nunca se
    renumeran: si alguno se ha ocupado desde la conciliación se rechaza el
    lote entero antes de dar de alta nada.

    Los estados que no se alcanzan desde DRAFT (OVERDUE) se crean como
    PENDING y se trasladan después con ``set_status``.

    Raises:
        InvoiceValidationError: algún número ya existe en el libro
    """
    candidates = list(candidates)
    extra = {"user_id": user_id} if user_id else {}

    taken = {invoice.number for invoice in service.list(tenant_id)}
    collisions = [
        ValidationIssue("invoice_number", f"El número {candidate.invoice_number} ya existe")
        for candidate in candidates
        if candidate.invoice_number is not None
        and parse_invoice_number(candidate.invoice_number, service.config.default_series) in taken
    ]
    if collisions:
        logger.warning(f"CSV import rejected: {len(collisions)} number(s) already registered")
        raise InvoiceValidationError(collisions)

    created: List[Invoice] = []
    for candidate in candidates:
        target = candidate.status
        if target == InvoiceStatus.DRAFT or can_transition(InvoiceStatus.DRAFT, target):
            invoice = service.create(candidate, tenant_id, reassign=False, **extra)
        else:
            invoice = service.create(
                candidate.model_copy(update={"status": InvoiceStatus.PENDING}), tenant_id, reassign=False, **extra
            )
            invoice = service.set_status(invoice.id, target, tenant_id, **extra)
        created.append(invoice)

    logger.info(f"CSV import committed {len(created)} invoice(s)")
    return created
